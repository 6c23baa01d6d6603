# ==============================================================================
# CAPA DE SERVICIOS - Lógica de negocio
# ==============================================================================
# Esta capa contiene TODA la lógica de negocio de la aplicación.
#
# PRINCIPIOS:
# 1. Los servicios orquestan operaciones entre repositorios
# 2. Aplican reglas de negocio y validaciones
# 3. Las rutas (controllers) solo llaman a servicios
# 4. Los errores de negocio se lanzan como excepciones de errors.py
#
# ESTRUCTURA:
# ├── permission_service.py  → Roles, permisos, resolución de Actor
# ├── quote_service.py       → Ciclo de vida y flujo de aprobación
# ├── sync_service.py        → Push/pull/conciliación con el remoto
# ├── auth_service.py        → Registro, login, sesiones
# ├── user_service.py        → Administración de usuarios
# ├── purchase_service.py    → Seguimiento de compras
# ├── provider_service.py    → Catálogo de proveedores
# ├── diagnostics_service.py → Reportes de estados
# ├── migration_service.py   → Importación legacy
# └── audit_service.py       → Logs de actividad
# ==============================================================================

from app_cotizaciones.services.audit_service import AuditService
from app_cotizaciones.services.permission_service import PermissionService
from app_cotizaciones.services.quote_service import QuoteService
from app_cotizaciones.services.sync_service import SyncService
from app_cotizaciones.services.auth_service import AuthService, AuthSession, Subscription
from app_cotizaciones.services.user_service import UserService
from app_cotizaciones.services.purchase_service import PurchaseService
from app_cotizaciones.services.provider_service import ProviderService
from app_cotizaciones.services.diagnostics_service import DiagnosticsService
from app_cotizaciones.services.migration_service import MigrationService

__all__ = [
    'AuditService',
    'PermissionService',
    'QuoteService',
    'SyncService',
    'AuthService',
    'AuthSession',
    'Subscription',
    'UserService',
    'PurchaseService',
    'ProviderService',
    'DiagnosticsService',
    'MigrationService',
]
