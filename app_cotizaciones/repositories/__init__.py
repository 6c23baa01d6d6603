# ==============================================================================
# CAPA DE REPOSITORIOS - Acceso a datos
# ==============================================================================
# Esta capa encapsula toda la persistencia: archivos JSON locales y el
# almacén remoto (backend HTTP o espejo JSON).
#
# ESTRUCTURA:
# ├── interfaces.py          → Protocolos (contratos que usan los servicios)
# ├── base.py                → Clases base JSON (DictRepository, ListRepository)
# ├── quote_repository.py    → cotizaciones.json (almacén local)
# ├── remote_repository.py   → Almacén remoto (HTTP / espejo JSON)
# ├── provider_repository.py → proveedores.json
# ├── user_repository.py     → users.json
# ├── audit_repository.py    → audit.json
# └── settings_repository.py → configuracion.json
# ==============================================================================

from app_cotizaciones.repositories.interfaces import (
    IQuoteRepository,
    IRemoteQuoteStore,
    IUserRepository,
    IAuditRepository,
    ISettingsRepository,
)

from app_cotizaciones.repositories.base import BaseRepository, DictRepository, ListRepository
from app_cotizaciones.repositories.quote_repository import LocalQuoteRepository
from app_cotizaciones.repositories.remote_repository import (
    HttpRemoteQuoteStore,
    JsonRemoteQuoteStore,
)
from app_cotizaciones.repositories.provider_repository import ProviderRepository
from app_cotizaciones.repositories.user_repository import UserRepository
from app_cotizaciones.repositories.audit_repository import AuditRepository
from app_cotizaciones.repositories.settings_repository import SettingsRepository

__all__ = [
    # Interfaces
    'IQuoteRepository',
    'IRemoteQuoteStore',
    'IUserRepository',
    'IAuditRepository',
    'ISettingsRepository',

    # Clases base
    'BaseRepository',
    'DictRepository',
    'ListRepository',

    # Implementaciones
    'LocalQuoteRepository',
    'HttpRemoteQuoteStore',
    'JsonRemoteQuoteStore',
    'ProviderRepository',
    'UserRepository',
    'AuditRepository',
    'SettingsRepository',
]
