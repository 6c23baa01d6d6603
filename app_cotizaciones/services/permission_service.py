# ==============================================================================
# SERVICIO DE ROLES Y PERMISOS
# ==============================================================================
# Tabla de roles de la empresa y resolución de la identidad de un usuario a
# un Actor (email, rol, permisos).
#
# REGLA DE SEGURIDAD:
# Ante la duda se resuelve al rol de menor privilegio (vendedor):
# - Perfil inexistente  → vendedor
# - Rol desconocido     → vendedor
# - Perfil desactivado  → sin permisos
# ==============================================================================

from typing import Any, Dict, FrozenSet, List, Optional

from app_cotizaciones.models.entities import Actor, UserProfile, UserRole
from app_cotizaciones.repositories.interfaces import IUserRepository

DEFAULT_ROLE = UserRole.VENDEDOR

ROLE_DEFINITIONS: Dict[UserRole, Dict[str, Any]] = {
    UserRole.ADMIN: {
        'name': 'Administrador',
        'description': 'Gestiona usuarios y proveedores',
        'permissions': [
            'manage_users',
            'manage_providers',
            'view_all_quotes',
            'manage_settings',
            'view_reports',
            'manage_roles',
        ],
        'can_quote': False,
        'color': '#dc2626',
        'icon': 'admin',
    },
    UserRole.VENDEDOR: {
        'name': 'Vendedor',
        'description': 'Crea y gestiona cotizaciones',
        'permissions': [
            'create_quotes',
            'edit_own_quotes',
            'view_own_quotes',
            'send_for_approval',
            'duplicate_quotes',
            'export_quotes',
            'manage_providers',
        ],
        'can_quote': True,
        'color': '#2563eb',
        'icon': 'vendedor',
    },
    UserRole.COMPRADOR: {
        'name': 'Comprador',
        'description': 'Gestiona compras y precios finales',
        'permissions': [
            'view_approved_quotes',
            'set_final_purchase_price',
            'view_margin_differences',
            'view_providers',
            'create_purchase_orders',
            'view_purchase_reports',
            'export_purchase_data',
        ],
        'can_quote': False,
        'color': '#059669',
        'icon': 'comprador',
    },
    UserRole.REVISOR: {
        'name': 'Revisor',
        'description': 'Revisa y aprueba cotizaciones',
        'permissions': [
            'view_pending_quotes',
            'approve_quotes',
            'reject_quotes',
            'request_revisions',
            'view_all_quotes',
            'view_providers',
            'view_reports',
        ],
        'can_quote': False,
        'color': '#7c3aed',
        'icon': 'revisor',
    },
}

UNKNOWN_ROLE_INFO = {
    'name': 'Sin rol',
    'description': 'Rol no definido',
    'permissions': [],
    'can_quote': False,
    'color': '#6b7280',
    'icon': 'unknown',
}


def normalize_role(raw: Any) -> UserRole:
    """
    Convierte un rol almacenado al enum, con vendedor como respaldo.

    Args:
        raw: Rol crudo (str o UserRole)

    Returns:
        UserRole válido
    """
    if isinstance(raw, UserRole):
        return raw
    try:
        return UserRole(str(raw or '').strip().lower())
    except ValueError:
        return DEFAULT_ROLE


def role_permissions(role: Any) -> FrozenSet[str]:
    """Permisos de un rol (vacío si no existe)."""
    try:
        role = UserRole(role)
    except ValueError:
        return frozenset()
    return frozenset(ROLE_DEFINITIONS[role]['permissions'])


class PermissionService:
    """
    Resolución de identidades y consultas sobre la tabla de roles.

    El Actor resultante es lo único que el flujo de cotizaciones consulta;
    una sola lectura del repositorio por resolución.
    """

    def __init__(self, user_repo: IUserRepository):
        self.user_repo = user_repo

    def resolve(self, identity: Optional[str]) -> Actor:
        """
        Resuelve un email a un Actor con sus permisos.

        Args:
            identity: Email del usuario autenticado

        Returns:
            Actor (vendedor si no hay perfil; sin permisos si está inactivo)
        """
        email = (identity or '').strip().lower()
        data = self.user_repo.get_profile(email) if email else None
        if not data:
            return Actor(
                email=email,
                role=DEFAULT_ROLE,
                permissions=role_permissions(DEFAULT_ROLE),
            )

        profile = UserProfile.from_dict(data)
        role = normalize_role(data.get('role'))
        permissions = role_permissions(role) if profile.isActive else frozenset()
        return Actor(
            email=email,
            role=role,
            permissions=permissions,
            display_name=profile.displayName,
        )

    # =========================================================================
    # CONSULTAS SOBRE LA TABLA DE ROLES
    # =========================================================================

    @staticmethod
    def has_permission(role: Any, permission: str) -> bool:
        return permission in role_permissions(role)

    @staticmethod
    def can_create_quotes(role: Any) -> bool:
        try:
            return bool(ROLE_DEFINITIONS[UserRole(role)]['can_quote'])
        except ValueError:
            return False

    @staticmethod
    def get_role_info(role: Any) -> Dict[str, Any]:
        """
        Información de presentación de un rol.

        Returns:
            Definición del rol o la de 'Sin rol' si no existe
        """
        try:
            info = ROLE_DEFINITIONS[UserRole(role)]
        except ValueError:
            return dict(UNKNOWN_ROLE_INFO)
        return dict(info, permissions=list(info['permissions']))

    @staticmethod
    def get_all_roles() -> List[Dict[str, Any]]:
        return [
            {'value': role.value, 'label': info['name'], 'description': info['description']}
            for role, info in ROLE_DEFINITIONS.items()
        ]

    @staticmethod
    def normalize_role(raw: Any) -> UserRole:
        return normalize_role(raw)
