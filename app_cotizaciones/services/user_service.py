# ==============================================================================
# SERVICIO DE USUARIOS
# ==============================================================================
# Administración de perfiles por parte de un admin (permiso manage_users).
#
# REGLAS:
# - El sistema nunca queda sin al menos un admin activo
# - Un admin no puede eliminarse ni desactivarse a sí mismo
# Estas validaciones se hacen AQUÍ, no en las rutas.
# ==============================================================================

from typing import Any, Dict, List, Optional

from werkzeug.security import generate_password_hash

from app_cotizaciones.models.entities import Actor, UserProfile, UserRole, utc_now_iso
from app_cotizaciones.repositories.interfaces import IUserRepository
from app_cotizaciones.services.audit_service import AuditService
from app_cotizaciones.services.auth_service import MIN_PASSWORD_LENGTH, public_profile
from app_cotizaciones.services.permission_service import normalize_role, role_permissions

# Campos de perfil editables por un admin
EDITABLE_PROFILE_FIELDS = frozenset(['displayName', 'metadata'])


class UserService:
    """
    Servicio para gestión de usuarios.

    Responsabilidades:
    - Alta de usuarios por un admin
    - Cambio de rol y activación
    - Edición de perfil y eliminación
    - Estadísticas de usuarios

    Los métodos retornan {'ok': bool, 'error': str} como las rutas esperan.
    """

    def __init__(
        self,
        user_repo: IUserRepository,
        audit_service: Optional[AuditService] = None,
        company_id: str = ''
    ):
        """
        Args:
            user_repo: Repositorio de perfiles
            audit_service: Servicio de auditoría (opcional)
            company_id: Empresa de los perfiles creados
        """
        self.user_repo = user_repo
        self.audit_service = audit_service
        self.company_id = company_id

    @staticmethod
    def _denied(admin: Actor) -> Optional[Dict[str, Any]]:
        if not admin.has('manage_users'):
            return {'ok': False, 'error': 'No tienes permiso para administrar usuarios'}
        return None

    def _active_admins(self) -> List[str]:
        return [
            email for email, data in self.user_repo.load().items()
            if data.get('role') == UserRole.ADMIN.value and data.get('isActive', True) is not False
        ]

    # =========================================================================
    # CONSULTAS
    # =========================================================================

    def get_user(self, email: str) -> Optional[Dict[str, Any]]:
        """
        Obtiene un perfil por email.

        Returns:
            Perfil sin credenciales o None
        """
        return public_profile(self.user_repo.get_profile(email))

    def get_all_users(self) -> List[Dict[str, Any]]:
        """Todos los perfiles (sin credenciales), ordenados por email."""
        users = self.user_repo.load()
        return [public_profile(users[email]) for email in sorted(users)]

    def user_exists(self, email: str) -> bool:
        return self.user_repo.profile_exists(email)

    def get_user_stats(self) -> Dict[str, Any]:
        """
        Returns:
            {'total', 'active', 'inactive', 'byRole': {rol: n}}
        """
        users = list(self.user_repo.load().values())
        by_role = {role.value: 0 for role in UserRole}
        for data in users:
            by_role[normalize_role(data.get('role')).value] += 1
        active = len([u for u in users if u.get('isActive', True) is not False])
        return {
            'total': len(users),
            'active': active,
            'inactive': len(users) - active,
            'byRole': by_role,
        }

    # =========================================================================
    # ALTA Y BAJA
    # =========================================================================

    def create_user(
        self,
        email: str,
        password: str,
        role: str,
        admin: Actor,
        display_name: str = ''
    ) -> Dict[str, Any]:
        """
        Crea un usuario con el rol indicado.

        Returns:
            Dict con resultado (ok, error, user)
        """
        denied = self._denied(admin)
        if denied:
            return denied

        email = (email or '').strip().lower()
        if not email:
            return {'ok': False, 'error': 'Email requerido'}
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            return {'ok': False, 'error': f'La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres'}
        if self.user_exists(email):
            return {'ok': False, 'error': 'El usuario ya existe'}

        role = normalize_role(role)
        now = utc_now_iso()
        profile = UserProfile(
            email=email,
            displayName=display_name or email.split('@')[0],
            role=role,
            permissions=sorted(role_permissions(role)),
            companyId=self.company_id,
            createdAt=now,
            updatedAt=now,
            createdBy=admin.email,
        )
        record = dict(profile.to_dict(), password_hash=generate_password_hash(password))
        if not self.user_repo.create_profile(email, record):
            return {'ok': False, 'error': 'Error al crear usuario'}

        if self.audit_service:
            self.audit_service.log_user_registered(email, role.value)
        return {'ok': True, 'user': public_profile(record)}

    def delete_user(self, email: str, admin: Actor) -> Dict[str, Any]:
        """
        Elimina un usuario.

        VALIDACIONES:
        1. Usuario debe existir
        2. No se puede eliminar el último admin
        3. No se puede auto-eliminar

        Returns:
            Dict con resultado {'ok': bool, 'error': str opcional}
        """
        denied = self._denied(admin)
        if denied:
            return denied

        user = self.user_repo.get_profile(email)
        if not user:
            return {'ok': False, 'error': 'Usuario no encontrado'}
        email = user['email']
        if email == admin.email:
            return {'ok': False, 'error': 'No puedes eliminar tu propia cuenta'}
        role = user.get('role', '')
        if self._active_admins() == [email]:
            return {'ok': False, 'error': 'No se puede eliminar el último admin'}

        success = self.user_repo.delete_profile(email)
        if success and self.audit_service:
            self.audit_service.log_user_deleted(admin.email, email, role)
        return {'ok': success}

    # =========================================================================
    # GESTIÓN DE ROLES Y ESTADO
    # =========================================================================

    def change_role(self, email: str, new_role: str, admin: Actor) -> Dict[str, Any]:
        """
        Cambia el rol de un usuario (y sus permisos derivados).

        Returns:
            Dict con resultado {'ok': bool, 'error': str opcional}
        """
        denied = self._denied(admin)
        if denied:
            return denied

        user = self.user_repo.get_profile(email)
        if not user:
            return {'ok': False, 'error': 'Usuario no encontrado'}

        email = user['email']
        old_role = user.get('role', '')
        role = normalize_role(new_role)

        if (old_role == UserRole.ADMIN.value and role != UserRole.ADMIN
                and self._active_admins() == [email]):
            return {'ok': False, 'error': 'No se puede quitar el último admin'}

        success = self.user_repo.update_profile(email, {
            'role': role.value,
            'permissions': sorted(role_permissions(role)),
            'updatedAt': utc_now_iso(),
        })
        if success and self.audit_service:
            self.audit_service.log_user_role_changed(admin.email, email, old_role, role.value)
        return {'ok': success, 'role': role.value}

    def set_active(self, email: str, active: bool, admin: Actor) -> Dict[str, Any]:
        """Activa o desactiva un usuario."""
        denied = self._denied(admin)
        if denied:
            return denied

        user = self.user_repo.get_profile(email)
        if not user:
            return {'ok': False, 'error': 'Usuario no encontrado'}
        email = user['email']
        if not active and email == admin.email:
            return {'ok': False, 'error': 'No puedes desactivar tu propia cuenta'}
        if not active and self._active_admins() == [email]:
            return {'ok': False, 'error': 'No se puede desactivar el último admin'}

        success = self.user_repo.update_profile(email, {
            'isActive': bool(active),
            'updatedAt': utc_now_iso(),
        })
        if success and self.audit_service:
            self.audit_service.log_user_status_changed(admin.email, email, bool(active))
        return {'ok': success}

    def update_profile(self, email: str, updates: Dict[str, Any], admin: Actor) -> Dict[str, Any]:
        """
        Edita nombre y metadatos (departamento, teléfono, notas).
        Un usuario puede editar su propio perfil.
        """
        target = (email or '').strip().lower()
        if target != admin.email:
            denied = self._denied(admin)
            if denied:
                return denied
        if not self.user_exists(target):
            return {'ok': False, 'error': 'Usuario no encontrado'}

        changes = {k: v for k, v in (updates or {}).items() if k in EDITABLE_PROFILE_FIELDS}
        if not changes:
            return {'ok': False, 'error': 'Nada que actualizar'}
        changes['updatedAt'] = utc_now_iso()
        return {'ok': self.user_repo.update_profile(target, changes)}
