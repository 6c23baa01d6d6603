# ==============================================================================
# SERVICIO DE AUTENTICACIÓN
# ==============================================================================
# Sesión explícita (AuthSession) en lugar de estado global de la interfaz.
#
# FLUJO DE REGISTRO:
#   1. validate_company_code(session, code)  → marca la sesión
#   2. register(session, email, password)    → perfil 'vendedor'
#   Sin el paso 1 el registro falla con CodeRequired.
#
# BLOQUEO POR INTENTOS:
#   5 contraseñas fallidas para el mismo email dentro de 15 minutos bloquean
#   el login de ese email hasta que la ventana expire.
# ==============================================================================

import re
import secrets
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from app_cotizaciones import company_config
from app_cotizaciones.errors import AuthError, CodeRequired
from app_cotizaciones.models.entities import UserProfile, UserRole, utc_now_iso
from app_cotizaciones.repositories.interfaces import IUserRepository
from app_cotizaciones.services.audit_service import AuditService
from app_cotizaciones.services.permission_service import role_permissions

MIN_PASSWORD_LENGTH = 6
MAX_FAILED_ATTEMPTS = 5
FAILED_WINDOW_SECONDS = 15 * 60
RESET_TOKEN_TTL = timedelta(hours=1)

_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

# Campos del registro que nunca salen del servicio
PRIVATE_FIELDS = ('password_hash', 'reset_token_hash', 'reset_token_expires')

AuthCallback = Callable[[Optional[str], Optional[Dict[str, Any]]], None]


def public_profile(record: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Perfil sin credenciales."""
    if record is None:
        return None
    return {k: v for k, v in record.items() if k not in PRIVATE_FIELDS}


@dataclass
class AuthSession:
    """
    Estado de autenticación de un cliente.

    Attributes:
        user: Email autenticado (None si no hay sesión)
        company_code_validated: Código de empresa validado para registrarse
    """
    user: Optional[str] = None
    company_code_validated: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def to_dict(self) -> Dict[str, Any]:
        return {'user': self.user, 'company_code_validated': self.company_code_validated}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AuthSession':
        data = data or {}
        return cls(
            user=data.get('user'),
            company_code_validated=bool(data.get('company_code_validated', False)),
        )


class Subscription:
    """Suscripción a cambios de autenticación; unsubscribe() es idempotente."""

    def __init__(self, service: 'AuthService', token: int):
        self._service = service
        self._token = token
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._service._remove_listener(self._token)
            self.active = False

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, *exc) -> None:
        self.unsubscribe()


class AuthService:
    """
    Registro, login, logout y recuperación de contraseña.

    Los errores se lanzan como AuthError con código estable; el mensaje para
    el usuario sale de la tabla de errors.AUTH_ERROR_MESSAGES.
    """

    def __init__(
        self,
        user_repo: IUserRepository,
        audit_service: Optional[AuditService] = None,
        company_id: str = '',
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            user_repo: Repositorio de perfiles
            audit_service: Auditoría de logins/logouts (opcional)
            company_id: Empresa que se estampa en los perfiles
            clock: Reloj para la ventana de intentos fallidos
        """
        self.user_repo = user_repo
        self.audit_service = audit_service
        self.company_id = company_id or company_config.COMPANY_CONFIG['name']
        self._clock = clock

        self._listeners: Dict[int, AuthCallback] = {}
        self._listeners_lock = threading.Lock()
        self._next_token = 0

        self._failures: Dict[str, Deque[float]] = defaultdict(deque)
        self._failures_lock = threading.Lock()

    # =========================================================================
    # SUSCRIPCIONES
    # =========================================================================

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        """
        Registra un callback(email, perfil) que se llama en cada login,
        registro o logout.

        Returns:
            Subscription; después de unsubscribe() el callback no vuelve a
            llamarse
        """
        with self._listeners_lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = callback
        return Subscription(self, token)

    def _remove_listener(self, token: int) -> None:
        with self._listeners_lock:
            self._listeners.pop(token, None)

    def _emit(self, session: AuthSession) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners.values())
        profile = self.current_user(session)
        for callback in listeners:
            callback(session.user, profile)

    # =========================================================================
    # CÓDIGO DE EMPRESA Y REGISTRO
    # =========================================================================

    def validate_company_code(self, session: AuthSession, code: str) -> bool:
        """
        Valida el código de empresa y lo marca en la sesión.

        Returns:
            True si el código es correcto
        """
        valid = company_config.validate_company_code(code)
        session.company_code_validated = valid
        return valid

    @staticmethod
    def _check_email(email: str) -> str:
        email = (email or '').strip().lower()
        if not email:
            raise AuthError('auth/missing-email')
        if not _EMAIL_RE.match(email):
            raise AuthError('auth/invalid-email')
        return email

    @staticmethod
    def _check_password(password: str) -> None:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError('auth/weak-password')

    def register(
        self,
        session: AuthSession,
        email: str,
        password: str,
        display_name: str = ''
    ) -> Dict[str, Any]:
        """
        Registra un usuario con rol vendedor y abre su sesión.

        Raises:
            CodeRequired: Si la sesión no validó el código de empresa
            AuthError: Email inválido, contraseña débil, email en uso o
                empresa llena
        """
        if not session.company_code_validated:
            raise CodeRequired()
        email = self._check_email(email)
        self._check_password(password)

        max_users = company_config.COMPANY_CONFIG['settings']['max_users_per_company']
        if len(self.user_repo.load()) >= max_users:
            raise AuthError('company/full')

        now = utc_now_iso()
        profile = UserProfile(
            email=email,
            displayName=(display_name or '').strip() or email.split('@')[0],
            role=UserRole.VENDEDOR,
            permissions=sorted(role_permissions(UserRole.VENDEDOR)),
            isActive=True,
            companyId=self.company_id,
            createdAt=now,
            updatedAt=now,
            lastLogin=now,
            metadata={
                'companyEmail': company_config.is_company_email(email),
                'company': company_config.get_company_info(),
            },
        )
        record = dict(profile.to_dict(), password_hash=generate_password_hash(password))
        if not self.user_repo.create_profile(email, record):
            raise AuthError('auth/email-already-in-use')

        session.user = email
        session.company_code_validated = False
        if self.audit_service is not None:
            self.audit_service.log_user_registered(email, UserRole.VENDEDOR.value)
        self._emit(session)
        return public_profile(record)

    # =========================================================================
    # LOGIN / LOGOUT
    # =========================================================================

    def _recent_failures(self, email: str) -> Deque[float]:
        window_start = self._clock() - FAILED_WINDOW_SECONDS
        attempts = self._failures[email]
        while attempts and attempts[0] < window_start:
            attempts.popleft()
        return attempts

    def _record_failure(self, email: str) -> None:
        with self._failures_lock:
            self._recent_failures(email).append(self._clock())

    def login(self, session: AuthSession, email: str, password: str) -> Dict[str, Any]:
        """
        Inicia sesión y actualiza lastLogin.

        Raises:
            AuthError: auth/missing-email, auth/too-many-requests,
                auth/user-not-found, auth/user-disabled, auth/wrong-password
        """
        email = self._check_email(email)
        with self._failures_lock:
            if len(self._recent_failures(email)) >= MAX_FAILED_ATTEMPTS:
                raise AuthError('auth/too-many-requests')

        record = self.user_repo.get_profile(email)
        if record is None:
            self._record_failure(email)
            raise AuthError('auth/user-not-found')
        if record.get('isActive') is False:
            raise AuthError('auth/user-disabled')
        if not check_password_hash(record.get('password_hash', ''), password or ''):
            self._record_failure(email)
            raise AuthError('auth/wrong-password')

        with self._failures_lock:
            self._failures.pop(email, None)
        self.user_repo.update_profile(email, {'lastLogin': utc_now_iso()})

        session.user = email
        if self.audit_service is not None:
            self.audit_service.log_user_login(email)
        self._emit(session)
        return public_profile(self.user_repo.get_profile(email))

    def logout(self, session: AuthSession) -> None:
        """Cierra la sesión (sin efecto si no había usuario)."""
        if session.user is None:
            return
        if self.audit_service is not None:
            self.audit_service.log_user_logout(session.user)
        session.user = None
        self._emit(session)

    def current_user(self, session: AuthSession) -> Optional[Dict[str, Any]]:
        if session.user is None:
            return None
        return public_profile(self.user_repo.get_profile(session.user))

    # =========================================================================
    # RECUPERACIÓN DE CONTRASEÑA
    # =========================================================================

    def reset_password(self, email: str) -> str:
        """
        Genera un token de un solo uso para cambiar la contraseña.

        Returns:
            Token (se entrega al usuario por un canal externo)

        Raises:
            AuthError: auth/missing-email, auth/invalid-email, auth/user-not-found
        """
        email = self._check_email(email)
        if not self.user_repo.profile_exists(email):
            raise AuthError('auth/user-not-found')
        token = secrets.token_urlsafe(24)
        expires = datetime.now(timezone.utc) + RESET_TOKEN_TTL
        self.user_repo.update_profile(email, {
            'reset_token_hash': generate_password_hash(token),
            'reset_token_expires': expires.isoformat(),
        })
        return token

    def confirm_password_reset(self, email: str, token: str, new_password: str) -> bool:
        """
        Cambia la contraseña con un token vigente.

        Raises:
            AuthError: auth/invalid-credential (token inválido o vencido),
                auth/weak-password
        """
        email = self._check_email(email)
        record = self.user_repo.get_profile(email)
        if record is None or not record.get('reset_token_hash'):
            raise AuthError('auth/invalid-credential')

        expires = record.get('reset_token_expires')
        if not expires or datetime.fromisoformat(expires) < datetime.now(timezone.utc):
            raise AuthError('auth/invalid-credential')
        if not check_password_hash(record['reset_token_hash'], token or ''):
            raise AuthError('auth/invalid-credential')
        self._check_password(new_password)

        self.user_repo.update_profile(email, {
            'password_hash': generate_password_hash(new_password),
            'reset_token_hash': None,
            'reset_token_expires': None,
            'updatedAt': utc_now_iso(),
        })
        with self._failures_lock:
            self._failures.pop(email, None)
        return True
