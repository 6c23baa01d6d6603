# ==============================================================================
# TAXONOMÍA DE ERRORES
# ==============================================================================
# Errores de negocio del flujo de cotizaciones.
#
# PROPAGACIÓN:
# - NotFound, InvalidTransition, Forbidden, ValidationFailure y Conflict se
#   lanzan al llamador de la operación y NUNCA se reintentan.
# - SyncFailure se reintenta internamente (SyncService) y solo se expone como
#   la marca pendingSync del registro.
# - AuthError se traduce a mensajes fijos por código (ver AUTH_ERROR_MESSAGES).
# ==============================================================================

from typing import Optional

from app_cotizaciones.company_config import COMPANY_ERROR_MESSAGES


class CotizacionesError(Exception):
    """Excepción base de la aplicación."""

    code = 'error'

    def __init__(self, message: str = '', code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self):
        return {'success': False, 'code': self.code, 'error': self.message}


class NotFound(CotizacionesError):
    """La cotización o el perfil referenciado no existe."""
    code = 'not_found'


class InvalidTransition(CotizacionesError):
    """El cambio de estado solicitado no está en el grafo del flujo."""
    code = 'invalid_transition'

    def __init__(self, current: str, target: str, message: str = ''):
        super().__init__(message or f'Transición no permitida: {current} → {target}')
        self.current = current
        self.target = target


class Forbidden(CotizacionesError):
    """El actor no tiene el permiso requerido."""
    code = 'forbidden'

    def __init__(self, message: str = '', permission: Optional[str] = None):
        super().__init__(message or 'Permiso denegado')
        self.permission = permission


class Conflict(CotizacionesError):
    """Otra transición concurrente ganó sobre la misma cotización."""
    code = 'conflict'


class ValidationFailure(CotizacionesError):
    """Datos incompletos o inválidos (ej: cotización sin ítems)."""
    code = 'validation_failure'


class SyncFailure(CotizacionesError):
    """Falla al empujar o traer datos del almacenamiento remoto."""
    code = 'sync_failure'

    def __init__(self, message: str = '', retryable: bool = True):
        super().__init__(message or 'Error de sincronización')
        self.retryable = retryable


# ==============================================================================
# ERRORES DE AUTENTICACIÓN
# ==============================================================================

AUTH_ERROR_MESSAGES = {
    'auth/user-disabled': 'Esta cuenta ha sido deshabilitada.',
    'auth/user-not-found': 'No existe una cuenta con este email.',
    'auth/wrong-password': 'Contraseña incorrecta.',
    'auth/email-already-in-use': 'Ya existe una cuenta con este email.',
    'auth/invalid-email': 'El email no es válido.',
    'auth/operation-not-allowed': 'Operación no permitida.',
    'auth/weak-password': 'La contraseña debe tener al menos 6 caracteres.',
    'auth/missing-email': 'Debes proporcionar un email.',
    'auth/invalid-credential': 'Credenciales inválidas.',
    'auth/too-many-requests': 'Demasiados intentos fallidos. Intenta más tarde.',
    'auth/network-request-failed': 'Error de conexión. Verifica tu internet.',
    'company/code-required': COMPANY_ERROR_MESSAGES['code_required'],
    'company/invalid-code': COMPANY_ERROR_MESSAGES['invalid_code'],
    'company/email-not-allowed': COMPANY_ERROR_MESSAGES['email_not_allowed'],
    'company/full': COMPANY_ERROR_MESSAGES['company_full'],
}

DEFAULT_AUTH_ERROR_MESSAGE = 'Ha ocurrido un error inesperado.'


def get_error_message(code: Optional[str]) -> str:
    """
    Traduce un código de error de autenticación a un mensaje para el usuario.

    La tabla es total: cualquier código desconocido (o None) recibe el mensaje
    genérico, nunca el error interno.

    Args:
        code: Código estable del error (ej: 'auth/wrong-password')

    Returns:
        Mensaje en español para mostrar al usuario
    """
    return AUTH_ERROR_MESSAGES.get(code or '', DEFAULT_AUTH_ERROR_MESSAGE)


class AuthError(CotizacionesError):
    """Error de autenticación identificado por un código estable."""

    def __init__(self, code: str):
        super().__init__(get_error_message(code), code)


class CodeRequired(AuthError):
    """Registro intentado sin validar antes el código de empresa."""

    def __init__(self):
        super().__init__('company/code-required')
