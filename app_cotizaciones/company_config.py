# ==============================================================================
# CONFIGURACIÓN DE LA EMPRESA
# ==============================================================================
# El registro de usuarios está restringido a una sola organización mediante
# un código compartido. El código puede sobrescribirse con la variable de
# entorno COTIZ_COMPANY_CODE.
# ==============================================================================

import os
import secrets
from datetime import datetime, timezone
from typing import Any, Dict

COMPANY_CONFIG = {
    'name': 'TECNOPHONE',
    'display_name': 'TECNOPHONE',
    'code': os.environ.get('COTIZ_COMPANY_CODE', 'TECH2024'),
    'description': 'Sistema de Cotizaciones - TECNOPHONE',
    'settings': {
        'require_email_verification': True,
        'allow_password_reset': True,
        'max_users_per_company': 50,
        'session_timeout': 24 * 60 * 60,  # segundos
    },
}

# Dominios de correo de la empresa
ALLOWED_EMAIL_DOMAINS = frozenset([
    'tecnophone.com',
    'tecnophone.com.co',
    'tecnophone.co',
])

COMPANY_ERROR_MESSAGES = {
    'invalid_code': 'Código de empresa inválido. Contacta a tu administrador.',
    'email_not_allowed': 'Este email no está autorizado para registrarse en TECNOPHONE.',
    'company_full': 'Se ha alcanzado el límite de usuarios para TECNOPHONE.',
    'code_required': 'Se requiere código de empresa para registrarse.',
    'welcome': '¡Bienvenido a TECNOPHONE! Ingresa el código de seguridad para continuar.',
}


def validate_company_code(code: str) -> bool:
    """Verifica el código de registro de la empresa."""
    if not code:
        return False
    return secrets.compare_digest(str(code).strip(), COMPANY_CONFIG['code'])


def get_company_info() -> Dict[str, Any]:
    """Información de la empresa que se adjunta al perfil en el registro."""
    now = datetime.now(timezone.utc).isoformat()
    return {
        'name': COMPANY_CONFIG['name'],
        'display_name': COMPANY_CONFIG['display_name'],
        'is_active': True,
        'created_at': now,
        'updated_at': now,
    }


def is_company_email(email: str) -> bool:
    """Verifica si el email pertenece a un dominio de la empresa."""
    if not email or '@' not in email:
        return False
    domain = email.rsplit('@', 1)[1].lower()
    return domain in ALLOWED_EMAIL_DOMAINS
