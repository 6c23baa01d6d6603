# ==============================================================================
# CONFIGURACIÓN DE LA APLICACIÓN
# ==============================================================================
# Todos los parámetros se leen de variables de entorno con valores por defecto
# seguros para desarrollo local.
#
# Variables:
#   COTIZ_DATA_DIR          Carpeta de los archivos JSON (almacén local)
#   COTIZ_REMOTE_URL        URL base del backend remoto (vacío = espejo JSON)
#   COTIZ_REMOTE_TOKEN      Token Bearer para el backend remoto
#   COTIZ_REMOTE_TIMEOUT    Timeout de red en segundos
#   COTIZ_SYNC_ENABLED      '0' desactiva el hilo de sincronización
#   COTIZ_SYNC_MAX_RETRIES  Reintentos antes de dejar el registro pendiente
#   COTIZ_SYNC_BACKOFF      Espera base entre reintentos (segundos)
#   COTIZ_SYNC_BACKOFF_MAX  Espera máxima entre reintentos (segundos)
#   COTIZ_SECRET_KEY        Clave de sesión de Flask
#   COTIZ_PRODUCTION        '1' para modo producción
# ==============================================================================

import os
from dataclasses import dataclass

from app_cotizaciones.company_config import COMPANY_CONFIG

BASE = os.path.dirname(os.path.abspath(__file__))

_DEFAULT_SECRET = "app_cotizaciones_dev_secret_key_change_in_production"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'si', 'sí', 'on')


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


@dataclass
class AppConfig:
    """
    Parámetros de ejecución.

    Se pasa explícitamente al contenedor de dependencias; ningún servicio
    lee variables de entorno por su cuenta.
    """
    data_dir: str
    remote_url: str = ''
    remote_token: str = ''
    remote_timeout: float = 10.0
    sync_enabled: bool = True
    sync_max_retries: int = 5
    sync_backoff: float = 0.5
    sync_backoff_max: float = 30.0
    secret_key: str = _DEFAULT_SECRET
    production: bool = False
    company_id: str = COMPANY_CONFIG['name']

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Construye la configuración desde el entorno."""
        production = _env_bool('COTIZ_PRODUCTION', False)
        secret = os.environ.get('COTIZ_SECRET_KEY')
        if production and not secret:
            print("[ADVERTENCIA] COTIZ_PRODUCTION activo sin COTIZ_SECRET_KEY definida")

        return cls(
            data_dir=os.environ.get('COTIZ_DATA_DIR') or os.path.join(BASE, 'data'),
            remote_url=os.environ.get('COTIZ_REMOTE_URL', '').rstrip('/'),
            remote_token=os.environ.get('COTIZ_REMOTE_TOKEN', ''),
            remote_timeout=_env_float('COTIZ_REMOTE_TIMEOUT', 10.0),
            sync_enabled=_env_bool('COTIZ_SYNC_ENABLED', True),
            sync_max_retries=_env_int('COTIZ_SYNC_MAX_RETRIES', 5),
            sync_backoff=_env_float('COTIZ_SYNC_BACKOFF', 0.5),
            sync_backoff_max=_env_float('COTIZ_SYNC_BACKOFF_MAX', 30.0),
            secret_key=secret or _DEFAULT_SECRET,
            production=production,
        )
