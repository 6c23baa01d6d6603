# ==============================================================================
# SISTEMA DE PROFILING Y LOGS DE SINCRONIZACIÓN
# ==============================================================================
# Mide rendimiento de rutas y funciones sin afectar la experiencia del usuario
# y deja constancia de los eventos de sincronización con el almacén remoto.
# Guarda logs legibles en logs/ (COTIZ_LOGS_DIR) para análisis humano.
#
# ACTIVAR/DESACTIVAR: Variable COTIZ_ENABLE_PROFILING
# ==============================================================================

import os
import time
import threading
from datetime import datetime
from functools import wraps

# ═══════════════════════════════════════════════════════════════════════════
# CONFIGURACIÓN
# ═══════════════════════════════════════════════════════════════════════════

ENABLE_PROFILING = os.environ.get('COTIZ_ENABLE_PROFILING', '1') not in ('0', 'false', 'False')

# Umbrales de tiempo (en milisegundos)
THRESHOLD_WARNING = 300   # Advertencia si supera 300ms
THRESHOLD_CRITICAL = 700  # Crítico si supera 700ms

LOGS_DIR = os.environ.get('COTIZ_LOGS_DIR') or os.path.join(os.path.dirname(__file__), 'logs')

PERFORMANCE_LOG = os.path.join(LOGS_DIR, 'performance.log')
SLOW_ROUTES_LOG = os.path.join(LOGS_DIR, 'slow_routes.log')
SLOW_FUNCTIONS_LOG = os.path.join(LOGS_DIR, 'slow_functions.log')
SYNC_LOG = os.path.join(LOGS_DIR, 'sync.log')

# Mapeo de rutas a nombres legibles (para logs más humanos)
ROUTE_NAMES = {
    # Autenticación
    'POST /api/auth/company-code': 'Validar código de empresa',
    'POST /api/auth/register': 'Registrar usuario',
    'POST /api/auth/login': 'Iniciar sesión',
    'POST /api/auth/logout': 'Cerrar sesión',
    'POST /api/auth/reset-password': 'Solicitar cambio de contraseña',
    'POST /api/auth/reset-password/confirm': 'Confirmar cambio de contraseña',
    'GET /api/auth/me': 'Ver perfil actual',

    # Cotizaciones
    'GET /api/cotizaciones': 'Listar cotizaciones',
    'POST /api/cotizaciones': 'Crear cotización',
    'GET /api/cotizaciones/<int:quote_id>': 'Ver cotización',
    'PUT /api/cotizaciones/<int:quote_id>': 'Editar cotización',
    'DELETE /api/cotizaciones/<int:quote_id>': 'Eliminar cotización',
    'POST /api/cotizaciones/<int:quote_id>/enviar': 'Enviar a aprobación',
    'POST /api/cotizaciones/<int:quote_id>/aprobar': 'Aprobar cotización',
    'POST /api/cotizaciones/<int:quote_id>/rechazar': 'Rechazar cotización',
    'POST /api/cotizaciones/<int:quote_id>/revision': 'Solicitar revisión',
    'POST /api/cotizaciones/<int:quote_id>/duplicar': 'Duplicar cotización',
    'POST /api/cotizaciones/<int:quote_id>/compra': 'Registrar precio de compra',
    'POST /api/cotizaciones/<int:quote_id>/compra/finalizar': 'Finalizar compra',
    'GET /api/compras/stats': 'Reporte de compras',

    # Sincronización y diagnóstico
    'POST /api/sync': 'Sincronizar con la nube',
    'GET /api/sync/reconcile': 'Conciliar almacenes',
    'GET /api/sync/stats': 'Estado de sincronización',
    'GET /api/diagnostico': 'Diagnóstico de estados',

    # Usuarios
    'GET /api/usuarios': 'Ver usuarios',
    'POST /api/usuarios': 'Crear usuario',
    'DELETE /api/usuarios/<email>': 'Eliminar usuario',
    'POST /api/usuarios/<email>/rol': 'Cambiar rol',
    'POST /api/usuarios/<email>/estado': 'Activar/desactivar usuario',

    # Proveedores
    'GET /api/proveedores': 'Listar proveedores',
    'POST /api/proveedores': 'Agregar proveedor',
    'GET /api/proveedores/<provider_id>': 'Ver proveedor',
    'PUT /api/proveedores/<provider_id>': 'Editar proveedor',
    'DELETE /api/proveedores/<provider_id>': 'Eliminar proveedor',
    'GET /api/proveedores/stats': 'Estadísticas de proveedores',
    'GET /api/proveedores/export': 'Exportar proveedores',
    'POST /api/proveedores/import': 'Importar proveedores',
    'POST /api/proveedores/sync': 'Sincronizar proveedores',
}


# ═══════════════════════════════════════════════════════════════════════════
# INICIALIZACIÓN
# ═══════════════════════════════════════════════════════════════════════════

def _ensure_logs_dir():
    """Crea el directorio de logs si no existe"""
    os.makedirs(LOGS_DIR, exist_ok=True)


def configure_logs_dir(path):
    """
    Cambia la carpeta de logs en tiempo de ejecución (tests, despliegues).

    Args:
        path: Nueva carpeta de logs
    """
    global LOGS_DIR, PERFORMANCE_LOG, SLOW_ROUTES_LOG, SLOW_FUNCTIONS_LOG, SYNC_LOG
    LOGS_DIR = path
    PERFORMANCE_LOG = os.path.join(LOGS_DIR, 'performance.log')
    SLOW_ROUTES_LOG = os.path.join(LOGS_DIR, 'slow_routes.log')
    SLOW_FUNCTIONS_LOG = os.path.join(LOGS_DIR, 'slow_functions.log')
    SYNC_LOG = os.path.join(LOGS_DIR, 'sync.log')
    _ensure_logs_dir()


# ═══════════════════════════════════════════════════════════════════════════
# ESCRITURA DE LOGS (un hilo a la vez)
# ═══════════════════════════════════════════════════════════════════════════

_log_lock = threading.Lock()


# ═══════════════════════════════════════════════════════════════════════════
# FUNCIONES DE LOGGING
# ═══════════════════════════════════════════════════════════════════════════

def _get_timestamp():
    """Obtiene timestamp legible"""
    return datetime.now().strftime('%Y-%m-%d %H:%M:%S')


def _write_log(filepath, content):
    """Escribe contenido a un archivo de log (thread-safe)"""
    try:
        with _log_lock:
            os.makedirs(os.path.dirname(filepath), exist_ok=True)
            with open(filepath, 'a', encoding='utf-8') as f:
                f.write(content)
    except OSError:
        pass  # Un log que no se puede escribir no debe tumbar la operación


def _get_route_name(method, path, rule=None):
    """
    Obtiene nombre legible para una ruta.
    Intenta con la regla de Flask y luego con la ruta exacta.
    """
    if rule:
        rule_key = f"{method} {rule}"
        if rule_key in ROUTE_NAMES:
            return ROUTE_NAMES[rule_key]

    key = f"{method} {path}"
    if key in ROUTE_NAMES:
        return ROUTE_NAMES[key]

    return f"{method} {path}"


# ═══════════════════════════════════════════════════════════════════════════
# 1️⃣ PROFILING DE RUTAS (Middleware Flask)
# ═══════════════════════════════════════════════════════════════════════════

def log_route_performance(method, path, rule, time_ms, user=None):
    """
    Registra el rendimiento de una ruta en performance.log

    Args:
        method: GET, POST, etc.
        path: Ruta solicitada (/api/cotizaciones/3/aprobar)
        rule: Regla de Flask (/api/cotizaciones/<int:quote_id>/aprobar)
        time_ms: Tiempo en milisegundos
        user: Usuario que hizo la petición (opcional)
    """
    if not ENABLE_PROFILING:
        return

    action_name = _get_route_name(method, path, rule)
    user_str = user or 'anónimo'

    log_entry = f"""
════════════════════════════════════════
[PERFORMANCE] {_get_timestamp()}
────────────────────────────────────────
Acción: {action_name}
Usuario: {user_str}
Ruta: {method} {path}
Tiempo: {time_ms:.0f} ms
"""

    _write_log(PERFORMANCE_LOG, log_entry)


def log_slow_route(method, path, rule, time_ms, user=None, level='WARNING'):
    """
    Registra una ruta lenta en slow_routes.log

    Args:
        level: 'WARNING' (>300ms) o 'CRITICAL' (>700ms)
    """
    if not ENABLE_PROFILING:
        return

    action_name = _get_route_name(method, path, rule)
    user_str = user or 'anónimo'
    severity = 'LENTA' if level == 'WARNING' else 'MUY LENTA'
    threshold = THRESHOLD_WARNING if level == 'WARNING' else THRESHOLD_CRITICAL

    log_entry = f"""
[{level}] {_get_timestamp()}
────────────────────────────────────────
Ruta {severity}: {action_name}
Usuario: {user_str}
Detalle: {method} {path}
Tiempo: {time_ms:.0f} ms (umbral: {threshold} ms)
────────────────────────────────────────
"""

    _write_log(SLOW_ROUTES_LOG, log_entry)


# ═══════════════════════════════════════════════════════════════════════════
# 2️⃣ HOOKS PARA FLASK (before/after request)
# ═══════════════════════════════════════════════════════════════════════════

def init_profiling(app):
    """
    Inicializa el sistema de profiling en una app Flask.
    Registra hooks before_request y after_request.

    Uso:
        from app_cotizaciones.performance_logger import init_profiling
        init_profiling(app)
    """
    if not ENABLE_PROFILING:
        return

    @app.before_request
    def _start_timer():
        from flask import g
        g.start_time = time.perf_counter()

    @app.after_request
    def _log_request(response):
        from flask import g, request, session

        if not hasattr(g, 'start_time'):
            return response

        elapsed = (time.perf_counter() - g.start_time) * 1000  # ms

        method = request.method
        path = request.path
        rule = str(request.url_rule) if request.url_rule else path
        user = session.get('user')

        log_route_performance(method, path, rule, elapsed, user)

        if elapsed >= THRESHOLD_CRITICAL:
            log_slow_route(method, path, rule, elapsed, user, 'CRITICAL')
        elif elapsed >= THRESHOLD_WARNING:
            log_slow_route(method, path, rule, elapsed, user, 'WARNING')

        return response


# ═══════════════════════════════════════════════════════════════════════════
# 3️⃣ DECORADOR PARA FUNCIONES CLAVE
# ═══════════════════════════════════════════════════════════════════════════

def profile_function(func=None, name=None):
    """
    Decorador para medir rendimiento de funciones críticas.

    Uso:
        @profile_function
        def mi_funcion():
            ...

        @profile_function(name="Transición de estado")
        def transition():
            ...

    Las llamadas que superan THRESHOLD_WARNING quedan en slow_functions.log.
    """
    def decorator(fn):
        if not ENABLE_PROFILING:
            return fn

        func_name = name or fn.__name__

        @wraps(fn)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                elapsed_ms = (time.perf_counter() - start) * 1000

                if elapsed_ms >= THRESHOLD_WARNING:
                    _log_slow_function_call(func_name, elapsed_ms)

        return wrapper

    # Permitir uso sin paréntesis: @profile_function
    if func is not None:
        return decorator(func)
    return decorator


def _log_slow_function_call(func_name, time_ms):
    """Registra una llamada lenta a una función"""
    severity = 'CRÍTICO' if time_ms >= THRESHOLD_CRITICAL else 'LENTO'

    log_entry = f"""
[{severity}] {_get_timestamp()}
Función: {func_name}
Tiempo: {time_ms:.0f} ms
────────────────────────────────────────
"""

    _write_log(SLOW_FUNCTIONS_LOG, log_entry)


# ═══════════════════════════════════════════════════════════════════════════
# 4️⃣ EVENTOS DE SINCRONIZACIÓN
# ═══════════════════════════════════════════════════════════════════════════

def log_sync_event(event, cotizacion_id='', detail='', level='INFO'):
    """
    Registra un evento de sincronización en sync.log

    Se escribe siempre (no depende de ENABLE_PROFILING): es el único rastro
    de una falla de red que el usuario no ve.

    Args:
        event: PUSH_OK, PUSH_FAIL, RETRY, GIVE_UP, PULL, RECONCILE
        cotizacion_id: Cotización afectada
        detail: Mensaje de error o resumen
        level: INFO, WARNING o ERROR
    """
    log_entry = f"[{level}] {_get_timestamp()} {event}"
    if cotizacion_id:
        log_entry += f" {cotizacion_id}"
    if detail:
        log_entry += f" | {detail}"
    _write_log(SYNC_LOG, log_entry + "\n")


# ═══════════════════════════════════════════════════════════════════════════
# EXPORTAR API PÚBLICA
# ═══════════════════════════════════════════════════════════════════════════

__all__ = [
    'ENABLE_PROFILING',
    'configure_logs_dir',
    'init_profiling',
    'profile_function',
    'log_sync_event',
]
