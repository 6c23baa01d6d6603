from flask import Flask, current_app, jsonify, request, session
from functools import wraps
import os

# Sistema de profiling interno
from app_cotizaciones.performance_logger import configure_logs_dir, init_profiling

# ═══════════════════════════════════════════════════════════════════════════
# CONTENEDOR DE DEPENDENCIAS - Servicios y Repositorios
# ═══════════════════════════════════════════════════════════════════════════
# Las rutas solo traducen HTTP ↔ servicios. Toda la lógica de negocio vive
# en services/; los errores de negocio se convierten a JSON en un único
# manejador de errores.
# ═══════════════════════════════════════════════════════════════════════════
from app_cotizaciones.app_container import AppContainer
from app_cotizaciones.config import AppConfig
from app_cotizaciones.errors import (
    AuthError,
    CodeRequired,
    Conflict,
    CotizacionesError,
    Forbidden,
    InvalidTransition,
    NotFound,
    SyncFailure,
    ValidationFailure,
)
from app_cotizaciones.models.entities import PROVIDER_CATEGORIES
from app_cotizaciones.services.auth_service import AuthSession
from app_cotizaciones.services.migration_service import LEGACY_FILE
from app_cotizaciones.services.quote_service import is_visible


# Código HTTP por tipo de error de negocio
ERROR_STATUS = (
    (NotFound, 404),
    (Forbidden, 403),
    (InvalidTransition, 409),
    (Conflict, 409),
    (ValidationFailure, 422),
    (CodeRequired, 403),
    (SyncFailure, 503),
)

# Errores de login que equivalen a credenciales rechazadas
UNAUTHORIZED_AUTH_CODES = frozenset([
    'auth/user-not-found',
    'auth/wrong-password',
    'auth/user-disabled',
    'auth/invalid-credential',
])


def _status_for(error: CotizacionesError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    if isinstance(error, AuthError):
        if error.code == 'auth/too-many-requests':
            return 429
        if error.code in UNAUTHORIZED_AUTH_CODES:
            return 401
        return 400
    return 500


# ═══════════════════════════════════════════════════════════════════════════
# HELPERS DE SESIÓN
# ═══════════════════════════════════════════════════════════════════════════

def _container() -> AppContainer:
    return current_app.extensions['cotizaciones']


def _auth_session() -> AuthSession:
    return AuthSession.from_dict(session)


def _save_auth_session(auth: AuthSession) -> None:
    session.update(auth.to_dict())


def _actor():
    """Actor resuelto del usuario en sesión."""
    return _container().permission_service.resolve(session.get('user'))


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def login_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not session.get('user'):
            return jsonify({"success": False, "code": "unauthenticated",
                            "error": "Debes iniciar sesión."}), 401
        return f(*args, **kwargs)
    return wrapper


def permission_required(permission):
    def deco(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            actor = _actor()
            if not actor.has(permission):
                raise Forbidden(f'Se requiere el permiso {permission}', permission)
            return f(*args, **kwargs)
        return wrapper
    return deco


def _quote_json(quote) -> dict:
    return quote.to_dict()


def _user_result(result: dict):
    """Traduce el {'ok': ...} de UserService a una respuesta."""
    if not result.get('ok'):
        return jsonify({"success": False, "error": result.get('error', 'Error')}), 400
    return jsonify(dict(result, success=True))


# ═══════════════════════════════════════════════════════════════════════════
# FÁBRICA DE LA APLICACIÓN
# ═══════════════════════════════════════════════════════════════════════════

def create_app(config: AppConfig = None, remote=None) -> Flask:
    """
    Construye la app Flask con su contenedor de dependencias.

    Args:
        config: Configuración (por defecto AppConfig.from_env())
        remote: Almacén remoto ya construido (tests)
    """
    config = config or AppConfig.from_env()
    app = Flask(__name__)

    AppContainer.reset_instance()
    container = AppContainer(config, remote=remote)
    app.extensions['cotizaciones'] = container

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURACIÓN DE SESIONES
    # ═══════════════════════════════════════════════════════════════════════
    if config.production and config.secret_key == AppConfig.secret_key:
        print("[ADVERTENCIA] Modo producción con la clave de sesión por defecto")
        print("[ADVERTENCIA] Define COTIZ_SECRET_KEY para mayor seguridad")

    app.secret_key = config.secret_key
    app.config.update(
        SESSION_COOKIE_HTTPONLY=True,      # Protege contra XSS
        SESSION_COOKIE_SECURE=config.production,
        SESSION_COOKIE_SAMESITE='Lax',     # Protección CSRF básica
        PERMANENT_SESSION_LIFETIME=86400,  # 24 horas
        MAX_CONTENT_LENGTH=5 * 1024 * 1024,
    )

    # Logs de rendimiento junto a los datos
    configure_logs_dir(os.path.join(config.data_dir, 'logs'))
    init_profiling(app)

    if config.sync_enabled and not config.remote_url:
        print("[SYNC] COTIZ_REMOTE_URL no definida: se usa el espejo local remote_cotizaciones.json")

    try:
        migration = container.run_legacy_migration()
    except ValidationFailure as e:
        # Queda sin marcar: se reintenta en el próximo arranque
        print(f"[ADVERTENCIA] No se pudo importar {LEGACY_FILE}: {e.message}")
    else:
        if migration['migrated'] or migration['errors']:
            print(f"[INFO] Migración legacy: {migration['migrated']} importadas, "
                  f"{len(migration['errors'])} con error")

    @app.errorhandler(CotizacionesError)
    def _handle_business_error(error):
        return jsonify(error.to_dict()), _status_for(error)

    _register_auth_routes(app)
    _register_quote_routes(app)
    _register_sync_routes(app)
    _register_user_routes(app)
    _register_provider_routes(app)
    return app


# ═══════════════════════════════════════════════════════════════════════════
# AUTENTICACIÓN
# ═══════════════════════════════════════════════════════════════════════════

def _register_auth_routes(app):

    @app.route('/api/auth/company-code', methods=['POST'])
    def validate_company_code():
        auth = _auth_session()
        valid = _container().auth_service.validate_company_code(auth, _payload().get('code', ''))
        _save_auth_session(auth)
        if not valid:
            raise AuthError('company/invalid-code')
        return jsonify({"success": True})

    @app.route('/api/auth/register', methods=['POST'])
    def register():
        data = _payload()
        auth = _auth_session()
        try:
            profile = _container().auth_service.register(
                auth, data.get('email', ''), data.get('password', ''), data.get('displayName', '')
            )
        finally:
            _save_auth_session(auth)
        return jsonify({"success": True, "user": profile}), 201

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        data = _payload()
        auth = _auth_session()
        profile = _container().auth_service.login(auth, data.get('email', ''), data.get('password', ''))
        session.permanent = True
        _save_auth_session(auth)
        return jsonify({"success": True, "user": profile})

    @app.route('/api/auth/logout', methods=['POST'])
    def logout():
        auth = _auth_session()
        _container().auth_service.logout(auth)
        session.clear()
        return jsonify({"success": True})

    @app.route('/api/auth/reset-password', methods=['POST'])
    def reset_password():
        token = _container().auth_service.reset_password(_payload().get('email', ''))
        # El token se entrega por un canal externo; aquí solo se confirma
        current_app.logger.info('Token de cambio de contraseña generado')
        response = {"success": True}
        if current_app.testing:
            response['token'] = token
        return jsonify(response)

    @app.route('/api/auth/reset-password/confirm', methods=['POST'])
    def confirm_password_reset():
        data = _payload()
        _container().auth_service.confirm_password_reset(
            data.get('email', ''), data.get('token', ''), data.get('password', '')
        )
        return jsonify({"success": True})

    @app.route('/api/auth/me')
    @login_required
    def me():
        actor = _actor()
        profile = _container().auth_service.current_user(_auth_session())
        return jsonify({
            "success": True,
            "user": profile,
            "role": actor.role.value,
            "permissions": sorted(actor.permissions),
        })


# ═══════════════════════════════════════════════════════════════════════════
# COTIZACIONES
# ═══════════════════════════════════════════════════════════════════════════

def _register_quote_routes(app):

    @app.route('/api/cotizaciones', methods=['GET'])
    @login_required
    def list_quotes():
        actor = _actor()
        quote_service = _container().quote_service
        cliente = request.args.get('cliente')
        if cliente:
            quotes = quote_service.search_by_client(cliente, actor)
        else:
            quotes = quote_service.list_by_status(request.args.get('estado', 'all'), actor)
        return jsonify({
            "success": True,
            "cotizaciones": [_quote_json(q) for q in quotes],
            "stats": quote_service.get_stats(actor),
        })

    @app.route('/api/cotizaciones', methods=['POST'])
    @login_required
    def create_quote():
        quote = _container().quote_service.create_quote(_payload(), _actor())
        return jsonify({"success": True, "cotizacion": _quote_json(quote)}), 201

    @app.route('/api/cotizaciones/<int:quote_id>', methods=['GET'])
    @login_required
    def get_quote(quote_id):
        quote = _container().quote_service.get_quote(quote_id)
        if not is_visible(quote, _actor()):
            raise Forbidden('No tienes acceso a esta cotización')
        return jsonify({"success": True, "cotizacion": _quote_json(quote)})

    @app.route('/api/cotizaciones/<int:quote_id>', methods=['PUT'])
    @login_required
    def update_quote(quote_id):
        quote = _container().quote_service.update_quote(quote_id, _payload(), _actor())
        return jsonify({"success": True, "cotizacion": _quote_json(quote)})

    @app.route('/api/cotizaciones/<int:quote_id>', methods=['DELETE'])
    @login_required
    def delete_quote(quote_id):
        deleted = _container().quote_service.delete_quote(quote_id, _actor())
        return jsonify({"success": deleted})

    # ── Flujo de aprobación ──────────────────────────────────────────────────
    # Cada acción acepta 'expectedStatus' (el estado que vio el usuario); si la
    # cotización cambió mientras tanto la respuesta es 409.

    @app.route('/api/cotizaciones/<int:quote_id>/enviar', methods=['POST'])
    @login_required
    def submit_quote(quote_id):
        quote = _container().quote_service.submit_for_approval(
            quote_id, _actor(), expected_status=_payload().get('expectedStatus')
        )
        return jsonify({"success": True, "cotizacion": _quote_json(quote)})

    @app.route('/api/cotizaciones/<int:quote_id>/aprobar', methods=['POST'])
    @login_required
    def approve_quote(quote_id):
        data = _payload()
        quote = _container().quote_service.approve(
            quote_id, _actor(), expected_status=data.get('expectedStatus'),
            selected_options=data.get('selectedOptions'), item_comments=data.get('itemComments')
        )
        return jsonify({"success": True, "cotizacion": _quote_json(quote)})

    @app.route('/api/cotizaciones/<int:quote_id>/rechazar', methods=['POST'])
    @login_required
    def reject_quote(quote_id):
        data = _payload()
        quote = _container().quote_service.reject(
            quote_id, _actor(), data.get('reason', ''), expected_status=data.get('expectedStatus'),
            item_comments=data.get('itemComments')
        )
        return jsonify({"success": True, "cotizacion": _quote_json(quote)})

    @app.route('/api/cotizaciones/<int:quote_id>/revision', methods=['POST'])
    @login_required
    def request_revision(quote_id):
        data = _payload()
        quote = _container().quote_service.request_revision(
            quote_id, _actor(), data.get('comments', ''), expected_status=data.get('expectedStatus'),
            item_comments=data.get('itemComments')
        )
        return jsonify({"success": True, "cotizacion": _quote_json(quote)})

    @app.route('/api/cotizaciones/<int:quote_id>/duplicar', methods=['POST'])
    @login_required
    def duplicate_quote(quote_id):
        quote = _container().quote_service.duplicate_quote(quote_id, _actor())
        return jsonify({"success": True, "cotizacion": _quote_json(quote)}), 201

    # ── Compras ─────────────────────────────────────────────────────────────

    @app.route('/api/cotizaciones/<int:quote_id>/compra', methods=['POST'])
    @login_required
    def purchase_price(quote_id):
        data = _payload()
        try:
            item_index = int(data.get('itemIndex'))
        except (TypeError, ValueError):
            raise ValidationFailure('itemIndex inválido')
        entry = _container().purchase_service.update_final_purchase_price(
            quote_id, item_index, data.get('finalPrice'), _actor(), data.get('notes', '')
        )
        return jsonify({"success": True, "compra": entry})

    @app.route('/api/cotizaciones/<int:quote_id>/compra/finalizar', methods=['POST'])
    @login_required
    def finalize_purchase(quote_id):
        quote = _container().purchase_service.finalize_purchase(
            quote_id, _actor(), _payload().get('notes', '')
        )
        return jsonify({"success": True, "cotizacion": _quote_json(quote)})

    @app.route('/api/compras/stats')
    @login_required
    def purchase_stats():
        stats = _container().purchase_service.get_purchase_stats(_actor())
        return jsonify({"success": True, "stats": stats})


# ═══════════════════════════════════════════════════════════════════════════
# SINCRONIZACIÓN Y DIAGNÓSTICO
# ═══════════════════════════════════════════════════════════════════════════

def _register_sync_routes(app):

    @app.route('/api/sync', methods=['POST'])
    @login_required
    def sync_with_cloud():
        result = _container().sync_service.sync_with_cloud(_actor())
        return jsonify(result)

    @app.route('/api/sync/reconcile')
    @login_required
    def reconcile():
        report = _container().sync_service.reconcile(_actor())
        return jsonify({"success": True, "reporte": report.to_dict()})

    @app.route('/api/sync/stats')
    @login_required
    def sync_stats():
        return jsonify({"success": True, "stats": _container().sync_service.get_sync_stats()})

    @app.route('/api/diagnostico')
    @login_required
    @permission_required('view_all_quotes')
    def diagnostics():
        report = _container().diagnostics_service.full_report(_actor())
        return jsonify({"success": True, "diagnostico": report})


# ═══════════════════════════════════════════════════════════════════════════
# USUARIOS
# ═══════════════════════════════════════════════════════════════════════════

def _register_user_routes(app):

    @app.route('/api/usuarios', methods=['GET'])
    @login_required
    @permission_required('manage_users')
    def list_users():
        user_service = _container().user_service
        return jsonify({
            "success": True,
            "usuarios": user_service.get_all_users(),
            "stats": user_service.get_user_stats(),
        })

    @app.route('/api/usuarios', methods=['POST'])
    @login_required
    def create_user():
        data = _payload()
        result = _container().user_service.create_user(
            data.get('email', ''), data.get('password', ''), data.get('role', ''),
            _actor(), data.get('displayName', '')
        )
        return _user_result(result)

    @app.route('/api/usuarios/<email>', methods=['DELETE'])
    @login_required
    def delete_user(email):
        return _user_result(_container().user_service.delete_user(email, _actor()))

    @app.route('/api/usuarios/<email>/rol', methods=['POST'])
    @login_required
    def change_role(email):
        result = _container().user_service.change_role(email, _payload().get('role', ''), _actor())
        return _user_result(result)

    @app.route('/api/usuarios/<email>/estado', methods=['POST'])
    @login_required
    def set_user_active(email):
        result = _container().user_service.set_active(
            email, bool(_payload().get('active', True)), _actor()
        )
        return _user_result(result)


# ═══════════════════════════════════════════════════════════════════════════
# PROVEEDORES
# ═══════════════════════════════════════════════════════════════════════════

def _register_provider_routes(app):

    @app.route('/api/proveedores', methods=['GET'])
    @login_required
    def list_providers():
        actor = _actor()
        provider_service = _container().provider_service
        term = request.args.get('q')
        category = request.args.get('categoria')
        if term is not None:
            providers = provider_service.search_by_name(term, actor)
        elif category:
            providers = provider_service.get_by_category(category, actor)
        else:
            providers = provider_service.get_all(actor)
        return jsonify({
            "success": True,
            "proveedores": [p.to_dict() for p in providers],
            "categorias": list(PROVIDER_CATEGORIES),
        })

    @app.route('/api/proveedores', methods=['POST'])
    @login_required
    def add_provider():
        provider = _container().provider_service.add(_payload(), _actor())
        return jsonify({"success": True, "proveedor": provider.to_dict()}), 201

    @app.route('/api/proveedores/<provider_id>', methods=['GET'])
    @login_required
    def get_provider(provider_id):
        provider = _container().provider_service.get_by_id(provider_id, _actor())
        return jsonify({"success": True, "proveedor": provider.to_dict()})

    @app.route('/api/proveedores/<provider_id>', methods=['PUT'])
    @login_required
    def update_provider(provider_id):
        provider = _container().provider_service.update(provider_id, _payload(), _actor())
        return jsonify({"success": True, "proveedor": provider.to_dict()})

    @app.route('/api/proveedores/<provider_id>', methods=['DELETE'])
    @login_required
    def delete_provider(provider_id):
        _container().provider_service.delete(provider_id, _actor())
        return jsonify({"success": True})

    @app.route('/api/proveedores/stats')
    @login_required
    def provider_stats():
        return jsonify({"success": True,
                        "stats": _container().provider_service.get_stats(_actor())})

    @app.route('/api/proveedores/export')
    @login_required
    def export_providers():
        return jsonify(_container().provider_service.export_providers(_actor()))

    @app.route('/api/proveedores/import', methods=['POST'])
    @login_required
    def import_providers():
        imported = _container().provider_service.import_providers(
            request.get_json(silent=True), _actor()
        )
        return jsonify({"success": True, "importados": len(imported)})

    @app.route('/api/proveedores/sync', methods=['POST'])
    @login_required
    def sync_providers():
        result = _container().provider_service.sync_with_remote(_actor())
        return jsonify(dict(result, success=True))


if __name__ == "__main__":
    # Configuración para desarrollo local y acceso desde red WiFi
    # En producción usar WSGI (gunicorn, waitress, etc.)
    DEBUG = os.environ.get('FLASK_DEBUG', '0') == '1'
    HOST = os.environ.get('FLASK_HOST', '0.0.0.0')  # Escucha en todas las interfaces
    PORT = int(os.environ.get('FLASK_PORT', 5000))

    application = create_app()
    if not DEBUG:
        print(f"\n{'='*50}")
        print(f"  Servidor iniciado en http://{HOST}:{PORT}")
        print(f"  Acceso local: http://localhost:{PORT}")
        print(f"{'='*50}\n")

    try:
        application.run(host=HOST, port=PORT, debug=DEBUG, threaded=True)
    finally:
        AppContainer.reset_instance()
