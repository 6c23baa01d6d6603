import pytest

from app_cotizaciones import company_config
from app_cotizaciones.errors import (
    AUTH_ERROR_MESSAGES,
    DEFAULT_AUTH_ERROR_MESSAGE,
    AuthError,
    CodeRequired,
    get_error_message,
)
from app_cotizaciones.services.auth_service import (
    MAX_FAILED_ATTEMPTS,
    AuthService,
    AuthSession,
)
from app_cotizaciones.tests.conftest import PASSWORD, VENDEDOR, add_user

CODE = company_config.COMPANY_CONFIG['code']


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth(container, clock):
    return AuthService(container.user_repo, container.audit_service, 'TECNOPHONE', clock=clock)


def test_register_requires_company_code(auth):
    with pytest.raises(CodeRequired):
        auth.register(AuthSession(), 'nuevo@tecnophone.com', PASSWORD)


def test_invalid_code_does_not_unlock_registration(auth):
    session = AuthSession()
    assert auth.validate_company_code(session, 'MAL') is False
    with pytest.raises(CodeRequired):
        auth.register(session, 'nuevo@tecnophone.com', PASSWORD)


def test_register_creates_vendedor_and_signs_in(auth, container):
    session = AuthSession()
    assert auth.validate_company_code(session, CODE)
    profile = auth.register(session, 'Nuevo@Tecnophone.com', PASSWORD, 'Nuevo')

    assert profile['email'] == 'nuevo@tecnophone.com'
    assert profile['role'] == 'vendedor'
    assert 'password_hash' not in profile
    assert profile['metadata']['companyEmail'] is True
    assert session.user == 'nuevo@tecnophone.com'
    assert session.company_code_validated is False
    assert container.permission_service.resolve('nuevo@tecnophone.com').has('create_quotes')


@pytest.mark.parametrize('email, password, code', [
    ('', PASSWORD, 'auth/missing-email'),
    ('no-es-email', PASSWORD, 'auth/invalid-email'),
    ('ok@tecnophone.com', '123', 'auth/weak-password'),
])
def test_register_validation_errors(auth, email, password, code):
    session = AuthSession(company_code_validated=True)
    with pytest.raises(AuthError) as excinfo:
        auth.register(session, email, password)
    assert excinfo.value.code == code
    assert excinfo.value.message == AUTH_ERROR_MESSAGES[code]


def test_register_duplicate_email(auth, container):
    add_user(container, VENDEDOR, 'vendedor')
    with pytest.raises(AuthError) as excinfo:
        auth.register(AuthSession(company_code_validated=True), VENDEDOR, PASSWORD)
    assert excinfo.value.code == 'auth/email-already-in-use'


def test_login_logout_notify_subscribers(auth, container):
    add_user(container, VENDEDOR, 'vendedor')
    events = []
    subscription = auth.on_auth_state_change(lambda email, profile: events.append(email))

    session = AuthSession()
    auth.login(session, VENDEDOR, PASSWORD)
    auth.logout(session)
    assert events == [VENDEDOR, None]
    assert container.user_repo.get_profile(VENDEDOR)['lastLogin']

    subscription.unsubscribe()
    subscription.unsubscribe()
    auth.login(session, VENDEDOR, PASSWORD)
    assert events == [VENDEDOR, None]


def test_subscription_as_context_manager(auth, container):
    add_user(container, VENDEDOR, 'vendedor')
    events = []
    with auth.on_auth_state_change(lambda email, profile: events.append(profile['role'])):
        auth.login(AuthSession(), VENDEDOR, PASSWORD)
    auth.login(AuthSession(), VENDEDOR, PASSWORD)
    assert events == ['vendedor']


def test_login_errors(auth, container):
    add_user(container, VENDEDOR, 'vendedor')
    add_user(container, 'inactivo@tecnophone.com', 'vendedor', active=False)
    cases = [
        ('nadie@tecnophone.com', PASSWORD, 'auth/user-not-found'),
        (VENDEDOR, 'incorrecta', 'auth/wrong-password'),
        ('inactivo@tecnophone.com', PASSWORD, 'auth/user-disabled'),
    ]
    for email, password, code in cases:
        with pytest.raises(AuthError) as excinfo:
            auth.login(AuthSession(), email, password)
        assert excinfo.value.code == code


def test_lockout_after_repeated_failures(auth, container, clock):
    add_user(container, VENDEDOR, 'vendedor')
    for _ in range(MAX_FAILED_ATTEMPTS):
        with pytest.raises(AuthError):
            auth.login(AuthSession(), VENDEDOR, 'incorrecta')

    with pytest.raises(AuthError) as excinfo:
        auth.login(AuthSession(), VENDEDOR, PASSWORD)
    assert excinfo.value.code == 'auth/too-many-requests'

    clock.now += 15 * 60 + 1
    assert auth.login(AuthSession(), VENDEDOR, PASSWORD)['email'] == VENDEDOR


def test_password_reset_flow(auth, container):
    add_user(container, VENDEDOR, 'vendedor')
    token = auth.reset_password(VENDEDOR)

    with pytest.raises(AuthError) as excinfo:
        auth.confirm_password_reset(VENDEDOR, 'otro-token', 'nueva-clave')
    assert excinfo.value.code == 'auth/invalid-credential'

    auth.confirm_password_reset(VENDEDOR, token, 'nueva-clave')
    assert auth.login(AuthSession(), VENDEDOR, 'nueva-clave')['email'] == VENDEDOR

    with pytest.raises(AuthError):
        auth.confirm_password_reset(VENDEDOR, token, 'otra-clave')


def test_session_round_trip():
    session = AuthSession(user='a@b.co', company_code_validated=True)
    assert AuthSession.from_dict(session.to_dict()) == session
    assert AuthSession.from_dict(None) == AuthSession()


def test_error_message_table_is_total():
    assert get_error_message('auth/wrong-password') == 'Contraseña incorrecta.'
    assert get_error_message('auth/algo-nuevo') == DEFAULT_AUTH_ERROR_MESSAGE
    assert get_error_message(None) == DEFAULT_AUTH_ERROR_MESSAGE


@pytest.mark.parametrize('code,key', [
    ('company/code-required', 'code_required'),
    ('company/invalid-code', 'invalid_code'),
    ('company/email-not-allowed', 'email_not_allowed'),
    ('company/full', 'company_full'),
])
def test_company_messages_come_from_company_config(code, key):
    assert AUTH_ERROR_MESSAGES[code] == company_config.COMPANY_ERROR_MESSAGES[key]
    assert get_error_message(code) == company_config.COMPANY_ERROR_MESSAGES[key]
