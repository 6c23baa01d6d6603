import pytest
from werkzeug.security import generate_password_hash

from app_cotizaciones.app_container import AppContainer
from app_cotizaciones.config import AppConfig
from app_cotizaciones.models.entities import UserProfile, UserRole
from app_cotizaciones.performance_logger import configure_logs_dir
from app_cotizaciones.services.permission_service import role_permissions

PASSWORD = 'secreto123'

VENDEDOR = 'vendedor@tecnophone.com'
OTRO_VENDEDOR = 'otro@tecnophone.com'
REVISOR = 'revisor@tecnophone.com'
COMPRADOR = 'comprador@tecnophone.com'
ADMIN = 'admin@tecnophone.com'


def sample_row(**overrides):
    row = {
        'itemName': 'Portátil',
        'cantidad': 1,
        'costoUSD': 100,
        'trm': 0,
        'pvpUnitario': 1_000_000,
    }
    row.update(overrides)
    return row


@pytest.fixture
def config(tmp_path):
    configure_logs_dir(str(tmp_path / 'logs'))
    return AppConfig(
        data_dir=str(tmp_path / 'data'),
        sync_enabled=False,
        sync_max_retries=3,
        sync_backoff=0.0,
        sync_backoff_max=0.0,
        secret_key='test-secret',
        company_id='TECNOPHONE',
    )


@pytest.fixture
def container(config):
    AppContainer.reset_instance()
    c = AppContainer(config)
    yield c
    AppContainer.reset_instance()


def add_user(container, email, role, active=True, password=PASSWORD):
    role = UserRole(role)
    profile = UserProfile(
        email=email,
        displayName=email.split('@')[0],
        role=role,
        permissions=sorted(role_permissions(role)),
        isActive=active,
        companyId='TECNOPHONE',
    )
    container.user_repo.create_profile(
        email, dict(profile.to_dict(), password_hash=generate_password_hash(password))
    )
    return container.permission_service.resolve(email)


@pytest.fixture
def users(container):
    """Un actor por rol más un segundo vendedor."""
    return {
        'vendedor': add_user(container, VENDEDOR, 'vendedor'),
        'otro': add_user(container, OTRO_VENDEDOR, 'vendedor'),
        'revisor': add_user(container, REVISOR, 'revisor'),
        'comprador': add_user(container, COMPRADOR, 'comprador'),
        'admin': add_user(container, ADMIN, 'admin'),
    }


@pytest.fixture
def quote_service(container):
    return container.quote_service
