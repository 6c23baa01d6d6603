import os

import pytest

from app_cotizaciones import company_config
from app_cotizaciones.app_container import AppContainer
from app_cotizaciones.main import create_app
from app_cotizaciones.services.migration_service import LEGACY_FILE
from app_cotizaciones.tests.conftest import (
    ADMIN,
    PASSWORD,
    REVISOR,
    VENDEDOR,
    add_user,
    sample_row,
)


@pytest.fixture
def app(config):
    app = create_app(config)
    app.testing = True
    container = app.extensions['cotizaciones']
    add_user(container, VENDEDOR, 'vendedor')
    add_user(container, REVISOR, 'revisor')
    add_user(container, ADMIN, 'admin')
    yield app
    AppContainer.reset_instance()


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


def login(client, email, password=PASSWORD):
    r = client.post('/api/auth/login', json={'email': email, 'password': password})
    assert r.status_code == 200, r.get_json()
    return r.get_json()['user']


def create_quote(client, rows=None):
    r = client.post('/api/cotizaciones', json={
        'clienteName': 'Acme',
        'rows': [sample_row()] if rows is None else rows,
    })
    assert r.status_code == 201, r.get_json()
    return r.get_json()['cotizacion']


def test_requires_login(client):
    r = client.get('/api/cotizaciones')
    assert r.status_code == 401
    assert r.get_json()['code'] == 'unauthenticated'


def test_registration_flow(client):
    r = client.post('/api/auth/register', json={'email': 'nuevo@tecnophone.com', 'password': PASSWORD})
    assert r.status_code == 403
    assert r.get_json()['code'] == 'company/code-required'

    r = client.post('/api/auth/company-code', json={'code': 'NO-ES'})
    assert r.status_code == 400
    assert r.get_json()['code'] == 'company/invalid-code'

    r = client.post('/api/auth/company-code', json={'code': company_config.COMPANY_CONFIG['code']})
    assert r.status_code == 200
    r = client.post('/api/auth/register', json={'email': 'nuevo@tecnophone.com', 'password': PASSWORD})
    assert r.status_code == 201

    me = client.get('/api/auth/me').get_json()
    assert me['user']['email'] == 'nuevo@tecnophone.com'
    assert me['role'] == 'vendedor'
    assert 'create_quotes' in me['permissions']


def test_wrong_password_message(client):
    r = client.post('/api/auth/login', json={'email': VENDEDOR, 'password': 'nope'})
    assert r.status_code == 401
    assert r.get_json()['error'] == 'Contraseña incorrecta.'


def test_approval_workflow_over_http(client):
    login(client, VENDEDOR)
    quote = create_quote(client)
    assert quote['status'] == 'draft'

    r = client.post(f"/api/cotizaciones/{quote['id']}/enviar")
    assert r.get_json()['cotizacion']['status'] == 'pending_approval'

    r = client.post(f"/api/cotizaciones/{quote['id']}/aprobar")
    assert r.status_code == 403
    client.post('/api/auth/logout')

    login(client, REVISOR)
    pending = client.get('/api/cotizaciones?estado=pending').get_json()['cotizaciones']
    assert [q['id'] for q in pending] == [quote['id']]

    r = client.post(f"/api/cotizaciones/{quote['id']}/aprobar", json={'expectedStatus': 'pending'})
    assert r.status_code == 200
    r = client.post(f"/api/cotizaciones/{quote['id']}/rechazar",
                    json={'reason': 'tarde', 'expectedStatus': 'pending'})
    assert r.status_code == 409

    approved = client.get('/api/cotizaciones?estado=approved').get_json()
    assert [q['id'] for q in approved['cotizaciones']] == [quote['id']]
    assert approved['stats']['approved'] == 1


def test_error_mapping(client):
    login(client, VENDEDOR)
    empty = create_quote(client, rows=[])
    assert client.post(f"/api/cotizaciones/{empty['id']}/enviar").status_code == 422
    assert client.post(f"/api/cotizaciones/{empty['id']}/revision",
                       json={'comments': 'x'}).status_code == 409
    assert client.get('/api/cotizaciones/999').status_code == 404
    assert client.get('/api/cotizaciones?estado=archivadas').status_code == 422
    assert client.put(f"/api/cotizaciones/{empty['id']}", json={'status': 'approved'}).status_code == 422


def test_edit_duplicate_delete(client):
    login(client, VENDEDOR)
    quote = create_quote(client)
    r = client.put(f"/api/cotizaciones/{quote['id']}", json={'notes': 'Entrega en 15 días'})
    assert r.get_json()['cotizacion']['notes'] == 'Entrega en 15 días'

    r = client.post(f"/api/cotizaciones/{quote['id']}/duplicar")
    assert r.status_code == 201
    duplicate = r.get_json()['cotizacion']
    assert duplicate['clienteName'] == 'Acme (Copia)'

    assert client.delete(f"/api/cotizaciones/{duplicate['id']}").get_json()['success'] is True
    assert client.get(f"/api/cotizaciones/{duplicate['id']}").status_code == 404


def test_other_users_quote_is_hidden(client):
    login(client, VENDEDOR)
    quote = create_quote(client)
    client.post('/api/auth/logout')

    add_user(client.application.extensions['cotizaciones'], 'otro@tecnophone.com', 'vendedor')
    login(client, 'otro@tecnophone.com')
    assert client.get(f"/api/cotizaciones/{quote['id']}").status_code == 403
    assert client.get('/api/cotizaciones').get_json()['cotizaciones'] == []


def test_sync_and_diagnostics(client):
    login(client, VENDEDOR)
    create_quote(client)
    assert client.get('/api/sync/stats').get_json()['stats']['pending'] == 1
    assert client.get('/api/diagnostico').status_code == 403
    client.post('/api/auth/logout')

    login(client, REVISOR)
    r = client.post('/api/sync')
    assert r.status_code == 200
    assert r.get_json()['push']['pushed'] == 1

    report = client.get('/api/sync/reconcile').get_json()['reporte']
    assert report['isConsistent'] is True

    diagnostico = client.get('/api/diagnostico').get_json()['diagnostico']
    assert diagnostico['estados']['porEstado'] == {'draft': 1}


def test_user_administration(client):
    login(client, VENDEDOR)
    assert client.get('/api/usuarios').status_code == 403
    client.post('/api/auth/logout')

    login(client, ADMIN)
    users = client.get('/api/usuarios').get_json()
    assert users['stats']['total'] == 3

    r = client.post(f'/api/usuarios/{VENDEDOR}/rol', json={'role': 'comprador'})
    assert r.get_json()['role'] == 'comprador'
    r = client.post(f'/api/usuarios/{ADMIN}/estado', json={'active': False})
    assert r.status_code == 400


def test_password_reset_over_http(client):
    token = client.post('/api/auth/reset-password', json={'email': VENDEDOR}).get_json()['token']
    r = client.post('/api/auth/reset-password/confirm',
                    json={'email': VENDEDOR, 'token': token, 'password': 'clave-nueva'})
    assert r.status_code == 200
    login(client, VENDEDOR, 'clave-nueva')


def test_create_over_http_ignores_status_and_checks_rows(client):
    login(client, VENDEDOR)
    r = client.post('/api/cotizaciones', json={
        'clienteName': 'Acme', 'rows': [sample_row()],
        'status': 'approved', 'approvedBy': REVISOR, 'purchaseStatus': 'completed',
    })
    assert r.status_code == 201
    quote = r.get_json()['cotizacion']
    assert quote['status'] == 'draft'
    assert quote['approvedBy'] is None
    assert quote['purchaseStatus'] is None
    assert client.get('/api/cotizaciones?estado=approved').get_json()['cotizaciones'] == []

    r = client.post('/api/cotizaciones', json={'clienteName': 'Acme', 'rows': ['a']})
    assert r.status_code == 422
    r = client.put(f"/api/cotizaciones/{quote['id']}", json={'rows': 'x'})
    assert r.status_code == 422


def test_item_decisions_over_http(client):
    login(client, VENDEDOR)
    quote = create_quote(client, rows=[
        sample_row(itemName='Portátil', pvpUnitario=1_000_000),
        sample_row(itemName='Portátil', pvpUnitario=800_000),
    ])
    client.post(f"/api/cotizaciones/{quote['id']}/enviar")
    client.post('/api/auth/logout')

    login(client, REVISOR)
    r = client.post(f"/api/cotizaciones/{quote['id']}/aprobar",
                    json={'selectedOptions': {'item-portátil': 5}})
    assert r.status_code == 422
    r = client.post(f"/api/cotizaciones/{quote['id']}/aprobar",
                    json={'selectedOptions': {'item-portátil': 1},
                          'itemComments': {'item-portátil': 'Mejor precio'}})
    assert r.status_code == 200
    approved = r.get_json()['cotizacion']
    assert approved['selectedOptions'] == {'item-portátil': 1}
    assert approved['approvedTotal'] == 800_000
    assert approved['itemComments'] == {'item-portátil': 'Mejor precio'}


def test_provider_catalog_over_http(client):
    login(client, REVISOR)
    assert client.get('/api/proveedores').status_code == 200
    assert client.post('/api/proveedores', json={'name': 'Mayorista'}).status_code == 403
    client.post('/api/auth/logout')

    login(client, VENDEDOR)
    r = client.post('/api/proveedores', json={'name': '  Mayorista Andino ', 'category': 'Tecnología'})
    assert r.status_code == 201
    provider = r.get_json()['proveedor']
    assert provider['name'] == 'Mayorista Andino'
    assert client.post('/api/proveedores', json={'name': ''}).status_code == 422
    assert client.post('/api/proveedores', json={'name': 'X', 'category': 'Nada'}).status_code == 422

    found = client.get('/api/proveedores?q=andino').get_json()['proveedores']
    assert [p['id'] for p in found] == [provider['id']]
    assert client.get('/api/proveedores?categoria=Servicios').get_json()['proveedores'] == []

    r = client.put(f"/api/proveedores/{provider['id']}", json={'isActive': False})
    assert r.get_json()['proveedor']['isActive'] is False
    assert client.get('/api/proveedores').get_json()['proveedores'] == []
    assert client.get('/api/proveedores/stats').get_json()['stats']['inactive'] == 1

    exported = client.get('/api/proveedores/export').get_json()
    assert exported['version'] == '1.0'
    r = client.post('/api/proveedores/import', json=exported)
    assert r.get_json()['importados'] == 1
    assert client.post('/api/proveedores/import', json={'x': 1}).status_code == 422

    assert client.delete(f"/api/proveedores/{provider['id']}").status_code == 200
    assert client.get(f"/api/proveedores/{provider['id']}").status_code == 404


def test_malformed_legacy_file_does_not_block_startup(config, capsys):
    os.makedirs(config.data_dir, exist_ok=True)
    with open(os.path.join(config.data_dir, LEGACY_FILE), 'w', encoding='utf-8') as f:
        f.write('{"cotizaciones": [')

    app = create_app(config)
    container = app.extensions['cotizaciones']
    try:
        assert '[ADVERTENCIA]' in capsys.readouterr().out
        assert container.migration_service.is_migrated() is False
        assert container.settings_repo.get('localStorage_migrated') is None

        with open(os.path.join(config.data_dir, LEGACY_FILE), 'w', encoding='utf-8') as f:
            f.write('[]')
        assert container.run_legacy_migration()['skipped'] is False
        assert container.migration_service.is_migrated() is True
    finally:
        AppContainer.reset_instance()
