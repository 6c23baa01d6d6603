from app_cotizaciones.models.entities import UserRole
from app_cotizaciones.services.permission_service import PermissionService
from app_cotizaciones.tests.conftest import ADMIN, OTRO_VENDEDOR, VENDEDOR, add_user


def test_missing_profile_resolves_to_vendedor(container):
    actor = container.permission_service.resolve('fantasma@tecnophone.com')
    assert actor.role is UserRole.VENDEDOR
    assert actor.has('create_quotes')
    assert not actor.has('approve_quotes')


def test_unknown_role_resolves_to_vendedor(container):
    container.user_repo.create_profile('raro@tecnophone.com', {'role': 'superusuario', 'isActive': True})
    actor = container.permission_service.resolve('RARO@tecnophone.com')
    assert actor.email == 'raro@tecnophone.com'
    assert actor.role is UserRole.VENDEDOR


def test_inactive_profile_has_no_permissions(container):
    actor = add_user(container, 'baja@tecnophone.com', 'revisor', active=False)
    assert actor.permissions == frozenset()


def test_role_table_queries():
    assert PermissionService.has_permission('revisor', 'approve_quotes')
    assert not PermissionService.has_permission('vendedor', 'approve_quotes')
    assert PermissionService.can_create_quotes('vendedor')
    assert not PermissionService.can_create_quotes('admin')
    assert PermissionService.get_role_info('otro')['name'] == 'Sin rol'
    assert {r['value'] for r in PermissionService.get_all_roles()} == {r.value for r in UserRole}


def test_admin_manages_users(container, users):
    admin = users['admin']
    service = container.user_service

    created = service.create_user('nuevo@tecnophone.com', 'clave-segura', 'comprador', admin)
    assert created['ok'] and created['user']['role'] == 'comprador'
    assert service.create_user('nuevo@tecnophone.com', 'clave-segura', 'comprador', admin)['ok'] is False

    assert service.change_role('nuevo@tecnophone.com', 'revisor', admin)['role'] == 'revisor'
    assert container.permission_service.resolve('nuevo@tecnophone.com').has('approve_quotes')

    assert service.set_active('nuevo@tecnophone.com', False, admin)['ok']
    assert container.permission_service.resolve('nuevo@tecnophone.com').permissions == frozenset()

    assert service.delete_user('nuevo@tecnophone.com', admin)['ok']
    assert not service.user_exists('nuevo@tecnophone.com')


def test_non_admin_cannot_manage_users(container, users):
    result = container.user_service.change_role(OTRO_VENDEDOR, 'admin', users['vendedor'])
    assert result['ok'] is False


def test_last_admin_is_protected(container, users):
    admin = users['admin']
    service = container.user_service
    assert service.delete_user(ADMIN, admin)['ok'] is False
    assert service.set_active(ADMIN, False, admin)['ok'] is False

    second = add_user(container, 'jefe@tecnophone.com', 'admin')
    assert service.change_role(ADMIN, 'vendedor', second)['ok'] is True
    assert service.change_role('jefe@tecnophone.com', 'vendedor', second)['ok'] is False


def test_user_stats(container, users):
    stats = container.user_service.get_user_stats()
    assert stats['total'] == 5
    assert stats['byRole'] == {'admin': 1, 'vendedor': 2, 'comprador': 1, 'revisor': 1}


def test_profile_update_by_owner(container, users):
    result = container.user_service.update_profile(VENDEDOR, {'displayName': 'Ana', 'role': 'admin'},
                                                   users['vendedor'])
    assert result['ok']
    profile = container.user_service.get_user(VENDEDOR)
    assert profile['displayName'] == 'Ana'
    assert profile['role'] == 'vendedor'
