"""
RBAC tests.

Verifies:
- Effective permissions are the deduplicated union over a user's roles
- AND semantics of permission checks
- Seeding is idempotent
- Role creation and role replacement validation
- Grant/revoke take effect on the next check
- Courier verification and the perms CLI
"""

import pytest

from wasteflow.errors import Conflict, Forbidden, NotFound, ValidationError
from wasteflow.permissions import DEFAULT_ROLE_PERMISSIONS, get_all_permission_names
from wasteflow.services import permission_service

from conftest import auth_headers, error_of, make_user


class TestEffectivePermissions:

    def test_union_of_roles(self, app, store):
        user = make_user(store, 'staff', roles=['support', 'accountant'])
        granted = permission_service.get_user_permissions(store, user.id)
        expected = set(DEFAULT_ROLE_PERMISSIONS['support']) | set(DEFAULT_ROLE_PERMISSIONS['accountant'])
        assert granted == expected

    def test_no_roles_no_permissions(self, app, store, client_user):
        assert permission_service.get_user_permissions(store, client_user.id) == set()

    def test_admin_has_everything(self, app, store, admin_user):
        granted = permission_service.get_user_permissions(store, admin_user.id)
        assert granted == set(get_all_permission_names())

    @pytest.mark.parametrize('granted,required,missing', [
        ({'a', 'b'}, ['a'], []),
        ({'a', 'b'}, ['a', 'b'], []),
        ({'a'}, ['a', 'b'], ['b']),
        (set(), ['a', 'b'], ['a', 'b']),
        ({'a'}, [], []),
    ])
    def test_check_permissions_and_semantics(self, granted, required, missing):
        assert permission_service.check_permissions(granted, required) == missing

    def test_require_permissions_raises_with_required_list(self, app, store, support_user):
        with pytest.raises(Forbidden) as exc_info:
            permission_service.require_permissions(store, support_user.id, ['users.read', 'users.manage'])
        assert exc_info.value.params == {'required': ['users.read', 'users.manage']}

    def test_grant_and_revoke(self, app, store, support_user):
        assert not permission_service.user_has_permission(store, support_user.id, 'webhooks.manage')
        assert permission_service.grant_permission_to_role(store, 'support', 'webhooks.manage') is True
        assert permission_service.grant_permission_to_role(store, 'support', 'webhooks.manage') is False
        assert permission_service.user_has_permission(store, support_user.id, 'webhooks.manage')

        assert permission_service.revoke_permission_from_role(store, 'support', 'webhooks.manage') is True
        assert not permission_service.user_has_permission(store, support_user.id, 'webhooks.manage')

    def test_grant_unknown_names(self, app, store):
        with pytest.raises(ValueError):
            permission_service.grant_permission_to_role(store, 'support', 'rockets.launch')
        with pytest.raises(ValueError):
            permission_service.grant_permission_to_role(store, 'astronaut', 'orders.read')


class TestSeeding:

    def test_initialize_defaults_is_idempotent(self, app, store):
        # create_app already seeded the memory backend
        counts = permission_service.initialize_defaults(store)
        assert counts == {'permissions': 0, 'roles': 0, 'grants': 0}
        assert len(store.list_permissions()) == len(get_all_permission_names())
        assert sorted(role.name for role in store.list_roles()) == sorted(DEFAULT_ROLE_PERMISSIONS)

    def test_assign_unknown_role(self, app, store, client_user):
        with pytest.raises(NotFound):
            permission_service.assign_role(store, client_user.id, 'emperor')


class TestRoles:

    def test_create_role_with_permissions(self, client, store, admin_user):
        permission = store.get_permission_by_name('reports.read')
        response = client.post(
            '/api/v1/roles',
            json={'name': 'analyst', 'description': 'Reads reports', 'permissionIds': [permission.id]},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['name'] == 'analyst'
        assert data['permissions'] == ['reports.read']

        analyst = make_user(store, 'staff', roles=['analyst'])
        assert permission_service.get_user_permissions(store, analyst.id) == {'reports.read'}

    def test_duplicate_role_name(self, app, store):
        with pytest.raises(Conflict):
            permission_service.create_role(store, name='admin')

    def test_unknown_permission_ids(self, client, admin_user):
        response = client.post(
            '/api/v1/roles',
            json={'name': 'ghost', 'permissionIds': ['missing']},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 400

    def test_set_user_roles_validates_before_changing(self, app, store, support_user):
        with pytest.raises(ValidationError):
            permission_service.set_user_roles(store, support_user.id, ['nope'])
        assert permission_service.get_user_role_names(store, support_user.id) == ['support']

    def test_list_roles_and_permissions(self, client, support_user):
        roles = client.get('/api/v1/roles', headers=auth_headers(support_user)).get_json()['data']
        dispatcher = next(role for role in roles if role['name'] == 'dispatcher')
        assert sorted(dispatcher['permissions']) == sorted(DEFAULT_ROLE_PERMISSIONS['dispatcher'])

        permissions = client.get('/api/v1/permissions', headers=auth_headers(support_user)).get_json()['data']
        assert {p['name'] for p in permissions} == set(get_all_permission_names())

    def test_permissions_by_category(self, client, support_user):
        body = client.get('/api/v1/permissions?category=orders', headers=auth_headers(support_user)).get_json()
        assert sorted(p['name'] for p in body['data']) == [
            'orders.assign', 'orders.create', 'orders.read', 'orders.update_status',
        ]


class TestCourierVerification:

    def test_verify(self, client, store, courier_user):
        manager = make_user(store, 'staff', roles=['manager'])
        response = client.patch(
            f'/api/v1/couriers/{courier_user.id}/verify',
            json={'verificationStatus': 'verified'},
            headers=auth_headers(manager),
        )
        assert response.status_code == 200
        assert response.get_json()['data']['verificationStatus'] == 'verified'

        log = store.list_audit_logs(entity_id=courier_user.id, action='VERIFY_COURIER').items[0]
        assert log.changes == {'verificationStatus': {'from': 'pending', 'to': 'verified'}}

    def test_verify_requires_permission(self, client, courier_user, dispatcher_user):
        response = client.patch(
            f'/api/v1/couriers/{courier_user.id}/verify',
            json={'verificationStatus': 'verified'},
            headers=auth_headers(dispatcher_user),
        )
        assert response.status_code == 403
        assert error_of(response)[1] == {'required': ['couriers.verify']}

    def test_invalid_status(self, client, courier_user, admin_user):
        response = client.patch(
            f'/api/v1/couriers/{courier_user.id}/verify',
            json={'verificationStatus': 'maybe'},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 400

    def test_courier_updates_own_availability(self, client, store, courier_user):
        response = client.patch(
            '/api/v1/courier/profile',
            json={'availabilityStatus': 'available'},
            headers=auth_headers(courier_user),
        )
        assert response.status_code == 200
        assert store.get_courier_profile(courier_user.id).availability_status == 'available'

    def test_list_couriers_filter(self, client, store, courier_user, support_user):
        make_user(store, 'courier')
        store.update_courier_profile(courier_user.id, {'verification_status': 'verified'})
        body = client.get(
            '/api/v1/couriers?verificationStatus=verified', headers=auth_headers(support_user)
        ).get_json()
        assert [item['courierId'] for item in body['data']] == [courier_user.id]


class TestPermsCli:

    def test_check(self, app, store):
        make_user(store, 'staff', roles=['dispatcher'], phone='0508000000')
        runner = app.test_cli_runner()

        result = runner.invoke(args=['perms', 'check', '0508000000', 'orders.assign'])
        assert 'PASS' in result.output
        assert 'User roles: dispatcher' in result.output

        result = runner.invoke(args=['perms', 'check', '0508000000', 'users.manage'])
        assert 'DOES NOT HAVE' in result.output

    def test_check_unknown_permission(self, app, store):
        make_user(store, 'staff', phone='0508000002')
        result = app.test_cli_runner().invoke(args=['perms', 'check', '0508000002', 'rockets.launch'])
        assert "FAIL Unknown permission 'rockets.launch'" in result.output

    def test_check_prints_definition(self, app, store):
        make_user(store, 'staff', roles=['dispatcher'], phone='0508000003')
        result = app.test_cli_runner().invoke(args=['perms', 'check', '0508000003', 'orders.assign'])
        assert 'orders.assign [ORDERS]: Assign couriers to orders' in result.output

    def test_grant_and_revoke(self, app, store):
        runner = app.test_cli_runner()
        result = runner.invoke(args=['perms', 'grant', 'support', 'payments.read'])
        assert "PASS Granted 'payments.read' to role 'support'" in result.output
        result = runner.invoke(args=['perms', 'revoke', 'support', 'payments.read'])
        assert "PASS Revoked 'payments.read' from role 'support'" in result.output

    def test_create_staff(self, app, store):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            'users', 'create-staff', '--phone', '0508000001', '--password', 'secret123', '--role', 'admin',
        ])
        assert result.exit_code == 0, result.output
        user = store.get_user_by_phone('0508000001')
        assert user.type == 'staff'
        assert permission_service.get_user_role_names(store, user.id) == ['admin']

    def test_system_init(self, app):
        result = app.test_cli_runner().invoke(args=['system', 'init'])
        assert 'PASS Schema ready (memory backend)' in result.output
        assert 'PASS Created 0 permissions, 0 roles, 0 role grants' in result.output
