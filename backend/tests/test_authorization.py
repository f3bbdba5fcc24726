"""
Authorization chain tests.

Verifies:
- 401 for missing, malformed and wrong-type tokens
- 401 for soft-deleted users, 403 auth.user_blocked for blocked users
- 403 common.permission_required names the required permissions
- 403 common.user_type_required names the allowed user types
- Permission denials are recorded as security events
- Request context: request id, language negotiation, environment echo
- Sandbox write guard
"""

import pytest

from wasteflow.middleware import is_sandbox_write_allowed, negotiate_language
from wasteflow.services import token_service

from conftest import auth_headers, create_address, error_of, make_user


# =============================================================================
# AUTHENTICATION
# =============================================================================

class TestUnauthenticatedAccess:
    """Requests without a usable access token get 401."""

    @pytest.mark.parametrize('method,path', [
        ('get', '/api/v1/orders'),
        ('post', '/api/v1/orders'),
        ('get', '/api/v1/users'),
        ('get', '/api/v1/auth/me'),
        ('get', '/api/v1/courier/profile'),
        ('get', '/api/v1/webhooks'),
    ])
    def test_missing_token(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401
        key, _ = error_of(response)
        assert key == 'auth.unauthenticated'

    def test_garbage_token(self, client):
        response = client.get('/api/v1/auth/me', headers={'Authorization': 'Bearer not-a-jwt'})
        assert response.status_code == 401
        assert error_of(response)[0] == 'auth.token_invalid'

    def test_non_bearer_scheme(self, client, client_user):
        token = auth_headers(client_user)['Authorization'].split(' ', 1)[1]
        response = client.get('/api/v1/auth/me', headers={'Authorization': f'Basic {token}'})
        assert response.status_code == 401

    def test_refresh_token_is_not_an_access_token(self, client, client_user):
        tokens = token_service.issue_token_pair(client_user)
        response = client.get(
            '/api/v1/auth/me',
            headers={'Authorization': f"Bearer {tokens['refreshToken']}"},
        )
        assert response.status_code == 401
        assert error_of(response)[0] == 'auth.token_invalid'

    def test_token_signed_with_other_secret(self, app, client, client_user):
        headers = auth_headers(client_user)
        app.config['JWT_SECRET_KEY'] = 'rotated-secret'
        response = client.get('/api/v1/auth/me', headers=headers)
        assert response.status_code == 401

    def test_deleted_user(self, client, store, client_user):
        headers = auth_headers(client_user)
        store.soft_delete_user(client_user.id)
        response = client.get('/api/v1/auth/me', headers=headers)
        assert response.status_code == 401

    def test_blocked_user(self, client, store, client_user):
        headers = auth_headers(client_user)
        store.update_user(client_user.id, {'status': 'blocked'})
        response = client.get('/api/v1/auth/me', headers=headers)
        assert response.status_code == 403
        assert error_of(response)[0] == 'auth.user_blocked'


# =============================================================================
# PERMISSIONS
# =============================================================================

class TestPermissionDenied:
    """Authenticated users without the permission get 403 with requirements."""

    def test_client_cannot_list_users(self, client, client_user):
        response = client.get('/api/v1/users', headers=auth_headers(client_user))
        assert response.status_code == 403
        key, params = error_of(response)
        assert key == 'common.permission_required'
        assert params == {'required': ['users.read']}

    def test_error_does_not_leak_granted_permissions(self, client, support_user):
        response = client.post(
            '/api/v1/users',
            json={'phone': '0599999999', 'password': 'secret123'},
            headers=auth_headers(support_user),
        )
        assert response.status_code == 403
        _, params = error_of(response)
        assert params == {'required': ['users.manage']}

    def test_denial_is_logged_as_security_event(self, client, store, client_user):
        client.get('/api/v1/audit-logs', headers=auth_headers(client_user))
        events = store.list_security_events(event_type='PERMISSION_DENIED')
        assert len(events) == 1
        assert events[0].user_id == client_user.id
        assert events[0].success is False
        assert events[0].resource == '/api/v1/audit-logs'

    def test_role_grant_takes_effect_on_next_request(self, client, store, client_user):
        headers = auth_headers(client_user)
        assert client.get('/api/v1/users', headers=headers).status_code == 403

        role = store.get_role_by_name('support')
        store.assign_user_role(client_user.id, role.id)
        assert client.get('/api/v1/users', headers=headers).status_code == 200

        store.remove_user_role(client_user.id, role.id)
        assert client.get('/api/v1/users', headers=headers).status_code == 403

    def test_admin_passes(self, client, admin_user):
        response = client.get('/api/v1/users', headers=auth_headers(admin_user))
        assert response.status_code == 200


class TestUserTypeRequired:

    def test_client_cannot_use_courier_app(self, client, client_user):
        response = client.get('/api/v1/courier/profile', headers=auth_headers(client_user))
        assert response.status_code == 403
        key, params = error_of(response)
        assert key == 'common.user_type_required'
        assert params == {'requiredTypes': ['courier']}

    def test_staff_with_every_permission_is_still_not_a_courier(self, client, admin_user):
        response = client.get('/api/v1/courier/orders', headers=auth_headers(admin_user))
        assert response.status_code == 403

    def test_courier_passes(self, client, courier_user):
        response = client.get('/api/v1/courier/profile', headers=auth_headers(courier_user))
        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['courierId'] == courier_user.id
        assert data['verificationStatus'] == 'pending'

    def test_user_type_denial_is_logged(self, client, store, client_user):
        client.get('/api/v1/courier/profile', headers=auth_headers(client_user))
        events = store.list_security_events(event_type='USER_TYPE_DENIED')
        assert [event.user_id for event in events] == [client_user.id]


# =============================================================================
# REQUEST CONTEXT
# =============================================================================

class TestRequestContext:

    def test_request_id_generated_and_echoed(self, client):
        response = client.get('/api/v1/health')
        assert response.status_code == 200
        assert response.headers['X-Request-Id']

    def test_request_id_reused(self, client):
        response = client.get('/api/v1/environment', headers={'X-Request-Id': 'req-42'})
        assert response.headers['X-Request-Id'] == 'req-42'
        assert response.get_json()['requestId'] == 'req-42'

    def test_headers_present_on_errors(self, client):
        response = client.get('/api/v1/orders', headers={'X-Request-Id': 'req-err'})
        assert response.status_code == 401
        assert response.headers['X-Request-Id'] == 'req-err'
        assert response.headers['Content-Language'] == 'en'

    def test_language_negotiated(self, client):
        response = client.get('/api/v1/environment', headers={'Accept-Language': 'ru-RU,ru;q=0.9,en;q=0.8'})
        assert response.headers['Content-Language'] == 'ru'
        assert response.get_json()['language'] == 'ru'

    @pytest.mark.parametrize('header,expected', [
        (None, 'en'),
        ('', 'en'),
        ('fr-FR', 'en'),
        ('fr;q=1, ar;q=0.5', 'ar'),
        ('he;q=0.2, ru;q=0.8', 'ru'),
        ('ru;q=0, he', 'he'),
        ('EN-us', 'en'),
    ])
    def test_negotiate_language(self, header, expected):
        assert negotiate_language(header, ['he', 'ru', 'ar', 'en'], 'en') == expected

    def test_environment_defaults_to_production(self, client):
        response = client.get('/api/v1/environment', headers={'X-Environment': 'staging'})
        body = response.get_json()
        assert body['environment'] == 'production'
        assert body['isSandbox'] is False
        assert response.headers['X-Environment'] == 'production'

    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get('/api/v1/nope')
        assert response.status_code == 404
        assert error_of(response)[0] == 'common.not_found'


class TestSandboxGuard:

    def test_sandbox_write_outside_allowlist_rejected(self, client, client_user):
        response = client.post(
            '/api/v1/addresses',
            json={'city': 'Haifa', 'street': 'Herzl', 'house': '1'},
            headers=auth_headers(client_user, **{'X-Environment': 'sandbox'}),
        )
        assert response.status_code == 403
        key, params = error_of(response)
        assert key == 'sandbox.write_not_allowed'
        assert params == {'path': '/api/v1/addresses'}
        assert response.headers['X-Environment'] == 'sandbox'

    def test_sandbox_guard_runs_before_authentication(self, client):
        response = client.post('/api/v1/webhooks', json={}, headers={'X-Environment': 'sandbox'})
        assert response.status_code == 403
        assert error_of(response)[0] == 'sandbox.write_not_allowed'

    def test_sandbox_reads_allowed(self, client, client_user):
        response = client.get(
            '/api/v1/addresses',
            headers=auth_headers(client_user, **{'X-Environment': 'sandbox'}),
        )
        assert response.status_code == 200

    def test_sandbox_order_write_allowed(self, client, client_user):
        address = create_address(client, client_user)
        response = client.post(
            '/api/v1/orders',
            json={'addressId': address['id'], 'scheduledAt': '2026-11-01T09:00:00Z', 'timeWindow': '09-12'},
            headers=auth_headers(client_user, **{'X-Environment': 'sandbox'}),
        )
        assert response.status_code == 201

    def test_sandbox_session_management_allowed(self, client, client_user):
        headers = auth_headers(client_user, **{'X-Environment': 'sandbox'})
        response = client.delete('/api/v1/auth/sessions/unknown', headers=headers)
        assert error_of(response)[0] == 'session.device_not_found'

        response = client.post('/api/v1/auth/logout-all', headers=headers)
        assert response.status_code == 200

    @pytest.mark.parametrize('path,allowed', [
        ('/api/v1/orders', True),
        ('/api/v1/orders/abc/cancel', True),
        ('/api/v1/ordersX', False),
        ('/api/v1/users', False),
        ('/api/v1/auth/register', False),
        ('/api/v1/auth/login', True),
        ('/api/v1/auth/logout-all', True),
        ('/api/v1/auth/sessions/abc', True),
    ])
    def test_prefix_matching(self, app, path, allowed):
        assert is_sandbox_write_allowed(path, app.config['SANDBOX_ALLOWED_WRITE_PREFIXES']) is allowed


class TestMetaEndpoints:

    @pytest.mark.parametrize('path,code', [
        ('/api/v1/meta/order-statuses', 'in_progress'),
        ('/api/v1/meta/user-types', 'courier'),
        ('/api/v1/meta/user-statuses', 'blocked'),
        ('/api/v1/meta/availability-statuses', 'offline'),
        ('/api/v1/meta/verification-statuses', 'verified'),
        ('/api/v1/meta/order-event-types', 'status_changed'),
        ('/api/v1/meta/product-event-types', 'order.completed.shabbat'),
        ('/api/v1/meta/activity-types', 'skip_day'),
        ('/api/v1/meta/flag-keys', 'churn_risk'),
        ('/api/v1/meta/bonus-transaction-types', 'expire'),
        ('/api/v1/meta/bonus-reasons', 'daily_streak'),
        ('/api/v1/meta/subscription-statuses', 'paused'),
        ('/api/v1/meta/subscription-rule-types', 'custom'),
    ])
    def test_public_reference_lists(self, client, path, code):
        response = client.get(path)
        assert response.status_code == 200
        assert {'code': code} in response.get_json()

    def test_health(self, client):
        body = client.get('/api/v1/health').get_json()
        assert body['status'] == 'ok'
        assert body['checks']['storage']['backend'] == 'memory'


def test_blocked_staff_loses_permissions(client, store):
    staff = make_user(store, 'staff', roles=['admin'])
    headers = auth_headers(staff)
    store.update_user(staff.id, {'status': 'blocked'})
    response = client.get('/api/v1/users', headers=headers)
    assert response.status_code == 403
    assert error_of(response)[0] == 'auth.user_blocked'
