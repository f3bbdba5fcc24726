"""
Soft delete tests.

Verifies:
- Deleted users, orders and addresses disappear from default reads
- Deleting twice is a conflict
- Deleted entities stay resolvable where history needs them
- Deleting a user revokes sessions and blocks login
"""

from conftest import PASSWORD, auth_headers, create_address, create_order, error_of, make_user


class TestOrders:

    def test_delete_and_hide(self, client, store, client_user, dispatcher_user, support_user):
        order = create_order(client, client_user)
        response = client.delete(f"/api/v1/orders/{order['id']}", headers=auth_headers(dispatcher_user))
        assert response.status_code == 204
        assert response.get_data() == b''

        assert client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers(client_user)).status_code == 404
        listed = client.get('/api/v1/orders', headers=auth_headers(client_user)).get_json()
        assert listed['data'] == []

        # orders.read holders may look at tombstones
        response = client.get(
            f"/api/v1/orders/{order['id']}?includeDeleted=true", headers=auth_headers(support_user)
        )
        assert response.status_code == 200
        assert response.get_json()['data']['deletedAt'] is not None

        # ...but the flag means nothing to the owner
        response = client.get(
            f"/api/v1/orders/{order['id']}?includeDeleted=true", headers=auth_headers(client_user)
        )
        assert response.status_code == 404

        log = store.list_audit_logs(entity_id=order['id'], action='DELETE_ORDER').items[0]
        assert log.changes['deletedAt']['from'] is None

    def test_delete_twice(self, client, client_user, dispatcher_user):
        order = create_order(client, client_user)
        client.delete(f"/api/v1/orders/{order['id']}", headers=auth_headers(dispatcher_user))
        response = client.delete(f"/api/v1/orders/{order['id']}", headers=auth_headers(dispatcher_user))
        assert response.status_code == 409
        assert error_of(response)[0] == 'order.already_deleted'

    def test_deleted_order_cannot_transition(self, client, store, client_user, courier_user, dispatcher_user):
        order = create_order(client, client_user)
        client.delete(f"/api/v1/orders/{order['id']}", headers=auth_headers(dispatcher_user))
        response = client.post(
            f"/api/v1/orders/{order['id']}/assign",
            json={'courierId': courier_user.id},
            headers=auth_headers(dispatcher_user),
        )
        assert response.status_code == 404

    def test_owner_cannot_delete(self, client, client_user):
        order = create_order(client, client_user)
        response = client.delete(f"/api/v1/orders/{order['id']}", headers=auth_headers(client_user))
        assert response.status_code == 403


class TestAddresses:

    def test_deleted_address_still_renders_on_order(self, client, client_user):
        address = create_address(client, client_user, street='Allenby')
        order = create_order(client, client_user, address_id=address['id'])

        response = client.delete(f"/api/v1/addresses/{address['id']}", headers=auth_headers(client_user))
        assert response.status_code == 204

        listed = client.get('/api/v1/addresses', headers=auth_headers(client_user)).get_json()
        assert listed['data'] == []

        detail = client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers(client_user)).get_json()['data']
        assert detail['address']['street'] == 'Allenby'
        assert detail['address']['deletedAt'] is not None

    def test_cannot_order_to_deleted_address(self, client, client_user):
        address = create_address(client, client_user)
        client.delete(f"/api/v1/addresses/{address['id']}", headers=auth_headers(client_user))
        response = client.post(
            '/api/v1/orders',
            json={'addressId': address['id'], 'scheduledAt': '2026-11-01T09:00:00Z', 'timeWindow': '9-12'},
            headers=auth_headers(client_user),
        )
        assert response.status_code == 400
        assert error_of(response)[0] == 'address.not_found'

    def test_stranger_cannot_delete(self, client, client_user, other_client):
        address = create_address(client, client_user)
        response = client.delete(f"/api/v1/addresses/{address['id']}", headers=auth_headers(other_client))
        assert response.status_code == 403

    def test_delete_twice(self, client, client_user):
        address = create_address(client, client_user)
        client.delete(f"/api/v1/addresses/{address['id']}", headers=auth_headers(client_user))
        response = client.delete(f"/api/v1/addresses/{address['id']}", headers=auth_headers(client_user))
        assert response.status_code == 409
        assert error_of(response)[0] == 'address.already_deleted'


class TestUsers:

    def test_delete_user(self, client, store, admin_user):
        target = make_user(store, 'courier', phone='0506000000')
        client.post('/api/v1/auth/login', json={'phone': '0506000000', 'password': PASSWORD})
        headers = auth_headers(target)

        response = client.delete(f'/api/v1/users/{target.id}', headers=auth_headers(admin_user))
        assert response.status_code == 204

        assert store.list_sessions(target.id) == []
        assert store.get_courier_profile(target.id) is None
        assert client.get('/api/v1/auth/me', headers=headers).status_code == 401

        login = client.post('/api/v1/auth/login', json={'phone': '0506000000', 'password': PASSWORD})
        assert login.status_code == 401

        # The phone stays reserved
        register = client.post('/api/v1/auth/register', json={'phone': '0506000000', 'password': PASSWORD})
        assert register.status_code == 409

    def test_deleted_user_listing(self, client, store, admin_user):
        target = make_user(store, 'client')
        client.delete(f'/api/v1/users/{target.id}', headers=auth_headers(admin_user))

        ids = [u['id'] for u in client.get('/api/v1/users', headers=auth_headers(admin_user)).get_json()['data']]
        assert target.id not in ids

        ids = [
            u['id']
            for u in client.get('/api/v1/users?includeDeleted=true', headers=auth_headers(admin_user)).get_json()['data']
        ]
        assert target.id in ids

    def test_delete_twice(self, client, store, admin_user):
        target = make_user(store, 'client')
        client.delete(f'/api/v1/users/{target.id}', headers=auth_headers(admin_user))
        response = client.delete(f'/api/v1/users/{target.id}', headers=auth_headers(admin_user))
        assert response.status_code == 409
        assert error_of(response)[0] == 'user.already_deleted'
