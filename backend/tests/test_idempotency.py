"""
Idempotency-Key tests.

Verifies:
- A retried mutation replays the first response verbatim and runs once
- Keys are scoped per user and per endpoint
- 4xx responses are cached, 5xx and crashes release the key
- An in-flight key answers 409 common.idempotency_in_progress
- Expired records are replaced
"""

from datetime import timedelta

from wasteflow.services import idempotency_service, order_service

from conftest import ORDER_PAYLOAD, auth_headers, create_address, error_of


def post_order(client, user, address_id, key, **extra):
    headers = auth_headers(user, **{'Idempotency-Key': key})
    body = {**ORDER_PAYLOAD, 'addressId': address_id}
    body.update(extra)
    return client.post('/api/v1/orders', json=body, headers=headers)


class TestReplay:

    def test_retry_replays_first_response(self, client, store, client_user):
        address = create_address(client, client_user)
        first = post_order(client, client_user, address['id'], 'key-1')
        second = post_order(client, client_user, address['id'], 'key-1')

        assert first.status_code == second.status_code == 201
        assert second.get_data() == first.get_data()
        assert second.headers['Idempotent-Replayed'] == 'true'
        assert 'Idempotent-Replayed' not in first.headers
        assert store.list_orders(client_id=client_user.id).total == 1

    def test_different_keys_execute_twice(self, client, store, client_user):
        address = create_address(client, client_user)
        post_order(client, client_user, address['id'], 'key-a')
        post_order(client, client_user, address['id'], 'key-b')
        assert store.list_orders(client_id=client_user.id).total == 2

    def test_no_key_no_dedup(self, client, store, client_user):
        address = create_address(client, client_user)
        body = {**ORDER_PAYLOAD, 'addressId': address['id']}
        client.post('/api/v1/orders', json=body, headers=auth_headers(client_user))
        client.post('/api/v1/orders', json=body, headers=auth_headers(client_user))
        assert store.list_orders(client_id=client_user.id).total == 2

    def test_keys_are_scoped_per_user(self, client, store, client_user, other_client):
        mine = create_address(client, client_user)
        theirs = create_address(client, other_client)
        post_order(client, client_user, mine['id'], 'shared')
        response = post_order(client, other_client, theirs['id'], 'shared')
        assert response.status_code == 201
        assert 'Idempotent-Replayed' not in response.headers
        assert store.list_orders(client_id=other_client.id).total == 1

    def test_replay_survives_token_refresh(self, client, client_user):
        address = create_address(client, client_user)
        first = post_order(client, client_user, address['id'], 'same-user-new-token')
        # auth_headers issues a fresh access token on every call
        second = post_order(client, client_user, address['id'], 'same-user-new-token')
        assert second.get_json() == first.get_json()

    def test_replay_of_transition(self, client, store, client_user, courier_user, dispatcher_user):
        address = create_address(client, client_user)
        order = post_order(client, client_user, address['id'], 'create').get_json()['data']
        headers = auth_headers(dispatcher_user, **{'Idempotency-Key': 'assign-1'})
        url = f"/api/v1/orders/{order['id']}/assign"

        first = client.post(url, json={'courierId': courier_user.id}, headers=headers)
        second = client.post(url, json={'courierId': courier_user.id}, headers=headers)
        assert first.status_code == second.status_code == 200
        assert second.headers['Idempotent-Replayed'] == 'true'
        assert [e.event_type for e in store.list_order_events(order['id'])] == ['created', 'assigned']


class TestErrorResponses:

    def test_client_errors_are_cached(self, client, store, client_user):
        address = create_address(client, client_user)
        first = post_order(client, client_user, address['id'], 'bad', price=-1)
        assert first.status_code == 400

        # Even a now-valid body replays the cached failure
        second = post_order(client, client_user, address['id'], 'bad')
        assert second.status_code == 400
        assert second.headers['Idempotent-Replayed'] == 'true'
        assert store.list_orders(client_id=client_user.id).total == 0

    def test_crash_releases_key(self, client, store, client_user, monkeypatch):
        address = create_address(client, client_user)
        real_create = order_service.create_order

        def explode(*args, **kwargs):
            raise RuntimeError('boom')

        monkeypatch.setattr(order_service, 'create_order', explode)
        response = post_order(client, client_user, address['id'], 'retry-me')
        assert response.status_code == 500
        assert error_of(response)[0] == 'common.internal_error'

        rid = idempotency_service.record_id(client_user.id, 'POST /api/v1/orders', 'retry-me')
        assert store.get_idempotency_record(rid) is None

        monkeypatch.setattr(order_service, 'create_order', real_create)
        retried = post_order(client, client_user, address['id'], 'retry-me')
        assert retried.status_code == 201
        assert 'Idempotent-Replayed' not in retried.headers

    def test_in_flight_key_conflicts(self, client, store, client_user):
        address = create_address(client, client_user)
        idempotency_service.begin(store, client_user.id, 'POST /api/v1/orders', 'busy')

        response = post_order(client, client_user, address['id'], 'busy')
        assert response.status_code == 409
        key, params = error_of(response)
        assert key == 'common.idempotency_in_progress'
        assert params == {'key': 'busy'}

    def test_key_too_long(self, client, client_user):
        address = create_address(client, client_user)
        response = post_order(client, client_user, address['id'], 'k' * 256)
        assert response.status_code == 400


class TestExpiry:

    def test_expired_record_is_replaced(self, app, client, store, client_user):
        address = create_address(client, client_user)
        app.config['IDEMPOTENCY_TTL'] = timedelta(seconds=-1)
        post_order(client, client_user, address['id'], 'old')

        response = post_order(client, client_user, address['id'], 'old')
        assert response.status_code == 201
        assert 'Idempotent-Replayed' not in response.headers
        assert store.list_orders(client_id=client_user.id).total == 2

    def test_purge_expired(self, app, store, client_user):
        fresh = idempotency_service.begin(store, client_user.id, 'POST /x', 'fresh')
        app.config['IDEMPOTENCY_IN_FLIGHT_TTL'] = timedelta(hours=-1)
        stale = idempotency_service.begin(store, client_user.id, 'POST /x', 'stale')

        runner = app.test_cli_runner()
        result = runner.invoke(args=['maintenance', 'purge-idempotency'])
        assert 'Deleted 1 expired idempotency records.' in result.output
        assert store.get_idempotency_record(fresh.record_id) is not None
        assert store.get_idempotency_record(stale.record_id) is None

    def test_in_flight_marker_is_leased(self, app, store, client_user):
        claim = idempotency_service.begin(store, client_user.id, 'POST /x', 'lease')
        record = store.get_idempotency_record(claim.record_id)
        assert record.expires_at - record.created_at == app.config['IDEMPOTENCY_IN_FLIGHT_TTL']

        idempotency_service.finish(store, claim.record_id, 201, '{}', 'application/json')
        record = store.get_idempotency_record(claim.record_id)
        assert record.expires_at - record.created_at >= app.config['IDEMPOTENCY_TTL'] - timedelta(seconds=5)

    def test_abandoned_marker_is_reclaimed(self, app, client, store, client_user):
        address = create_address(client, client_user)
        app.config['IDEMPOTENCY_IN_FLIGHT_TTL'] = timedelta(seconds=-1)
        # A worker that died after claiming never released the key
        idempotency_service.begin(store, client_user.id, 'POST /api/v1/orders', 'orphan')
        app.config['IDEMPOTENCY_IN_FLIGHT_TTL'] = timedelta(minutes=1)

        response = post_order(client, client_user, address['id'], 'orphan')
        assert response.status_code == 201
        assert store.list_orders(client_id=client_user.id).total == 1
