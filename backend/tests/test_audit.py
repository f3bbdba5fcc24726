"""
Audit trail tests.

Verifies:
- diff_changes records only differing fields, as {from, to}
- Update actions with an empty diff are skipped
- Audit write failures are logged and never fail the mutation
- Admin user management is audited (update, block, roles, delete)
- /audit-logs filtering and permission gate
- Product events are recorded and readable via /events
- Client-reported events are recorded for the caller without webhook fan-out
"""

from datetime import datetime

import pytest

from wasteflow.services import audit_service

from conftest import assign, auth_headers, create_order, error_of, make_user


# =============================================================================
# DIFFS
# =============================================================================

class TestDiffChanges:

    def test_only_differing_fields(self):
        changes = audit_service.diff_changes(
            {'email': 'a@x.io', 'phone': '0500000000'},
            {'email': 'b@x.io', 'phone': '0500000000'},
        )
        assert changes == {'email': {'from': 'a@x.io', 'to': 'b@x.io'}}

    def test_missing_before_counts_as_none(self):
        assert audit_service.diff_changes({}, {'courierId': 'c1'}) == {'courierId': {'from': None, 'to': 'c1'}}

    def test_datetimes_are_rendered(self):
        changes = audit_service.diff_changes({'deletedAt': None}, {'deletedAt': datetime(2026, 1, 2, 3, 4, 5)})
        assert changes['deletedAt']['to'].startswith('2026-01-02T03:04:05')
        assert changes['deletedAt']['to'].endswith('Z')


class TestRecord:

    def test_empty_update_is_skipped(self, app, store, admin_user):
        entry = audit_service.record_update(
            store,
            actor=admin_user,
            action='UPDATE_USER',
            entity='user',
            entity_id=admin_user.id,
            before={'email': None},
            after={'email': None},
        )
        assert entry is None
        assert store.list_audit_logs().total == 0

    def test_role_label(self, app, store, admin_user, client_user):
        entry = audit_service.record(store, actor=admin_user, action='CREATE_ROLE', entity='role', entity_id='r1')
        assert entry.user_role == 'admin'
        assert entry.message_key.startswith('audit.')
        entry = audit_service.record(store, actor=client_user, action='CREATE_USER', entity='user', entity_id='u1')
        assert entry.user_role == 'client'

    def test_write_failure_does_not_break_mutation(self, client, store, admin_user, monkeypatch):
        target = make_user(store, 'client')

        def broken(entry):
            raise RuntimeError('audit store down')

        monkeypatch.setattr(store, 'append_audit_log', broken)
        response = client.patch(
            f'/api/v1/users/{target.id}',
            json={'email': 'new@example.com'},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 200
        assert store.get_user(target.id).email == 'new@example.com'


# =============================================================================
# USER MANAGEMENT
# =============================================================================

class TestUserAdministration:

    def test_update_records_changed_fields_only(self, client, store, admin_user):
        target = make_user(store, 'client', email='old@example.com')
        client.patch(
            f'/api/v1/users/{target.id}',
            json={'email': 'NEW@example.com', 'phone': target.phone},
            headers=auth_headers(admin_user),
        )
        logs = store.list_audit_logs(entity_id=target.id, action='UPDATE_USER').items
        assert len(logs) == 1
        assert logs[0].changes == {'email': {'from': 'old@example.com', 'to': 'new@example.com'}}
        assert logs[0].user_id == admin_user.id

    def test_email_collision(self, client, store, admin_user):
        make_user(store, 'client', email='taken@example.com')
        target = make_user(store, 'client')
        response = client.patch(
            f'/api/v1/users/{target.id}',
            json={'email': 'taken@example.com'},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 409
        assert error_of(response)[1] == {'field': 'email'}

    def test_block_and_unblock(self, client, store, admin_user):
        target = make_user(store, 'client')
        headers = auth_headers(admin_user)
        client.patch(f'/api/v1/users/{target.id}', json={'status': 'blocked'}, headers=headers)
        client.patch(f'/api/v1/users/{target.id}', json={'status': 'active'}, headers=headers)

        actions = [log.action for log in store.list_audit_logs(entity_id=target.id).items]
        assert sorted(actions) == ['BLOCK_USER', 'UNBLOCK_USER']

    def test_set_roles(self, client, store, admin_user):
        target = make_user(store, 'staff')
        dispatcher = store.get_role_by_name('dispatcher')
        response = client.post(
            f'/api/v1/users/{target.id}/roles',
            json={'roleIds': [dispatcher.id]},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 200
        assert response.get_json()['data']['roles'] == ['dispatcher']

        logs = store.list_audit_logs(entity_id=target.id, action='ASSIGN_ROLE').items
        assert len(logs) == 1
        assert logs[0].changes == {'roles': {'from': [], 'to': ['dispatcher']}}

        # Same set again: nothing to record
        client.post(
            f'/api/v1/users/{target.id}/roles',
            json={'roleIds': [dispatcher.id]},
            headers=auth_headers(admin_user),
        )
        assert store.list_audit_logs(entity_id=target.id, action='ASSIGN_ROLE').total == 1

    def test_unknown_role_ids(self, client, store, admin_user):
        target = make_user(store, 'staff')
        response = client.post(
            f'/api/v1/users/{target.id}/roles',
            json={'roleIds': ['nope']},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 400
        assert error_of(response) == ('role.invalid_role_ids', {'roleIds': ['nope']})

    def test_create_staff_user(self, client, store, admin_user):
        support = store.get_role_by_name('support')
        response = client.post(
            '/api/v1/users',
            json={'phone': '0507777777', 'password': 'secret123', 'type': 'staff', 'roleIds': [support.id]},
            headers=auth_headers(admin_user),
        )
        assert response.status_code == 201
        data = response.get_json()['data']
        assert data['roles'] == ['support']
        assert store.list_audit_logs(entity_id=data['id'], action='CREATE_USER').total == 1


# =============================================================================
# READING THE TRAIL
# =============================================================================

class TestAuditLogEndpoint:

    def test_requires_users_manage(self, client, dispatcher_user):
        response = client.get('/api/v1/audit-logs', headers=auth_headers(dispatcher_user))
        assert response.status_code == 403

    def test_filters(self, client, client_user, courier_user, dispatcher_user, admin_user):
        order = create_order(client, client_user)
        assign(client, dispatcher_user, order['id'], courier_user.id)

        body = client.get(
            f"/api/v1/audit-logs?entity=order&entityId={order['id']}",
            headers=auth_headers(admin_user),
        ).get_json()
        assert body['meta']['total'] == 1
        entry = body['data'][0]
        assert entry['action'] == 'ASSIGN_COURIER'
        assert entry['userId'] == dispatcher_user.id
        assert entry['changes'] == {
            'status': {'from': 'created', 'to': 'assigned'},
            'courierId': {'from': None, 'to': courier_user.id},
        }

        body = client.get(
            f'/api/v1/audit-logs?userId={dispatcher_user.id}&action=CANCEL_ORDER',
            headers=auth_headers(admin_user),
        ).get_json()
        assert body['data'] == []


class TestProductEvents:

    def test_lifecycle_emits_events(self, client, store, client_user, courier_user, dispatcher_user):
        accountant = make_user(store, 'staff', roles=['accountant'])
        order = create_order(client, client_user)
        assign(client, dispatcher_user, order['id'], courier_user.id)

        body = client.get(f"/api/v1/events?entityId={order['id']}", headers=auth_headers(accountant)).get_json()
        types = sorted(event['type'] for event in body['data'])
        assert types == ['order.assigned', 'order.created']

        assigned = next(event for event in body['data'] if event['type'] == 'order.assigned')
        assert assigned['actorType'] == 'staff'
        assert assigned['payload']['previousStatus'] == 'created'
        assert assigned['payload']['order']['courierId'] == courier_user.id

    def test_events_require_reports_read(self, client, client_user):
        assert client.get('/api/v1/events', headers=auth_headers(client_user)).status_code == 403

    def test_client_reported_event(self, client, store, client_user):
        response = client.post(
            '/api/v1/events',
            json={
                'type': 'order.completed.shabbat',
                'entityType': 'order',
                'entityId': 'o-7',
                'payload': {'city': 'Haifa'},
            },
            headers=auth_headers(client_user),
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body['message']['key'] == 'event.recorded'
        assert body['data']['actorType'] == 'client'
        assert body['data']['actorId'] == client_user.id
        assert body['data']['payload'] == {'city': 'Haifa'}

        stored = store.list_product_events(event_type='order.completed.shabbat').items
        assert [event.id for event in stored] == [body['data']['id']]

    def test_reported_actor_is_always_the_caller(self, client, client_user, other_client):
        response = client.post(
            '/api/v1/events',
            json={'type': 'partner.offer.viewed', 'actorId': other_client.id},
            headers=auth_headers(client_user),
        )
        assert response.status_code == 400
        assert error_of(response)[1] == {'field': 'actorId', 'reason': 'not_allowed'}

    @pytest.mark.parametrize('body,field,reason', [
        ({}, 'type', 'required'),
        ({'type': 'order.teleported'}, 'type', 'choice'),
        ({'type': 'partner.offer.viewed', 'payload': 'x'}, 'payload', 'object'),
    ])
    def test_reported_event_validation(self, client, client_user, body, field, reason):
        response = client.post('/api/v1/events', json=body, headers=auth_headers(client_user))
        assert response.status_code == 400
        _, params = error_of(response)
        assert (params['field'], params['reason']) == (field, reason)

    def test_reported_events_need_auth(self, client):
        assert client.post('/api/v1/events', json={'type': 'partner.offer.viewed'}).status_code == 401

    def test_reported_events_skip_webhooks(self, client, store, admin_user, webhook_transport):
        client.post(
            '/api/v1/webhooks',
            json={'url': 'https://hooks.example.com/wf', 'events': ['bonus.earned']},
            headers=auth_headers(admin_user),
        )
        response = client.post('/api/v1/events', json={'type': 'bonus.earned'}, headers=auth_headers(admin_user))
        assert response.status_code == 201
        assert webhook_transport.calls == []
