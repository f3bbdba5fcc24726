"""
Order state machine tests.

Verifies:
- The transition table (terminal states, no skipping, no self-loops)
- Generic PATCH status changes go through the same table
- A lost compare-and-swap surfaces the status that won
- No-op PATCHes write nothing
- PATCH authorization (price, assignment, strangers)
"""

import pytest

from wasteflow.errors import InvalidTransitionError
from wasteflow.services import order_service

from conftest import assign, auth_headers, create_order, error_of


def patch(client, user, order_id, body):
    return client.patch(f'/api/v1/orders/{order_id}', json=body, headers=auth_headers(user))


# =============================================================================
# TRANSITION TABLE
# =============================================================================

class TestTransitionTable:

    @pytest.mark.parametrize('from_status,to_status', [
        ('created', 'assigned'),
        ('created', 'cancelled'),
        ('assigned', 'in_progress'),
        ('assigned', 'cancelled'),
        ('in_progress', 'completed'),
        ('in_progress', 'cancelled'),
    ])
    def test_legal(self, from_status, to_status):
        assert order_service.can_transition(from_status, to_status)

    @pytest.mark.parametrize('from_status,to_status', [
        ('created', 'in_progress'),
        ('created', 'completed'),
        ('assigned', 'completed'),
        ('in_progress', 'assigned'),
        ('created', 'created'),
        ('unknown', 'assigned'),
    ])
    def test_illegal(self, from_status, to_status):
        assert not order_service.can_transition(from_status, to_status)

    @pytest.mark.parametrize('terminal', ['completed', 'cancelled'])
    def test_terminal_states_have_no_exits(self, terminal):
        assert terminal in order_service.TERMINAL_STATUSES
        for target in ('created', 'assigned', 'in_progress', 'completed', 'cancelled'):
            assert not order_service.can_transition(terminal, target)

    def test_validate_transition_error_params(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            order_service.validate_transition('created', 'completed', 'order-1')
        assert exc_info.value.status_code == 409
        assert exc_info.value.params == {'from': 'created', 'to': 'completed', 'orderId': 'order-1'}


# =============================================================================
# GENERIC PATCH
# =============================================================================

class TestPatchStatus:

    def test_skip_rejected_and_state_unchanged(self, client, store, client_user, dispatcher_user):
        order = create_order(client, client_user)
        response = patch(client, dispatcher_user, order['id'], {'status': 'completed'})
        assert response.status_code == 409
        key, params = error_of(response)
        assert key == 'order.invalid_status_transition'
        assert (params['from'], params['to']) == ('created', 'completed')

        assert store.get_order(order['id']).status == 'created'
        assert len(store.list_order_events(order['id'])) == 1

    def test_status_change_writes_status_changed_event(self, client, store, client_user, dispatcher_user):
        order = create_order(client, client_user)
        response = patch(client, dispatcher_user, order['id'], {'status': 'cancelled'})
        assert response.status_code == 200
        assert response.get_json()['data']['status'] == 'cancelled'

        event = store.list_order_events(order['id'])[-1]
        assert event.event_type == 'status_changed'
        assert event.meta == {'from': 'created', 'to': 'cancelled'}

        logs = store.list_audit_logs(entity_id=order['id'], action='UPDATE_ORDER').items
        assert logs[0].changes == {'status': {'from': 'created', 'to': 'cancelled'}}

    def test_patch_to_assigned_needs_orders_assign(self, client, store, client_user, courier_user):
        order = create_order(client, client_user)
        response = patch(client, client_user, order['id'], {'status': 'assigned', 'courierId': courier_user.id})
        assert response.status_code == 403
        assert error_of(response)[1] == {'required': ['orders.assign']}
        assert store.get_order(order['id']).courier_id is None

    def test_patch_to_assigned_sets_courier(self, client, store, client_user, courier_user, dispatcher_user):
        order = create_order(client, client_user)
        response = patch(
            client, dispatcher_user, order['id'], {'status': 'assigned', 'courierId': courier_user.id}
        )
        assert response.status_code == 200
        stored = store.get_order(order['id'])
        assert (stored.status, stored.courier_id) == ('assigned', courier_user.id)

    def test_courier_id_only_with_assignment(self, client, client_user, courier_user, dispatcher_user):
        order = create_order(client, client_user)
        response = patch(client, dispatcher_user, order['id'], {'courierId': courier_user.id})
        assert response.status_code == 400
        assert error_of(response)[1] == {'field': 'courierId', 'reason': 'assignment_only'}

    def test_unknown_status_value(self, client, client_user, dispatcher_user):
        order = create_order(client, client_user)
        response = patch(client, dispatcher_user, order['id'], {'status': 'teleported'})
        assert response.status_code == 400
        assert error_of(response)[1]['reason'] == 'choice'

    def test_unknown_field_rejected(self, client, client_user, dispatcher_user):
        order = create_order(client, client_user)
        response = patch(client, dispatcher_user, order['id'], {'clientId': 'someone-else'})
        assert response.status_code == 400
        assert error_of(response)[1] == {'field': 'clientId', 'reason': 'not_allowed'}

    def test_completed_order_is_frozen(self, client, store, client_user, courier_user, dispatcher_user):
        order = create_order(client, client_user)
        assign(client, dispatcher_user, order['id'], courier_user.id)
        for status in ('in_progress', 'completed'):
            assert patch(client, dispatcher_user, order['id'], {'status': status}).status_code == 200

        response = patch(client, dispatcher_user, order['id'], {'status': 'cancelled'})
        assert response.status_code == 409
        assert store.get_order(order['id']).status == 'completed'
        assert store.get_courier_profile(courier_user.id).completed_orders_count == 1


class TestPatchFields:

    def test_same_status_is_noop(self, client, store, client_user, dispatcher_user):
        order = create_order(client, client_user)
        response = patch(client, dispatcher_user, order['id'], {'status': 'created'})
        assert response.status_code == 200
        assert len(store.list_order_events(order['id'])) == 1
        assert store.list_audit_logs(entity_id=order['id']).items == []

    def test_identical_values_write_nothing(self, client, store, client_user, dispatcher_user):
        order = create_order(client, client_user, price=700)
        response = patch(client, dispatcher_user, order['id'], {'price': 700, 'timeWindow': order['timeWindow']})
        assert response.status_code == 200
        assert store.list_audit_logs(entity_id=order['id']).items == []

    def test_price_edit_by_staff_is_audited(self, client, store, client_user, dispatcher_user):
        order = create_order(client, client_user, price=700)
        response = patch(client, dispatcher_user, order['id'], {'price': 900, 'timeWindow': order['timeWindow']})
        assert response.get_json()['data']['price'] == 900

        logs = store.list_audit_logs(entity_id=order['id'], action='UPDATE_ORDER').items
        assert len(logs) == 1
        assert logs[0].changes == {'price': {'from': 700, 'to': 900}}

    def test_owner_cannot_change_price(self, client, client_user):
        order = create_order(client, client_user)
        response = patch(client, client_user, order['id'], {'price': 1})
        assert response.status_code == 403
        assert error_of(response)[1] == {'required': ['orders.update_status']}

    def test_owner_can_reschedule_without_audit(self, client, store, client_user):
        order = create_order(client, client_user)
        response = patch(client, client_user, order['id'], {'timeWindow': '14:00-16:00'})
        assert response.status_code == 200
        assert response.get_json()['data']['timeWindow'] == '14:00-16:00'
        assert store.list_audit_logs(entity_id=order['id']).items == []

    def test_stranger_cannot_patch(self, client, client_user, other_client):
        order = create_order(client, client_user)
        response = patch(client, other_client, order['id'], {'timeWindow': '14:00-16:00'})
        assert response.status_code == 403


# =============================================================================
# CONCURRENCY
# =============================================================================

class TestCompareAndSwap:

    def test_stale_read_loses(self, client, store, client_user, courier_user, dispatcher_user):
        order = create_order(client, client_user)
        stale = store.get_order(order['id'])
        assign(client, dispatcher_user, order['id'], courier_user.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            order_service._apply_transition(store, dispatcher_user, stale, 'cancelled')
        assert exc_info.value.from_status == 'assigned'
        assert exc_info.value.to_status == 'cancelled'

        # Exactly one event per successful transition
        assert [e.event_type for e in store.list_order_events(order['id'])] == ['created', 'assigned']

    def test_storage_cas_rejects_wrong_expected_status(self, client, store, client_user):
        order = create_order(client, client_user)
        assert store.transition_order(order['id'], 'assigned', {'status': 'in_progress'}) is None
        assert store.transition_order(order['id'], 'created', {'status': 'cancelled'}).status == 'cancelled'
        assert store.transition_order(order['id'], 'created', {'status': 'cancelled'}) is None

    def test_lost_assignment_race_reports_already_assigned(
        self, client, store, client_user, courier_user, dispatcher_user, monkeypatch
    ):
        order = create_order(client, client_user)
        stale = store.get_order(order['id'])
        assign(client, dispatcher_user, order['id'], courier_user.id)

        # The order was read before the other assignment landed
        monkeypatch.setattr(order_service, 'get_order_or_404', lambda *args, **kwargs: stale)
        response = assign(client, dispatcher_user, order['id'], courier_user.id)
        assert response.status_code == 409
        assert error_of(response)[0] == 'order.already_assigned'

    def test_cancel_retries_after_lost_race(self, app, client, store, client_user, courier_user, dispatcher_user):
        order = create_order(client, client_user)
        assign(client, dispatcher_user, order['id'], courier_user.id)

        real_transition = store.transition_order
        calls = []

        def racing_transition(order_id, from_status, changes):
            calls.append(from_status)
            if len(calls) == 1:
                # Another writer moves the order just before our swap
                real_transition(order_id, 'assigned', {'status': 'in_progress'})
            return real_transition(order_id, from_status, changes)

        store.transition_order = racing_transition
        cancelled = order_service.cancel_order(store, client_user, set(), order['id'], 'late')
        assert cancelled.status == 'cancelled'
        assert calls == ['assigned', 'in_progress']
