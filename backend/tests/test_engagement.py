"""
Customer activity timeline and segmentation flag tests.

Verifies:
- Activity is written by the user or users.manage, read by the user or users.read
- Activity filters and the per-type summary
- Flags upsert by (user, key) and keep their id
- Flag changes are audited with the changed fields
- /flags/<key>/users lists flagged users by value
"""

import pytest

from conftest import auth_headers, error_of


def record(client, actor, user_id, **body):
    return client.post(f'/api/v1/users/{user_id}/activity', json=body, headers=auth_headers(actor))


def set_flag(client, actor, user_id, **body):
    return client.post(f'/api/v1/users/{user_id}/flags', json=body, headers=auth_headers(actor))


# =============================================================================
# ACTIVITY
# =============================================================================

class TestActivity:

    def test_user_records_own_activity(self, client, client_user):
        response = record(
            client, client_user, client_user.id,
            eventType='skip_day', referenceType='order', referenceId='o-1', metadata={'day': 'friday'},
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body['message']['key'] == 'activity.recorded'
        data = body['data']
        assert data['userId'] == client_user.id
        assert data['eventType'] == 'skip_day'
        assert data['metadata'] == {'day': 'friday'}

    def test_other_user_cannot_write(self, client, client_user, other_client):
        response = record(client, other_client, client_user.id, eventType='app_opened')
        assert response.status_code == 403

    def test_staff_with_users_manage_can_write(self, client, client_user, admin_user):
        response = record(client, admin_user, client_user.id, eventType='support_contacted')
        assert response.status_code == 201

    def test_unknown_user(self, client, admin_user):
        response = record(client, admin_user, 'missing', eventType='app_opened')
        assert response.status_code == 404

    @pytest.mark.parametrize('body,field,reason', [
        ({}, 'eventType', 'required'),
        ({'eventType': 'teleported'}, 'eventType', 'choice'),
        ({'eventType': 'app_opened', 'metadata': ['x']}, 'metadata', 'object'),
        ({'eventType': 'app_opened', 'colour': 'red'}, 'colour', 'not_allowed'),
    ])
    def test_validation(self, client, client_user, body, field, reason):
        response = record(client, client_user, client_user.id, **body)
        assert response.status_code == 400
        _, params = error_of(response)
        assert params['field'] == field
        assert params['reason'] == reason

    def test_read_access(self, client, client_user, other_client, support_user, dispatcher_user):
        record(client, client_user, client_user.id, eventType='app_opened')
        path = f'/api/v1/users/{client_user.id}/activity'

        assert client.get(path, headers=auth_headers(client_user)).status_code == 200
        assert client.get(path, headers=auth_headers(support_user)).status_code == 200
        assert client.get(path, headers=auth_headers(other_client)).status_code == 403
        assert client.get(path, headers=auth_headers(dispatcher_user)).status_code == 403

    def test_filter_by_type(self, client, client_user):
        for event_type in ('app_opened', 'app_opened', 'tip_given'):
            record(client, client_user, client_user.id, eventType=event_type)

        body = client.get(
            f'/api/v1/users/{client_user.id}/activity?eventType=app_opened',
            headers=auth_headers(client_user),
        ).get_json()
        assert body['meta']['total'] == 2
        assert {item['eventType'] for item in body['data']} == {'app_opened'}

        response = client.get(
            f'/api/v1/users/{client_user.id}/activity?eventType=nope',
            headers=auth_headers(client_user),
        )
        assert response.status_code == 400

    def test_time_range(self, client, client_user):
        record(client, client_user, client_user.id, eventType='app_opened')
        path = f'/api/v1/users/{client_user.id}/activity'

        body = client.get(f'{path}?from=2000-01-01T00:00:00Z', headers=auth_headers(client_user)).get_json()
        assert body['meta']['total'] == 1
        body = client.get(f'{path}?to=2000-01-01T00:00:00Z', headers=auth_headers(client_user)).get_json()
        assert body['meta']['total'] == 0

        response = client.get(f'{path}?from=yesterday', headers=auth_headers(client_user))
        assert response.status_code == 400
        assert error_of(response)[1] == {'field': 'from', 'reason': 'datetime'}

    def test_summary_counts_every_type(self, client, client_user):
        record(client, client_user, client_user.id, eventType='skip_day')
        record(client, client_user, client_user.id, eventType='skip_day')
        record(client, client_user, client_user.id, eventType='shabbat_call')

        summary = client.get(
            f'/api/v1/users/{client_user.id}/activity/summary',
            headers=auth_headers(client_user),
        ).get_json()['data']
        assert summary['skip_day'] == 2
        assert summary['shabbat_call'] == 1
        assert summary['referral_sent'] == 0


# =============================================================================
# FLAGS
# =============================================================================

class TestFlags:

    def test_requires_users_manage(self, client, client_user, support_user):
        assert set_flag(client, client_user, client_user.id, key='vip').status_code == 403
        assert set_flag(client, support_user, client_user.id, key='vip').status_code == 403

    def test_set_defaults(self, client, client_user, admin_user):
        response = set_flag(client, admin_user, client_user.id, key='vip')
        assert response.status_code == 200
        body = response.get_json()
        assert body['message'] == {'key': 'flag.set', 'params': {'key': 'vip'}}
        assert body['data']['value'] is True
        assert body['data']['source'] == 'manual'

    def test_set_is_an_upsert(self, client, store, client_user, admin_user):
        first = set_flag(client, admin_user, client_user.id, key='churn_risk', source='ml').get_json()['data']
        second = set_flag(client, admin_user, client_user.id, key='churn_risk', value=False).get_json()['data']

        assert second['id'] == first['id']
        assert second['value'] is False
        assert second['source'] == 'manual'
        assert len(store.list_user_flags(client_user.id)) == 1

        entries = store.list_audit_logs(action='SET_USER_FLAG').items
        assert len(entries) == 2
        latest = next(entry for entry in entries if entry.changes['value']['from'] is True)
        assert latest.entity_id == client_user.id
        assert latest.changes == {
            'value': {'from': True, 'to': False},
            'source': {'from': 'ml', 'to': 'manual'},
        }
        assert latest.meta == {'key': 'churn_risk'}

    def test_unchanged_flag_is_not_audited_twice(self, client, store, client_user, admin_user):
        set_flag(client, admin_user, client_user.id, key='vip')
        set_flag(client, admin_user, client_user.id, key='vip')
        assert store.list_audit_logs(action='SET_USER_FLAG').total == 1

    def test_unknown_key(self, client, client_user, admin_user):
        response = set_flag(client, admin_user, client_user.id, key='astronaut')
        assert response.status_code == 400
        assert error_of(response)[1]['reason'] == 'choice'

    def test_list_flags(self, client, client_user, admin_user, support_user):
        set_flag(client, admin_user, client_user.id, key='vip')
        set_flag(client, admin_user, client_user.id, key='early_adopter')

        response = client.get(f'/api/v1/users/{client_user.id}/flags', headers=auth_headers(support_user))
        assert response.status_code == 200
        assert [flag['key'] for flag in response.get_json()['data']] == ['early_adopter', 'vip']

        response = client.get(f'/api/v1/users/{client_user.id}/flags', headers=auth_headers(client_user))
        assert response.status_code == 403

    def test_delete(self, client, store, client_user, admin_user):
        set_flag(client, admin_user, client_user.id, key='vip')
        path = f'/api/v1/users/{client_user.id}/flags/vip'

        assert client.delete(path, headers=auth_headers(admin_user)).status_code == 204
        assert store.get_user_flag(client_user.id, 'vip') is None
        assert store.list_audit_logs(action='DELETE_USER_FLAG').total == 1

        again = client.delete(path, headers=auth_headers(admin_user))
        assert again.status_code == 404
        assert error_of(again) == ('flag.not_found', {'userId': client_user.id, 'key': 'vip'})

    def test_users_with_flag(self, client, client_user, other_client, admin_user, support_user):
        set_flag(client, admin_user, client_user.id, key='high_ltv')
        set_flag(client, admin_user, other_client.id, key='high_ltv', value=False)

        flagged = client.get('/api/v1/flags/high_ltv/users', headers=auth_headers(support_user)).get_json()
        assert flagged['data'] == [client_user.id]

        cleared = client.get('/api/v1/flags/high_ltv/users?value=false', headers=auth_headers(support_user))
        assert cleared.get_json()['data'] == [other_client.id]

        assert client.get('/api/v1/flags/nope/users', headers=auth_headers(support_user)).status_code == 400
