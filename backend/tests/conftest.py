"""
Pytest fixtures for wasteflow backend tests.

Provides an app per test (fresh in-memory storage with seeded RBAC
defaults), a test client, user/role helpers and a webhook transport that
records outbound calls instead of touching the network.
"""

from types import SimpleNamespace

import httpx
import pytest

from wasteflow import create_app
from wasteflow.services import auth_service, permission_service, token_service
from wasteflow.services.webhook_service import EXTENSION_KEY as WEBHOOK_KEY
from wasteflow.storage import MemoryStorage, SqlStorage, get_storage

PASSWORD = "secret123"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'STORAGE_BACKEND': 'memory',
    'BCRYPT_ROUNDS': 4,
    'AUTH_RATE_LIMIT_MAX': 1000,
    'WEBHOOK_DISPATCH_MODE': 'inline',
    'WEBHOOK_BACKOFF_SECONDS': 0,
}


@pytest.fixture(scope='function')
def app():
    """Create application for testing (memory backend)."""
    app = create_app(TEST_CONFIG, storage=MemoryStorage())
    with app.app_context():
        yield app


@pytest.fixture(scope='function')
def sql_app():
    """Application on the SQL backend (sqlite in memory), schema and RBAC seeded."""
    app = create_app({**TEST_CONFIG, 'STORAGE_BACKEND': 'sql'}, storage=SqlStorage())
    with app.app_context():
        store = get_storage()
        store.create_schema()
        permission_service.initialize_defaults(store)
        yield app
        store.reset()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def store(app):
    return get_storage()


@pytest.fixture(scope='function')
def webhook_transport(app):
    """
    Route webhook deliveries through httpx.MockTransport.

    Append status codes (or exceptions) to .responses to script the
    subscriber; anything beyond the script answers 200.
    """
    recorder = SimpleNamespace(calls=[], responses=[])

    def handler(request):
        recorder.calls.append(request)
        outcome = recorder.responses.pop(0) if recorder.responses else 200
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text="ok" if outcome < 300 else "nope")

    dispatcher = app.extensions[WEBHOOK_KEY]
    dispatcher.client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher.sleep = lambda seconds: None
    return recorder


# -- helpers --

_phone_counter = iter(range(10**6))


def next_phone():
    return f"05{next(_phone_counter):08d}"


def make_user(store, user_type='client', roles=(), phone=None, email=None, status='active'):
    """Create a user directly in storage, optionally with role names."""
    user = auth_service.create_user(
        store,
        phone=phone or next_phone(),
        password=PASSWORD,
        user_type=user_type,
        email=email,
        status=status,
    )
    for role_name in roles:
        permission_service.assign_role(store, user.id, role_name)
    return user


def auth_headers(user, **extra):
    """Bearer headers for user (no session row needed for access tokens)."""
    tokens = token_service.issue_token_pair(user)
    headers = {'Authorization': f"Bearer {tokens['accessToken']}"}
    headers.update(extra)
    return headers


def error_of(response):
    """(key, params) of an error envelope."""
    error = response.get_json()['error']
    return error['key'], error['params']


# -- user fixtures --

@pytest.fixture
def client_user(store):
    return make_user(store, 'client')


@pytest.fixture
def other_client(store):
    return make_user(store, 'client')


@pytest.fixture
def courier_user(store):
    return make_user(store, 'courier')


@pytest.fixture
def dispatcher_user(store):
    return make_user(store, 'staff', roles=['dispatcher'])


@pytest.fixture
def admin_user(store):
    return make_user(store, 'staff', roles=['admin'])


@pytest.fixture
def support_user(store):
    return make_user(store, 'staff', roles=['support'])


# -- domain helpers --

ORDER_PAYLOAD = {
    'scheduledAt': '2026-11-01T09:00:00Z',
    'timeWindow': '09:00-12:00',
}


def create_address(client, user, **fields):
    body = {'city': 'Haifa', 'street': 'Herzl', 'house': '12'}
    body.update(fields)
    response = client.post('/api/v1/addresses', json=body, headers=auth_headers(user))
    assert response.status_code == 201, response.get_json()
    return response.get_json()['data']


def create_order(client, user, address_id=None, **fields):
    if address_id is None:
        address_id = create_address(client, user)['id']
    body = {**ORDER_PAYLOAD, 'addressId': address_id}
    body.update(fields)
    response = client.post('/api/v1/orders', json=body, headers=auth_headers(user))
    assert response.status_code == 201, response.get_json()
    return response.get_json()['data']


def assign(client, staff, order_id, courier_id):
    return client.post(
        f'/api/v1/orders/{order_id}/assign',
        json={'courierId': courier_id},
        headers=auth_headers(staff),
    )
