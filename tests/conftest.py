"""Shared fixtures: environment, a fake VinFast backend and a gateway test client."""

import json
import os
from dataclasses import dataclass
from typing import Any, Optional
from unittest.mock import MagicMock
from urllib.parse import urlsplit

# Config reads the environment at import time
os.environ.setdefault('FLASK_SECRET_KEY', 'test-secret-key-with-enough-length-32b')
os.environ.setdefault('VINFAST_X_HASH_SECRET', 'test-primary-secret')
os.environ.setdefault('VINFAST_X_HASH_2_SECRET', 'test-secondary-secret')
os.environ['RATELIMIT_ENABLED'] = 'false'
os.environ['REDIS_ENABLED'] = 'false'

import pytest  # noqa: E402

from vfdashboard.client.session_store import SessionStore  # noqa: E402
from vfdashboard.client.vendor_client import VendorClient  # noqa: E402
from vfdashboard.domain.vinfast import USER_VEHICLE_PATH  # noqa: E402
from vfdashboard.infrastructure import vinfast_api  # noqa: E402
from vfdashboard.infrastructure.persistent_store import InMemoryStore  # noqa: E402

VIN_A = 'RLLVFAST0A0000001'
VIN_B = 'RLLVFAST0B0000002'
USER_ID = 'user-42'

VEHICLES = [
    {'vinCode': VIN_A, 'userId': USER_ID, 'marketingName': 'VF 8', 'vehicleVariant': 'Plus',
     'exteriorColor': 'Blue', 'yearOfProduct': 2023, 'vehicleAliasVersion': '2.1'},
    {'vinCode': VIN_B, 'userId': USER_ID, 'marketingName': 'VF e34', 'vehicleVariant': 'Base',
     'exteriorColor': 'White', 'yearOfProduct': 2022},
]


class FakeResponse:
    """The slice of requests.Response the code under test uses."""

    def __init__(self, status_code: int = 200, payload: Any = None, content: Optional[bytes] = None,
                 headers: Optional[dict] = None):
        self.status_code = status_code
        if content is None:
            content = json.dumps(payload).encode('utf-8') if payload is not None else b''
        self.content = content
        self.headers = headers or {'Content-Type': 'application/json'}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.content)


@dataclass
class SentRequest:
    method: str
    url: str
    headers: dict
    params: Any
    data: Any

    @property
    def path(self):
        return urlsplit(self.url).path.lstrip('/')


class FakeVendor:
    """Replaces VinFastHttpClient: canned Auth0 grants plus routed API replies."""

    def __init__(self):
        self.login_status = 200
        self.login_error = 'invalid_grant'
        self.refresh_status = 200
        self.tokens = {'access_token': 'vendor-access-token',
                       'refresh_token': 'vendor-refresh-token', 'expires_in': 3600}
        self.profile = {'sub': 'auth0|42', 'name': 'Test Driver', 'email': 'user@x.com',
                        'picture': 'https://example.invalid/avatar.png'}
        self.routes = {('GET', USER_VEHICLE_PATH): (200, {'code': 200000, 'data': VEHICLES})}
        self.grants = []
        self.sent = []

    def password_grant(self, region_config, email, password):
        self.grants.append(('password', region_config['auth0_domain'], email))
        if self.login_status != 200:
            body = {'error_description': 'Wrong email or password.'}
            if self.login_error:
                body['error'] = self.login_error
            return FakeResponse(self.login_status, body)
        return FakeResponse(200, self.tokens)

    def refresh_grant(self, region_config, refresh_token):
        self.grants.append(('refresh', region_config['auth0_domain'], refresh_token))
        if self.refresh_status != 200:
            return FakeResponse(self.refresh_status, {'error': 'invalid_grant'})
        return FakeResponse(200, {'access_token': 'vendor-access-token-2', 'expires_in': 3600})

    def userinfo(self, region_config, access_token):
        return FakeResponse(200, self.profile)

    def send(self, method, url, headers, params=None, data=None):
        request = SentRequest(method, url, headers, params, data)
        self.sent.append(request)
        handler = self.routes.get((method, request.path))
        if handler is None:
            return FakeResponse(404, {'message': 'not found'})
        if callable(handler):
            return handler(request)
        status, payload = handler
        return FakeResponse(status, payload)


class ClientCookieJar:
    """requests-style cookie access over a Flask test client's jar."""

    def __init__(self, client):
        self._client = client

    def get(self, name, default=None):
        cookie = self._client.get_cookie(name)
        return cookie.value if cookie is not None else default

    def set(self, name, value):
        if value is None:
            self._client.delete_cookie(name)
        else:
            self._client.set_cookie(name, value)


class GatewayTestHttp:
    """Lets VendorClient talk to the Flask app in-process as if over requests."""

    def __init__(self, client):
        self.client = client
        self.cookies = ClientCookieJar(client)
        self.calls = []

    def request(self, method, url, params=None, json=None, data=None, headers=None, timeout=None):
        self.calls.append((method, url))
        response = self.client.open(url, method=method, query_string=params, json=json,
                                    data=data, headers=headers)
        return FakeResponse(response.status_code, content=response.get_data(),
                            headers=dict(response.headers))


@pytest.fixture
def fake_vendor(monkeypatch):
    vendor = FakeVendor()
    monkeypatch.setattr(vinfast_api, '_vinfast_http', vendor)
    return vendor


@pytest.fixture(scope='session')
def app():
    from main import create_app
    application = create_app()
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app, fake_vendor):
    return app.test_client()


@pytest.fixture
def logged_in_client(client):
    response = client.post('/api/login', json={'email': 'user@x.com', 'password': 'pw',
                                               'region': 'vn'})
    assert response.status_code == 200
    return client


@pytest.fixture
def gateway_http(client):
    return GatewayTestHttp(client)


@pytest.fixture
def enricher():
    enricher = MagicMock()
    enricher.enrich.return_value = {}
    return enricher


@pytest.fixture
def vendor_client(gateway_http, enricher):
    session_store = SessionStore(persistent_store=InMemoryStore(), cookie_jar=gateway_http.cookies)
    return VendorClient(http=gateway_http, session_store=session_store, enricher=enricher)
