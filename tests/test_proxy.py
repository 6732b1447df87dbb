"""Tests for the allow-listed vendor relay."""

import http.client
from types import SimpleNamespace

import pytest
import requests
from requests.adapters import BaseAdapter

from config import Config
from vfdashboard.application.errors import UpstreamUnavailableError
from vfdashboard.application.proxy_service import (
    ProxyService,
    is_allowed_path,
    requires_signing,
    resolve_region,
)
from vfdashboard.application.signer import compute_secondary_signature, compute_signature
from vfdashboard.domain.vinfast import CHARGING_STATION_SEARCH_PATH, USER_VEHICLE_PATH
from vfdashboard.infrastructure.vinfast_api import VinFastHttpClient

from conftest import USER_ID, VIN_A, VIN_B


class TestAllowList:
    """Tests for path allow-listing."""

    @pytest.mark.parametrize('path', [
        'ccarusermgnt/api/v1/user-vehicle',
        '/ccaraccessmgmt/api/v1/telemetry/app/ping',
        'modelmgmt/api/v2/vehicle-model/mobile-app/vehicle/get-alias?version=1.0',
        '//ccarcharging//api/v1/stations/search/',
        'ccarbookingmgmt/api/v1/bookings',
    ])
    def test_allowed(self, path):
        """Test every vendor family on the list passes."""
        assert is_allowed_path(path)

    @pytest.mark.parametrize('path', [
        'ccarusermgnt-evil/api/v1/user-vehicle',
        'ccarusermgnt',
        'ccarchargingx/api',
        'admin/api/v1/users',
        'ccarusermgnt/../admin/secrets',
        'ccarusermgnt/./api',
        '',
        'https://evil.example/ccarusermgnt/api',
    ])
    def test_rejected(self, path):
        """Test prefix look-alikes, traversal and foreign paths are refused."""
        assert not is_allowed_path(path)

    def test_signing_prefixes(self):
        """Test only charging paths need signatures by default."""
        assert requires_signing(CHARGING_STATION_SEARCH_PATH)
        assert not requires_signing(USER_VEHICLE_PATH)

    def test_unknown_region_falls_back(self):
        """Test unknown and missing region codes use the default region."""
        assert resolve_region('mars')[0] == Config.DEFAULT_REGION
        assert resolve_region(None)[0] == Config.DEFAULT_REGION
        assert resolve_region('us')[1]['api_base'] == Config.REGIONS['us']['api_base']


class TestProxyRoute:
    """Tests for /api/proxy/<path>."""

    def test_not_allowed_is_403(self, logged_in_client, fake_vendor):
        """Test a look-alike prefix is rejected without calling the vendor."""
        sent_before = len(fake_vendor.sent)
        response = logged_in_client.get('/api/proxy/ccarusermgnt-evil/api/v1/user-vehicle')
        assert response.status_code == 403
        assert response.get_json() == {'error': 'Path not allowed', 'code': 'not_allowed'}
        assert len(fake_vendor.sent) == sent_before

    def test_requires_session(self, client, fake_vendor):
        """Test calls without the access token cookie are rejected."""
        response = client.get(f'/api/proxy/{USER_VEHICLE_PATH}')
        assert response.status_code == 401
        assert fake_vendor.sent == []

    def test_relays_unsigned_call(self, logged_in_client, fake_vendor):
        """Test bearer auth, context headers and a verbatim relay for unsigned families."""
        response = logged_in_client.get(f'/api/proxy/{USER_VEHICLE_PATH}?region=vn&page=2')

        assert response.status_code == 200
        assert response.get_json()['data'][0]['vinCode'] == VIN_A

        sent = fake_vendor.sent[-1]
        assert sent.url == f"{Config.REGIONS['vn']['api_base']}/{USER_VEHICLE_PATH}"
        assert sent.headers['Authorization'] == 'Bearer vendor-access-token'
        assert sent.headers['x-vin-code'] == VIN_A
        assert sent.headers['x-player-identifier'] == USER_ID
        assert 'X-HASH' not in sent.headers
        assert sent.params == [('page', '2')]
        assert sent.data is None

    def test_region_query_selects_base_url(self, logged_in_client, fake_vendor):
        """Test the region query parameter picks the vendor base URL."""
        logged_in_client.get(f'/api/proxy/{USER_VEHICLE_PATH}?region=us')
        assert fake_vendor.sent[-1].url.startswith(Config.REGIONS['us']['api_base'])
        assert fake_vendor.sent[-1].params is None

    def test_signed_call(self, logged_in_client, fake_vendor):
        """Test charging calls carry both signatures over the vin actually sent."""
        fake_vendor.routes[('POST', CHARGING_STATION_SEARCH_PATH)] = (200, {'data': []})
        body = b'{"latitude": 21.0, "longitude": 105.8}'

        response = logged_in_client.post(
            f'/api/proxy/{CHARGING_STATION_SEARCH_PATH}',
            data=body,
            headers={'Content-Type': 'application/json', 'x-vin-code': VIN_B},
        )

        assert response.status_code == 200
        sent = fake_vendor.sent[-1]
        assert sent.data == body
        assert sent.headers['x-vin-code'] == VIN_B
        ts = int(sent.headers['X-TIMESTAMP'])
        path = '/' + CHARGING_STATION_SEARCH_PATH
        assert sent.headers['X-HASH'] == compute_signature(
            'POST', path, VIN_B, Config.X_HASH_SECRET, ts)
        assert sent.headers['X-HASH-2'] == compute_secondary_signature(
            'POST', path, VIN_B, USER_ID, Config.X_HASH_2_SECRET, ts,
            platform=Config.SIGNING_PLATFORM)

    def test_missing_secret_is_server_misconfigured(self, logged_in_client, fake_vendor,
                                                    monkeypatch):
        """Test a signed family never goes out unsigned."""
        monkeypatch.setattr(Config, 'X_HASH_SECRET', None)
        sent_before = len(fake_vendor.sent)

        response = logged_in_client.post(f'/api/proxy/{CHARGING_STATION_SEARCH_PATH}', json={})

        assert response.status_code == 500
        assert response.get_json() == {'error': 'Server misconfigured',
                                       'code': 'server_misconfigured'}
        assert len(fake_vendor.sent) == sent_before

    def test_vendor_status_relayed(self, logged_in_client, fake_vendor):
        """Test vendor error statuses and bodies pass through unchanged."""
        fake_vendor.routes[('GET', 'ccarbookingmgmt/api/v1/bookings')] = (
            409, {'code': 409001, 'message': 'conflict'})
        response = logged_in_client.get('/api/proxy/ccarbookingmgmt/api/v1/bookings')
        assert response.status_code == 409
        assert response.get_json() == {'code': 409001, 'message': 'conflict'}

    def test_network_failure_is_502(self, logged_in_client, fake_vendor):
        """Test transport failures surface as a bare 502."""
        def unreachable(request):
            raise UpstreamUnavailableError()

        fake_vendor.routes[('GET', 'ccarbookingmgmt/api/v1/bookings')] = unreachable
        response = logged_in_client.get('/api/proxy/ccarbookingmgmt/api/v1/bookings')
        assert response.status_code == 502
        assert response.get_json()['error'] == 'Upstream unavailable'


class AffinityCookieAdapter(BaseAdapter):
    """Transport that answers every request with a vendor Set-Cookie."""

    def __init__(self):
        super().__init__()
        self.requests = []

    def send(self, request, **kwargs):
        self.requests.append((request.headers.get('Authorization'), request.headers.get('Cookie')))
        headers = http.client.HTTPMessage()
        headers['Set-Cookie'] = 'vendor_session=alice-affinity; Path=/'

        response = requests.Response()
        response.status_code = 200
        response._content = b'{"code": 200000, "data": []}'
        response.headers['Content-Type'] = 'application/json'
        response.raw = SimpleNamespace(_original_response=SimpleNamespace(msg=headers))
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


class TestSharedVendorSession:
    """Tests for the vendor HTTP session shared by all users."""

    @pytest.fixture
    def adapter(self):
        return AffinityCookieAdapter()

    @pytest.fixture
    def vendor_http(self, adapter):
        session = requests.Session()
        session.mount('https://', adapter)
        session.mount('http://', adapter)
        return VinFastHttpClient(session=session)

    def test_vendor_cookie_not_replayed_for_next_user(self, vendor_http, adapter):
        """Test a cookie set on one user's reply never reaches another user's call."""
        proxy = ProxyService(http=vendor_http)

        proxy.forward('GET', USER_VEHICLE_PATH, 'token-alice')
        proxy.forward('GET', USER_VEHICLE_PATH, 'token-bob')

        assert adapter.requests == [('Bearer token-alice', None), ('Bearer token-bob', None)]
        assert len(vendor_http.session.cookies) == 0

    def test_auth0_cookie_not_replayed(self, vendor_http, adapter):
        """Test cookies from the token endpoint are not sent with later userinfo calls."""
        region_config = resolve_region('vn')[1]

        vendor_http.password_grant(region_config, 'alice@x.com', 'secret')
        vendor_http.userinfo(region_config, 'token-bob')

        assert adapter.requests[1] == ('Bearer token-bob', None)
