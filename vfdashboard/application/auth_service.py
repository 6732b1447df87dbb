import json
import logging
import re
from typing import List, Optional, Tuple

from vfdashboard.application.errors import (
    GatewayError,
    LoginFailedError,
    NotAuthenticatedError,
    UpstreamUnavailableError,
)
from vfdashboard.application.proxy_service import ProxyService, proxy_service, resolve_region
from vfdashboard.application.session_cookies import SessionCredentials, build_metadata
from vfdashboard.domain.models import SessionMetadata, SessionTokens
from vfdashboard.domain.vinfast import USER_VEHICLE_PATH
from vfdashboard.infrastructure.vinfast_api import VinFastHttpClient, get_vinfast_http

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def _json_or_none(response):
    try:
        return response.json()
    except ValueError:
        return None


def vehicle_list_from_envelope(payload) -> List[dict]:
    if isinstance(payload, dict) and isinstance(payload.get('data'), list):
        return [v for v in payload['data'] if isinstance(v, dict) and v.get('vinCode')]
    return []


class AuthService:
    """Login, refresh and profile lookups against the vendor's Auth0 tenant."""

    def __init__(self, http: Optional[VinFastHttpClient] = None,
                 proxy: Optional[ProxyService] = None):
        self._http = http
        self.proxy = proxy or proxy_service

    @property
    def http(self) -> VinFastHttpClient:
        return self._http or get_vinfast_http()

    def login(self, email: str, password: str, region: Optional[str] = None,
              remember_me: bool = False) -> Tuple[SessionTokens, SessionMetadata]:
        """Authenticate and resolve the first vehicle context, never returning vendor payloads."""
        if not email or not password:
            logger.warning("Login failed: missing credentials")
            raise LoginFailedError('invalid_credentials')
        if not EMAIL_PATTERN.fullmatch(email.strip()):
            logger.warning("Login failed: invalid email format")
            raise LoginFailedError('invalid_credentials')

        region_code, region_config = resolve_region(region)
        logger.info(f"Attempting login for region {region_code}")

        try:
            response = self.http.password_grant(region_config, email.strip(), password)
        except UpstreamUnavailableError:
            raise LoginFailedError('server_error')

        if response.status_code != 200:
            error = _json_or_none(response)
            logger.warning(f"Login rejected by vendor with status {response.status_code}")
            raise LoginFailedError.from_vendor(response.status_code, error)

        data = _json_or_none(response)
        if not isinstance(data, dict) or not data.get('access_token'):
            logger.error("Login response did not contain an access token")
            raise LoginFailedError('server_error')
        tokens = SessionTokens.from_oauth(data)

        vehicles = self._fetch_vehicles(tokens.access_token, region_code)
        if vehicles is None:
            raise LoginFailedError('server_error')

        vin = vehicles[0]['vinCode'] if vehicles else None
        user_id = vehicles[0].get('userId') if vehicles else None
        meta = build_metadata(vin, user_id, region_code, remember_me, email=email.strip())
        logger.info(f"Login successful, {len(vehicles)} vehicle(s) linked")
        return tokens, meta

    def refresh(self, credentials: SessionCredentials) -> SessionTokens:
        """Single refresh-token grant; raises NotAuthenticatedError when it fails."""
        if not credentials.refresh_token:
            raise NotAuthenticatedError()

        _, region_config = resolve_region(credentials.region)
        response = self.http.refresh_grant(region_config, credentials.refresh_token)
        if response.status_code != 200:
            logger.warning(f"Token refresh rejected with status {response.status_code}")
            raise NotAuthenticatedError('Session expired')

        data = _json_or_none(response)
        if not isinstance(data, dict) or not data.get('access_token'):
            raise NotAuthenticatedError('Session expired')

        tokens = SessionTokens.from_oauth(data)
        if not tokens.refresh_token:
            tokens.refresh_token = credentials.refresh_token
        logger.info("Access token refreshed")
        return tokens

    def user_profile(self, credentials: SessionCredentials) -> dict:
        if not credentials.access_token:
            raise NotAuthenticatedError()

        _, region_config = resolve_region(credentials.region)
        response = self.http.userinfo(region_config, credentials.access_token)
        if response.status_code == 401:
            raise NotAuthenticatedError()
        if response.status_code != 200:
            logger.error(f"Userinfo failed with status {response.status_code}")
            raise UpstreamUnavailableError()

        profile = _json_or_none(response) or {}
        return {
            'name': profile.get('name') or profile.get('sub'),
            'email': profile.get('email'),
            'picture': profile.get('picture'),
            'sub': profile.get('sub'),
        }

    def list_vehicles(self, credentials: SessionCredentials) -> List[dict]:
        if not credentials.access_token:
            raise NotAuthenticatedError()
        vehicles = self._fetch_vehicles(credentials.access_token, credentials.region)
        if vehicles is None:
            raise UpstreamUnavailableError()
        return vehicles

    def _fetch_vehicles(self, access_token: str, region: Optional[str]) -> Optional[List[dict]]:
        try:
            result = self.proxy.forward('GET', USER_VEHICLE_PATH, access_token, region=region)
        except GatewayError as e:
            logger.error(f"Vehicle lookup failed: {e.code}")
            return None

        if result.status_code == 401:
            raise NotAuthenticatedError()
        if result.status_code != 200:
            logger.error(f"Vehicle lookup failed with status {result.status_code}")
            return None

        try:
            payload = json.loads(result.content or b'null')
        except ValueError:
            logger.error("Vehicle lookup returned a non JSON body")
            return None

        vehicles = vehicle_list_from_envelope(payload)
        # One entry per vin, first occurrence wins
        unique = {}
        for vehicle in vehicles:
            unique.setdefault(vehicle['vinCode'], vehicle)
        return list(unique.values())


auth_service = AuthService()
