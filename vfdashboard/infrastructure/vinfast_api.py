import http.cookiejar
import logging
from typing import Optional

import requests

from config import Config
from vfdashboard.application.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)


class VinFastHttpClient:
    """Thin requests wrapper for the vendor's Auth0 tenant and mobile API."""

    def __init__(self, timeout: Optional[int] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout or Config.VINFAST_REQUEST_TIMEOUT
        self.session = session or requests.Session()
        # One session serves every user, so vendor and Auth0 cookies are never stored
        self.session.cookies.set_policy(http.cookiejar.DefaultCookiePolicy(allowed_domains=[]))

    def password_grant(self, region_config: dict, email: str, password: str) -> requests.Response:
        payload = {
            "client_id": region_config["auth0_client_id"],
            "audience": region_config["auth0_audience"],
            "grant_type": "password",
            "scope": "offline_access openid profile email",
            "username": email,
            "password": password,
        }
        return self._post_oauth(region_config, payload)

    def refresh_grant(self, region_config: dict, refresh_token: str) -> requests.Response:
        payload = {
            "client_id": region_config["auth0_client_id"],
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return self._post_oauth(region_config, payload)

    def userinfo(self, region_config: dict, access_token: str) -> requests.Response:
        url = f"https://{region_config['auth0_domain']}/userinfo"
        try:
            return self.session.get(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Auth0 userinfo request failed: {e.__class__.__name__}")
            raise UpstreamUnavailableError()

    def send(self, method: str, url: str, headers: dict, params=None, data=None) -> requests.Response:
        try:
            return self.session.request(
                method,
                url,
                headers=headers,
                params=params,
                data=data,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Vendor request {method} {url} failed: {e.__class__.__name__}")
            raise UpstreamUnavailableError()

    def _post_oauth(self, region_config: dict, payload: dict) -> requests.Response:
        url = f"https://{region_config['auth0_domain']}/oauth/token"
        try:
            return self.session.post(
                url,
                headers={"Content-Type": "application/json"},
                json=payload,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Auth0 token request failed: {e.__class__.__name__}")
            raise UpstreamUnavailableError()


_vinfast_http = None


def get_vinfast_http() -> VinFastHttpClient:
    """Get or create the shared vendor HTTP client."""
    global _vinfast_http
    if _vinfast_http is None:
        _vinfast_http = VinFastHttpClient()
    return _vinfast_http
