import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from config import Config
from vfdashboard.application.errors import NotAuthenticatedError, PathNotAllowedError
from vfdashboard.application.signer import build_signature_headers, normalize_path
from vfdashboard.domain.vinfast import ALLOWED_PROXY_PREFIXES, API_HEADERS
from vfdashboard.infrastructure.vinfast_api import VinFastHttpClient, get_vinfast_http

logger = logging.getLogger(__name__)

BODYLESS_METHODS = ('GET', 'HEAD')


@dataclass
class ProxyResponse:
    status_code: int
    content: bytes
    content_type: str = 'application/json'


def resolve_region(code: Optional[str]) -> Tuple[str, dict]:
    """Region config for `code`, falling back to the default region."""
    regions = Config.REGIONS
    if code and code in regions:
        return code, regions[code]
    if code:
        logger.debug(f"Unknown region '{code}', using {Config.DEFAULT_REGION}")
    default = Config.DEFAULT_REGION if Config.DEFAULT_REGION in regions else 'vn'
    return default, regions[default]


def relative_path(path: str) -> str:
    return normalize_path(path).lstrip('/')


def is_allowed_path(path: str, prefixes: Iterable[str] = ALLOWED_PROXY_PREFIXES) -> bool:
    candidate = relative_path(path)
    if any(segment in ('.', '..') for segment in candidate.split('/')):
        return False
    return any(candidate.startswith(prefix) for prefix in prefixes)


def requires_signing(path: str) -> bool:
    candidate = relative_path(path)
    return any(candidate.startswith(prefix) for prefix in Config.SIGNED_PREFIXES)


class ProxyService:
    """Allow-listed relay from the dashboard to the vendor API."""

    def __init__(self, http: Optional[VinFastHttpClient] = None):
        self._http = http

    @property
    def http(self) -> VinFastHttpClient:
        return self._http or get_vinfast_http()

    def build_headers(self, method: str, path: str, access_token: str,
                      vin: Optional[str] = None, player_id: Optional[str] = None,
                      content_type: Optional[str] = None) -> dict:
        headers = dict(API_HEADERS)
        headers['Content-Type'] = content_type or 'application/json'
        headers['Authorization'] = f'Bearer {access_token}'
        if vin:
            headers['x-vin-code'] = vin
        if player_id:
            headers['x-player-identifier'] = player_id

        if requires_signing(path):
            # The vin signed must be exactly the x-vin-code sent
            headers.update(build_signature_headers(
                method.upper(),
                normalize_path(path),
                vin,
                player_id,
                Config.X_HASH_SECRET,
                Config.X_HASH_2_SECRET,
                platform=Config.SIGNING_PLATFORM,
            ))
        return headers

    def forward(self, method: str, path: str, access_token: Optional[str],
                query: Optional[List[Tuple[str, str]]] = None, body: Optional[bytes] = None,
                vin: Optional[str] = None, player_id: Optional[str] = None,
                region: Optional[str] = None, content_type: Optional[str] = None) -> ProxyResponse:
        method = method.upper()

        if not is_allowed_path(path):
            logger.warning(f"Proxy rejected non allow-listed path: {path!r}")
            raise PathNotAllowedError()

        if not access_token:
            logger.warning("Proxy call without access token cookie")
            raise NotAuthenticatedError()

        _, region_config = resolve_region(region)
        vendor_path = normalize_path(path)
        url = f"{region_config['api_base']}{vendor_path}"
        headers = self.build_headers(method, vendor_path, access_token, vin, player_id, content_type)
        params = [(k, v) for k, v in (query or []) if k != 'region']
        data = None if method in BODYLESS_METHODS else body

        logger.debug(f"Proxy {method} {vendor_path} (signed={'X-HASH' in headers})")
        response = self.http.send(method, url, headers, params=params or None, data=data)

        if response.status_code >= 400:
            logger.info(f"Vendor answered {response.status_code} for {method} {vendor_path}")

        return ProxyResponse(
            status_code=response.status_code,
            content=response.content,
            content_type=response.headers.get('Content-Type', 'application/json'),
        )


proxy_service = ProxyService()
