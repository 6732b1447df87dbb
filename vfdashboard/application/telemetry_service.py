import json
import logging
from typing import Optional

from vfdashboard.application.errors import NotAuthenticatedError, UpstreamUnavailableError
from vfdashboard.application.proxy_service import ProxyService, proxy_service
from vfdashboard.application.session_cookies import SessionCredentials
from vfdashboard.domain.models import now_ms
from vfdashboard.domain.telemetry import build_telemetry_request, parse_telemetry
from vfdashboard.domain.vinfast import TELEMETRY_PING_PATH

logger = logging.getLogger(__name__)


class TelemetryService:
    """Server-side batch telemetry read for a single vehicle."""

    def __init__(self, proxy: Optional[ProxyService] = None):
        self.proxy = proxy or proxy_service

    def snapshot(self, credentials: SessionCredentials, vin: str) -> dict:
        request_objects, path_to_alias = build_telemetry_request()
        result = self.proxy.forward(
            'POST',
            TELEMETRY_PING_PATH,
            credentials.access_token,
            body=json.dumps(request_objects).encode('utf-8'),
            vin=vin,
            player_id=credentials.user_id,
            region=credentials.region,
        )

        if result.status_code == 401:
            raise NotAuthenticatedError()
        if result.status_code != 200:
            logger.error(f"Telemetry ping for {vin} failed with status {result.status_code}")
            raise UpstreamUnavailableError('Failed to fetch telemetry')

        try:
            payload = json.loads(result.content or b'null')
        except ValueError:
            payload = None

        readings = payload.get('data') if isinstance(payload, dict) else None
        parsed = parse_telemetry(readings, path_to_alias)
        parsed['vin'] = vin
        parsed['last_updated'] = now_ms()
        return parsed


telemetry_service = TelemetryService()
