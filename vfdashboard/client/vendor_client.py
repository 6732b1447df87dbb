"""
Typed client for the dashboard gateway.

One method per vendor operation. Every call goes through the gateway with the
session cookies held in `http.cookies`; the vehicle a call is about is always
passed explicitly, nothing here remembers an "active" vin between calls.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from config import Config
from vfdashboard.client.enrichment import TelemetryEnricher
from vfdashboard.client.errors import (
    AuthenticationError,
    NotLoggedInError,
    SessionExpiredError,
    VendorRequestError,
)
from vfdashboard.client.session_store import SessionStore
from vfdashboard.domain.models import FullTelemetry, SessionMetadata, VehicleRecord, now_ms
from vfdashboard.domain.telemetry import (
    build_telemetry_request,
    deep_scan_candidates,
    parse_telemetry,
    raw_request_objects,
)
from vfdashboard.domain.vinfast import (
    ALIAS_PATH,
    CHARGING_HISTORY_SEARCH_PATH,
    CHARGING_STATION_SEARCH_PATH,
    DEFAULT_ALIAS_VERSION,
    RAW_TELEMETRY_PATH,
    TELEMETRY_PING_PATH,
)

logger = logging.getLogger(__name__)

DEFAULT_STATION_RADIUS_KM = 20


class SessionExpiryPolicy:
    """Decides whether a response means the vendor session is gone."""

    def __init__(self, codes: Optional[Iterable] = None, markers: Optional[Iterable[str]] = None):
        self.codes = {str(c) for c in (codes if codes is not None else Config.SESSION_EXPIRED_CODES)}
        self.markers = [m.lower() for m in
                        (markers if markers is not None else Config.SESSION_EXPIRED_MARKERS)]

    def is_expired(self, status_code: int, payload: Any) -> bool:
        if status_code == 401:
            return True
        if status_code != 200 or not isinstance(payload, dict):
            return False

        code = payload.get('code')
        if code is not None and str(code) in self.codes:
            return True
        # Message markers only count on bodies that report a failure
        if code is None or str(code) in ('0', '200', '200000') or payload.get('success') is True:
            return False
        message = payload.get('message') or payload.get('error') or ''
        return isinstance(message, str) and any(m in message.lower() for m in self.markers)


def _json(response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class VendorClient:
    def __init__(self, base_url: str = '', session_store: Optional[SessionStore] = None,
                 http=None, enricher: Optional[TelemetryEnricher] = None,
                 expiry_policy: Optional[SessionExpiryPolicy] = None,
                 on_session_expired: Optional[Callable[[], None]] = None,
                 timeout: Optional[float] = None):
        self.base_url = base_url.rstrip('/')
        self.http = http if http is not None else requests.Session()
        self.session_store = session_store or SessionStore(cookie_jar=self.http.cookies)
        self.enricher = enricher or TelemetryEnricher()
        self.expiry_policy = expiry_policy or SessionExpiryPolicy()
        self.on_session_expired = on_session_expired
        self.timeout = timeout or Config.VINFAST_REQUEST_TIMEOUT
        self._refresh_lock = threading.Lock()
        self._refresh_generation = 0
        self._region = Config.DEFAULT_REGION

    @property
    def region(self) -> str:
        meta = self.session_store.restore_session()
        return meta.region if meta and meta.region else self._region

    # --- transport -------------------------------------------------------

    def _send(self, method: str, path: str, params=None, json_body=None, headers=None):
        try:
            return self.http.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json_body,
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Gateway call {method} {path} failed: {e.__class__.__name__}")
            raise VendorRequestError('Network error, please check your connection')

    def _request(self, method: str, path: str, params=None, json_body=None, headers=None):
        """Send once; on an expired session refresh once and resend once."""
        generation = self._refresh_generation
        response = self._send(method, path, params, json_body, headers)
        if not self.expiry_policy.is_expired(response.status_code, _json(response)):
            return response

        logger.info(f"Session expired on {method} {path}, refreshing")
        self._refresh_or_expire(generation)

        response = self._send(method, path, params, json_body, headers)
        if self.expiry_policy.is_expired(response.status_code, _json(response)):
            logger.warning(f"Still unauthorized after refresh on {method} {path}")
            self._expire()
        return response

    def _refresh_or_expire(self, generation: int) -> None:
        with self._refresh_lock:
            if generation != self._refresh_generation:
                # Another caller refreshed while this request was in flight
                return
            if not self.refresh_session():
                self._expire()
            self._refresh_generation += 1

    def _expire(self):
        self.session_store.clear()
        if self.on_session_expired:
            try:
                self.on_session_expired()
            except Exception as e:
                logger.error(f"Session expired callback failed: {e}")
        raise SessionExpiredError()

    def _proxy(self, method: str, vendor_path: str, vin: Optional[str] = None,
               user_id: Optional[str] = None, params: Optional[Dict[str, Any]] = None,
               json_body=None, what: str = 'Request'):
        headers = {}
        if vin:
            headers['x-vin-code'] = vin
        if user_id:
            headers['x-player-identifier'] = user_id
        query = dict(params or {})
        query['region'] = self.region

        response = self._request(method, f"/api/proxy/{vendor_path}", params=query,
                                 json_body=json_body, headers=headers)
        if response.status_code != 200:
            logger.error(f"{what} failed with status {response.status_code}")
            raise VendorRequestError(f"{what} failed: {response.status_code}",
                                     response.status_code)
        payload = _json(response)
        if payload is None:
            raise VendorRequestError(f"{what} returned an unreadable body", response.status_code)
        return payload

    # --- session -----------------------------------------------------------

    def authenticate(self, email: str, password: str, region: str = 'vn',
                     remember_me: bool = False) -> SessionMetadata:
        try:
            response = self._send('POST', '/api/login', json_body={
                'email': email,
                'password': password,
                'region': region,
                'remember_me': remember_me,
            })
        except VendorRequestError:
            raise AuthenticationError('server_error')

        body = _json(response)
        if response.status_code != 200 or not isinstance(body, dict) or not body.get('success'):
            code = body.get('code') if isinstance(body, dict) else None
            if code in AuthenticationError.MESSAGES:
                raise AuthenticationError(code)
            raise AuthenticationError.from_status(response.status_code)

        meta = self.session_store.read_cookie()
        if meta is None:
            session = body.get('session') or {}
            meta = SessionMetadata(
                vin=session.get('vin'),
                user_id=None,
                region=session.get('region') or region,
                remember_me=bool(session.get('remember_me', remember_me)),
                expires_at=int(session.get('expires_at') or 0),
                email=email,
            )
        self._region = meta.region
        self.session_store.save(meta)
        logger.info(f"Authenticated in region {meta.region}")
        return meta

    def logout(self) -> None:
        try:
            self._send('POST', '/api/logout')
        except VendorRequestError:
            logger.warning("Logout call failed, clearing local session anyway")
        self.session_store.clear()

    def refresh_session(self) -> bool:
        """One refresh-token grant through the gateway. Never retried."""
        try:
            response = self._send('POST', '/api/refresh')
        except VendorRequestError:
            return False
        if response.status_code != 200:
            logger.warning(f"Session refresh rejected with status {response.status_code}")
            return False
        return True

    # --- vendor operations -------------------------------------------------

    def list_vehicles(self) -> List[VehicleRecord]:
        """Vehicles on the account, one per vin. The first one seeds the session context."""
        if not self.session_store.is_authenticated:
            raise NotLoggedInError()
        response = self._request('GET', '/api/vehicles', params={'region': self.region})
        if response.status_code != 200:
            raise VendorRequestError('Failed to fetch vehicles', response.status_code)

        payload = _json(response)
        items = payload.get('data') if isinstance(payload, dict) else None
        vehicles: List[VehicleRecord] = []
        seen = set()
        for item in items if isinstance(items, list) else []:
            if not isinstance(item, dict) or not item.get('vinCode') or item['vinCode'] in seen:
                continue
            seen.add(item['vinCode'])
            vehicles.append(VehicleRecord.from_api(item))

        meta = self.session_store.restore_session()
        if vehicles and meta and not meta.vin:
            meta.vin = vehicles[0].vin_code
            meta.user_id = vehicles[0].user_id
            self.session_store.save(meta)
        return vehicles

    def get_user_profile(self) -> dict:
        response = self._request('GET', '/api/user', params={'region': self.region})
        if response.status_code != 200:
            raise VendorRequestError(f"Failed to fetch user profile: {response.status_code}",
                                     response.status_code)
        payload = _json(response)
        return (payload or {}).get('data') or {}

    def get_telemetry(self, vin: str, user_id: Optional[str] = None,
                      enrich: bool = True) -> Dict[str, Any]:
        """
        Batch read of the mapped telemetry fields.

        With `enrich`, a known position also gets location and weather labels;
        those lookups never fail the read, they are simply left out.
        """
        if not vin:
            raise VendorRequestError('VIN is required')

        request_objects, path_to_alias = build_telemetry_request()
        payload = self._proxy('POST', TELEMETRY_PING_PATH, vin=vin, user_id=user_id,
                              json_body=request_objects, what='Telemetry fetch')

        fields = parse_telemetry(payload.get('data') if isinstance(payload, dict) else None,
                                 path_to_alias)
        fields['vin'] = vin
        fields['last_updated'] = now_ms()

        if enrich:
            fields.update(self.enrich_position(fields.get('latitude'), fields.get('longitude')))
        return fields

    def enrich_position(self, lat, lon) -> Dict[str, Any]:
        return self.enricher.enrich(lat, lon)

    def get_aliases(self, vin: str, version: str = DEFAULT_ALIAS_VERSION,
                    user_id: Optional[str] = None) -> List[dict]:
        payload = self._proxy('GET', ALIAS_PATH, vin=vin, user_id=user_id,
                              params={'vinCode': vin, 'version': version}, what='Alias fetch')
        data = payload.get('data') if isinstance(payload, dict) else payload
        if isinstance(data, dict):
            data = data.get('resources') or data.get('content')
        return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

    def get_raw_telemetry(self, vin: str, request_objects: List[dict],
                          user_id: Optional[str] = None) -> List[dict]:
        payload = self._proxy('POST', RAW_TELEMETRY_PATH, vin=vin, user_id=user_id,
                              json_body=request_objects, what='Raw telemetry fetch')
        data = payload.get('data') if isinstance(payload, dict) else payload
        return data if isinstance(data, list) else []

    def get_full_telemetry(self, vin: str, alias_version: Optional[str] = None,
                           user_id: Optional[str] = None) -> FullTelemetry:
        """Raw values for every catalog resource, plus the catalog and its deep-scan hits."""
        version = alias_version or DEFAULT_ALIAS_VERSION
        resources = self.get_aliases(vin, version, user_id)
        if not resources and version != DEFAULT_ALIAS_VERSION:
            logger.info(f"No aliases for version {version}, falling back to {DEFAULT_ALIAS_VERSION}")
            resources = self.get_aliases(vin, DEFAULT_ALIAS_VERSION, user_id)
        if not resources:
            raise VendorRequestError('No aliases found for vehicle')

        candidates = deep_scan_candidates(resources)
        logger.debug(f"Deep scan found {len(candidates)} interesting aliases for {vin}")
        raw = self.get_raw_telemetry(vin, raw_request_objects(resources), user_id)
        return FullTelemetry(raw=raw, aliases=resources, candidates=candidates)

    def search_charging_stations(self, lat: float, lon: float, vin: Optional[str] = None,
                                 radius_km: float = DEFAULT_STATION_RADIUS_KM) -> List[dict]:
        payload = self._proxy('POST', CHARGING_STATION_SEARCH_PATH, vin=vin, json_body={
            'latitude': lat,
            'longitude': lon,
            'radius': radius_km,
        }, what='Charging station search')
        data = payload.get('data', payload) if isinstance(payload, dict) else payload
        if isinstance(data, dict):
            data = data.get('content')
        return data if isinstance(data, list) else []

    def search_charging_history(self, vin: str, page: int = 0, size: int = 100) -> Any:
        """Raw JSON envelope of one history page; the shape varies, see charging_history."""
        return self._proxy('POST', CHARGING_HISTORY_SEARCH_PATH, vin=vin,
                           params={'page': page, 'size': size}, json_body={'vinCode': vin},
                           what='Charging history fetch')
