"""
Vehicle state synchronizer.

Holds the live view of the active vehicle plus a last-known snapshot per
vin, and funnels every mutation through a few named functions on a `Store`.

Rules it keeps:
- concurrent fetches for the same vin share one in-flight call;
- a response for a vin that is no longer active only touches that vin's
  cache entry, and never replaces a newer one;
- switching vehicles rebuilds the live view from neutral defaults so nothing
  of the previous vehicle survives.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Optional

from vfdashboard.client.errors import VendorClientError
from vfdashboard.client.state import Store
from vfdashboard.domain.models import VehicleRecord, now_ms
from vfdashboard.domain.telemetry import TELEMETRY_DEFAULTS

logger = logging.getLogger(__name__)

FULL_TELEMETRY_TTL_MS = 5 * 60 * 1000

UNINITIALIZED = 'uninitialized'
LOADING = 'loading'
READY = 'ready'


def initial_state() -> Dict[str, Any]:
    return {
        'vin': None,
        'vehicles': [],
        'telemetry': dict(TELEMETRY_DEFAULTS),
        'vehicle_cache': {},
        'full_telemetry': {},
        'user': None,
        'is_initialized': False,
        'is_loading': False,
        'is_refreshing': False,
        'is_enriching': False,
        'is_scanning': False,
        'error': None,
    }


class TelemetrySynchronizer:
    def __init__(self, client, store: Optional[Store] = None, enrich_in_background: bool = True,
                 executor: Optional[ThreadPoolExecutor] = None):
        self.client = client
        self.store = store or Store(initial_state())
        self.enrich_in_background = enrich_in_background
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix='telemetry')
        self._lock = threading.RLock()
        self._in_flight: Dict[str, Future] = {}
        self._refreshing = 0
        self._enriching = 0

    # --- reads ---------------------------------------------------------------

    @property
    def active_vin(self) -> Optional[str]:
        return self.store.get('vin')

    def vehicle_status(self, vin: str) -> str:
        if vin in self.store.get('vehicle_cache', {}):
            return READY
        with self._lock:
            if vin in self._in_flight:
                return LOADING
        return UNINITIALIZED

    def vehicle(self, vin: str) -> Optional[VehicleRecord]:
        for record in self.store.get('vehicles', []):
            if record.vin_code == vin:
                return record
        return None

    # --- vehicles and user ---------------------------------------------------

    def load_vehicles(self, select: bool = True) -> List[VehicleRecord]:
        try:
            vehicles = self.client.list_vehicles()
        except VendorClientError as e:
            logger.error(f"Failed to load vehicles: {e.message}")
            self.store.set('error', e.message)
            return []

        self.store.set('vehicles', vehicles)
        if select and vehicles and not self.active_vin:
            meta = self.client.session_store.restore_session()
            vins = [v.vin_code for v in vehicles]
            target = meta.vin if meta and meta.vin in vins else vins[0]
            self.switch_vehicle(target)
        return vehicles

    def fetch_user(self) -> Optional[dict]:
        try:
            profile = self.client.get_user_profile()
        except VendorClientError as e:
            logger.error(f"Failed to fetch user profile: {e.message}")
            self.store.set('error', e.message)
            return None
        self.store.set('user', profile)
        return profile

    # --- switching -------------------------------------------------------------

    def switch_vehicle(self, vin: str, background_refresh: bool = False) -> Dict[str, Any]:
        """Make `vin` the active vehicle; blocks on a fetch only when nothing is cached."""
        record = self.vehicle(vin)
        found = {}

        def apply(state):
            cached = state['vehicle_cache'].get(vin)
            view = dict(TELEMETRY_DEFAULTS)
            if record:
                view.update(record.base_state())
            view['vin'] = vin
            if cached:
                view.update(cached)
            state['vin'] = vin
            state['telemetry'] = view
            state['is_loading'] = cached is None
            state['error'] = None
            found['cached'] = cached is not None

        self.store.update(apply)
        logger.info(f"Switched to vehicle {vin} (cached={found['cached']})")

        if not found['cached']:
            self.fetch_telemetry(vin)

            def loaded(state):
                if state['vin'] == vin:
                    state['is_loading'] = False

            self.store.update(loaded)
        elif background_refresh:
            self._executor.submit(self.fetch_telemetry, vin)
        return self.store.get('telemetry')

    # --- fetching --------------------------------------------------------------

    def fetch_telemetry(self, vin: str) -> Optional[Dict[str, Any]]:
        """
        Fetch telemetry for `vin`, joining a fetch already in flight for it.

        Returns the vin's cache entry after the fetch, or None when it failed
        (the failure is recorded in the store's `error`).
        """
        with self._lock:
            future = self._in_flight.get(vin)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[vin] = future
                self._refreshing += 1
                if self._refreshing == 1:
                    self.store.set('is_refreshing', True)

        if not owner:
            logger.debug(f"Joining in-flight telemetry fetch for {vin}")
            return future.result()

        try:
            result = self._fetch(vin)
            future.set_result(result)
            return result
        except BaseException as e:
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                if self._in_flight.get(vin) is future:
                    del self._in_flight[vin]
                self._refreshing -= 1
                if self._refreshing == 0:
                    self.store.set('is_refreshing', False)

    def refresh_vehicle(self, vin: Optional[str] = None) -> Optional[Dict[str, Any]]:
        vin = vin or self.active_vin
        if not vin:
            return None
        return self.fetch_telemetry(vin)

    def _fetch(self, vin: str) -> Optional[Dict[str, Any]]:
        try:
            data = self.client.get_telemetry(vin, self._user_id_for(vin), enrich=False)
        except VendorClientError as e:
            logger.error(f"Telemetry fetch for {vin} failed: {e.message}")
            message = e.message

            def record_error(state):
                if state['vin'] == vin:
                    state['error'] = message

            self.store.update(record_error)
            return None

        self.update_vehicle_data(vin, data)

        def mark_ready(state):
            state['is_initialized'] = True
            if state['vin'] == vin:
                state['error'] = None

        self.store.update(mark_ready)
        self._enrich(vin, data)
        return self.store.get('vehicle_cache', {}).get(vin)

    def _enrich(self, vin: str, data: Dict[str, Any]) -> None:
        lat, lon = data.get('latitude'), data.get('longitude')
        if not lat or not lon:
            return
        if self.enrich_in_background:
            self._executor.submit(self._apply_enrichment, vin, lat, lon, data.get('last_updated'))
        else:
            self._apply_enrichment(vin, lat, lon, data.get('last_updated'))

    def _apply_enrichment(self, vin: str, lat, lon, stamp: Optional[int]) -> None:
        with self._lock:
            self._enriching += 1
            if self._enriching == 1:
                self.store.set('is_enriching', True)
        try:
            fields = self.client.enrich_position(lat, lon)
            if fields:
                fields['last_updated'] = stamp
                self.update_vehicle_data(vin, fields)
        except Exception as e:
            logger.warning(f"Enrichment for {vin} failed: {e.__class__.__name__}")
        finally:
            with self._lock:
                self._enriching -= 1
                if self._enriching == 0:
                    self.store.set('is_enriching', False)

    def update_vehicle_data(self, vin: str, data: Dict[str, Any]) -> bool:
        """
        Merge a response for `vin` into its cache entry, and into the live view
        when `vin` is active. Returns False when the response was older than
        what is cached and got dropped.
        """
        incoming = dict(data)
        incoming.setdefault('last_updated', now_ms())
        if incoming['last_updated'] is None:
            incoming['last_updated'] = now_ms()
        applied = {}

        def apply(state):
            current = state['vehicle_cache'].get(vin) or {}
            current_stamp = current.get('last_updated')
            if current_stamp and incoming['last_updated'] < current_stamp:
                applied['ok'] = False
                return
            if incoming.get('outside_temp') is None and incoming.get('weather_outside_temp') is not None \
                    and current.get('outside_temp') is None:
                incoming['outside_temp'] = incoming['weather_outside_temp']
            state['vehicle_cache'][vin] = {**current, **incoming}
            if state['vin'] == vin:
                state['telemetry'] = {**state['telemetry'], **incoming}
            applied['ok'] = True

        self.store.update(apply)
        if not applied['ok']:
            logger.debug(f"Dropped stale telemetry for {vin}")
        return applied['ok']

    def fetch_full_telemetry(self, vin: str, force: bool = False):
        """Complete resource catalog and raw values for `vin`, cached for five minutes."""
        cached = self.store.get('full_telemetry', {}).get(vin)
        if not force and cached and now_ms() - cached.fetched_at < FULL_TELEMETRY_TTL_MS:
            logger.debug(f"Using cached full telemetry for {vin}")
            return cached

        record = self.vehicle(vin)
        self.store.set('is_scanning', True)
        try:
            full = self.client.get_full_telemetry(
                vin, record.alias_version if record else None, self._user_id_for(vin))
        except VendorClientError as e:
            logger.error(f"Full telemetry fetch for {vin} failed: {e.message}")
            self.store.set('error', e.message)
            return None
        finally:
            self.store.set('is_scanning', False)

        def remember(state):
            state['full_telemetry'][vin] = full

        self.store.update(remember)
        return full

    def _user_id_for(self, vin: str) -> Optional[str]:
        record = self.vehicle(vin)
        if record and record.user_id:
            return record.user_id
        meta = self.client.session_store.restore_session()
        return meta.user_id if meta else None

    def close(self) -> None:
        self._executor.shutdown(wait=False)
