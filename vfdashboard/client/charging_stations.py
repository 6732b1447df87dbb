import logging
import math
from typing import Any, Callable, Dict, List, Optional

from vfdashboard.client.errors import VendorClientError
from vfdashboard.client.state import Store
from vfdashboard.domain.models import now_ms

logger = logging.getLogger(__name__)

CACHE_TTL_MS = 15 * 60 * 1000
REFETCH_DISTANCE_KM = 5
EARTH_RADIUS_KM = 6371


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def initial_state() -> Dict[str, Any]:
    return {
        'stations': [],
        'is_loading': False,
        'error': None,
        'last_fetch_lat': None,
        'last_fetch_lng': None,
        'last_fetch_time': 0,
        'show_stations': True,
        'filter_connector_type': None,
        'filter_only_available': False,
    }


class ChargingStationCache:
    """Stations around the vehicle, refetched when stale or when the vehicle moved."""

    def __init__(self, client, store: Optional[Store] = None, ttl_ms: int = CACHE_TTL_MS,
                 refetch_distance_km: float = REFETCH_DISTANCE_KM,
                 clock: Callable[[], int] = now_ms):
        self.client = client
        self.store = store or Store(initial_state())
        self.ttl_ms = ttl_ms
        self.refetch_distance_km = refetch_distance_km
        self.clock = clock

    def needs_fetch(self, lat: float, lng: float) -> bool:
        state = self.store.get()
        if not state['last_fetch_time'] or self.clock() - state['last_fetch_time'] >= self.ttl_ms:
            return True
        if state['last_fetch_lat'] is None or state['last_fetch_lng'] is None:
            return False
        moved = haversine_km(lat, lng, state['last_fetch_lat'], state['last_fetch_lng'])
        return moved >= self.refetch_distance_km

    def fetch(self, lat: float, lng: float, vin: Optional[str] = None, force: bool = False) -> List[dict]:
        if not force and not self.needs_fetch(lat, lng):
            logger.debug("Charging stations cache still valid")
            return self.store.get('stations')

        self.store.update(lambda state: state.update(is_loading=True, error=None))
        try:
            stations = self.client.search_charging_stations(lat, lng, vin=vin)
        except VendorClientError as e:
            logger.error(f"Charging station fetch failed: {e.message}")
            message = e.message
            self.store.update(lambda state: state.update(is_loading=False, error=message))
            return self.store.get('stations')

        self.store.update(lambda state: state.update(
            stations=stations, is_loading=False, error=None, last_fetch_lat=lat,
            last_fetch_lng=lng, last_fetch_time=self.clock()))
        return stations

    def toggle_stations(self) -> bool:
        snapshot = self.store.update(
            lambda state: state.update(show_stations=not state['show_stations']))
        return snapshot['show_stations']

    def set_connector_filter(self, connector_type: Optional[str]) -> None:
        self.store.set('filter_connector_type', connector_type or None)

    def set_availability_filter(self, only_available: bool) -> None:
        self.store.set('filter_only_available', bool(only_available))

    def filtered_stations(self) -> List[dict]:
        state = self.store.get()
        if not state['show_stations']:
            return []

        stations = state['stations']
        if state['filter_connector_type']:
            stations = [s for s in stations
                        if state['filter_connector_type'] in (s.get('connectorTypes') or [])]
        if state['filter_only_available']:
            stations = [s for s in stations if (s.get('availableConnectors') or 0) > 0]
        return stations
