import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Dict, Optional

from config import Config
from vfdashboard.infrastructure.geocoding_service import get_geocoding_service
from vfdashboard.infrastructure.weather_service import get_weather_service

logger = logging.getLogger(__name__)

# Shared across enrichers; abandoned lookups finish in the background
_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix='enrichment')


class TelemetryEnricher:
    """
    Best-effort location and weather labels for a telemetry position.

    Both lookups start together and each is bounded by `timeout` from the
    moment they were submitted, so one slow provider neither delays nor
    fails the other. Missing results just leave their fields out.
    """

    def __init__(self, geocoder=None, weather=None, timeout: Optional[float] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        self._geocoder = geocoder
        self._weather = weather
        self.timeout = timeout if timeout is not None else Config.ENRICHMENT_TIMEOUT
        self.executor = executor or _executor

    @property
    def geocoder(self):
        return self._geocoder or get_geocoding_service()

    @property
    def weather(self):
        return self._weather or get_weather_service()

    def enrich(self, lat, lon) -> Dict[str, Any]:
        if not lat or not lon:
            return {}

        started = time.monotonic()
        geo_future = self.executor.submit(self.geocoder.reverse_geocode, lat, lon)
        weather_future = self.executor.submit(self.weather.current_weather, lat, lon)

        fields: Dict[str, Any] = {}
        geo = self._result(geo_future, started, 'geocoding')
        if geo:
            fields['location_address'] = geo.get('location_address')
            fields['weather_address'] = geo.get('weather_address')

        weather = self._result(weather_future, started, 'weather')
        if weather:
            fields['weather_outside_temp'] = weather.get('temperature')
            fields['weather_code'] = weather.get('weathercode')

        return fields

    def _result(self, future, started: float, name: str):
        remaining = max(0.0, self.timeout - (time.monotonic() - started))
        try:
            return future.result(timeout=remaining)
        except FutureTimeoutError:
            logger.info(f"Enrichment lookup '{name}' timed out after {self.timeout}s")
            return None
        except Exception as e:
            logger.warning(f"Enrichment lookup '{name}' failed: {e.__class__.__name__}")
            return None
