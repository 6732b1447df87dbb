import logging
from typing import Optional

import requests

from config import Config

logger = logging.getLogger(__name__)


class WeatherService:
    """Current conditions from Open-Meteo (no API key needed)."""

    def __init__(self, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.timeout = timeout or Config.ENRICHMENT_TIMEOUT
        self.session = session or requests.Session()

    def current_weather(self, lat: float, lng: float) -> Optional[dict]:
        """`{temperature, weathercode, ...}` for a position, None on any failure."""
        if lat is None or lng is None:
            return None
        try:
            response = self.session.get(
                Config.WEATHER_API_URL,
                params={'latitude': lat, 'longitude': lng, 'current_weather': 'true'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f"Weather lookup failed: {e.__class__.__name__}")
            return None

        if response.status_code != 200:
            logger.warning(f"Weather lookup failed with status {response.status_code}")
            return None
        try:
            current = response.json().get('current_weather')
        except (ValueError, AttributeError):
            return None
        return current if isinstance(current, dict) else None


_weather_service = None


def get_weather_service() -> WeatherService:
    global _weather_service
    if _weather_service is None:
        _weather_service = WeatherService()
    return _weather_service
