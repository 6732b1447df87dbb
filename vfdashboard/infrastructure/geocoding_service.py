"""
Reverse geocoding for vehicle positions using Nominatim (OpenStreetMap).

Turns telemetry coordinates into the short labels the dashboard shows:
"district, city, CC" for the vehicle card and "city, CC" for the weather card.
Nominatim's usage policy allows 1 request/second, so calls are spaced out.
"""

import logging
import re
import threading
import time
from collections import OrderedDict
from typing import Dict, Optional

from geopy.exc import GeocoderServiceError, GeocoderTimedOut, GeocoderUnavailable
from geopy.geocoders import Nominatim

from config import Config

logger = logging.getLogger(__name__)

# Vietnamese administrative prefixes ("City", "Province", "District", ...)
ADMIN_PREFIX = re.compile(r'^(Thành phố|Tỉnh|Quận|Huyện|Xã|Phường)\s+', re.IGNORECASE)
DEFAULT_COUNTRY_CODE = 'VN'


def strip_admin_prefix(name: Optional[str]) -> Optional[str]:
    if not name:
        return name
    return ADMIN_PREFIX.sub('', name).strip()


def format_location(address: dict) -> Dict[str, str]:
    """Build the vehicle and weather labels from a Nominatim address block."""
    district = strip_admin_prefix(
        address.get('city_district') or address.get('district') or address.get('county'))
    city = strip_admin_prefix(
        address.get('city') or address.get('town') or address.get('village')
        or address.get('state') or address.get('province'))
    country = (address.get('country_code') or DEFAULT_COUNTRY_CODE).upper()

    return {
        'location_address': ', '.join(part for part in (district, city, country) if part),
        'weather_address': ', '.join(part for part in (city, country) if part),
    }


class GeocodingService:
    """
    Reverse geocoding with Nominatim.

    Features:
    - Rate limiting (1 request/second as per Nominatim policy)
    - Caching of found addresses on coordinates rounded to ~11 m
    - Failures return None, enrichment is best effort
    """

    def __init__(self, timeout: Optional[float] = None, geolocator=None):
        self.geolocator = geolocator or Nominatim(
            user_agent=Config.NOMINATIM_USER_AGENT,
            timeout=timeout or Config.ENRICHMENT_TIMEOUT
        )
        self.last_request_time = 0
        self.min_delay = 1.0
        self.cache_size = 1000
        self._lock = threading.Lock()
        self._cache_lock = threading.Lock()
        self._cache = OrderedDict()

    def _rate_limit(self):
        with self._lock:
            elapsed = time.time() - self.last_request_time
            if elapsed < self.min_delay:
                time.sleep(self.min_delay - elapsed)
            self.last_request_time = time.time()

    def reverse_geocode(self, lat: float, lng: float) -> Optional[Dict[str, str]]:
        """Labels for a position, or None if Nominatim has nothing or fails."""
        if lat is None or lng is None:
            return None
        key = (round(float(lat), 4), round(float(lng), 4))
        with self._cache_lock:
            if key in self._cache:
                self._cache.move_to_end(key)
                return dict(self._cache[key])

        result = self._lookup(*key)
        # Misses and failures are retried on the next call
        if result is not None:
            with self._cache_lock:
                self._cache[key] = result
                if len(self._cache) > self.cache_size:
                    self._cache.popitem(last=False)
        return result

    def _lookup(self, lat: float, lng: float) -> Optional[Dict[str, str]]:
        try:
            self._rate_limit()
            location = self.geolocator.reverse(f"{lat}, {lng}", addressdetails=True)
        except GeocoderTimedOut:
            logger.warning(f"Geocoding timeout for coordinates: {lat}, {lng}")
            return None
        except (GeocoderUnavailable, GeocoderServiceError) as e:
            logger.warning(f"Nominatim service unavailable: {e.__class__.__name__}")
            return None

        if not location or not location.raw:
            logger.debug(f"No address found for coordinates: {lat}, {lng}")
            return None
        return format_location(location.raw.get('address') or {})


_geocoding_service = None


def get_geocoding_service() -> GeocodingService:
    """Get or create the singleton geocoding service instance."""
    global _geocoding_service
    if _geocoding_service is None:
        _geocoding_service = GeocodingService()
    return _geocoding_service
