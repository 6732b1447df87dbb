import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from vfdashboard.domain.vinfast import (
    CORE_TELEMETRY_ALIASES,
    DEEP_SCAN_KEYWORDS,
    FALLBACK_TELEMETRY_RESOURCES,
    STATIC_ALIAS_MAP,
)

logger = logging.getLogger(__name__)

DEFAULT_LATITUDE = 21.0285
DEFAULT_LONGITUDE = 105.8542

# Neutral values applied before any vehicle-specific data, so nothing from a
# previously shown vehicle survives a switch
TELEMETRY_DEFAULTS: Dict[str, Any] = {
    'battery_level': None,
    'range': None,
    'odometer': None,
    'charging_status': False,
    'speed': None,
    'latitude': DEFAULT_LATITUDE,
    'longitude': DEFAULT_LONGITUDE,
    'heading': 0,
    'gear_position': None,
    'is_locked': None,
    'central_lock_status': None,
    'ignition_status': None,
    'handbrake_status': False,
    'window_status': None,
    'climate_driver_temp': None,
    'climate_passenger_temp': None,
    'fan_speed': None,
    'outside_temp': None,
    'inside_temp': None,
    'tire_pressure_fl': None,
    'tire_pressure_fr': None,
    'tire_pressure_rl': None,
    'tire_pressure_rr': None,
    'tire_temp_fl': None,
    'tire_temp_fr': None,
    'tire_temp_rl': None,
    'tire_temp_rr': None,
    'door_fl': False,
    'door_fr': False,
    'door_rl': False,
    'door_rr': False,
    'trunk_status': False,
    'hood_status': False,
    'target_soc': None,
    'remaining_charging_time': None,
    'soh_percentage': None,
    'battery_health_12v': None,
    'thermal_warning': 0,
    'service_alert': 0,
    'bms_version': '--',
    'gateway_version': '--',
    'mhu_version': '--',
    'vcu_version': '--',
    'bcm_version': '--',
    'tbox_version': '--',
    'firmware_version': '--',
    'location_address': None,
    'weather_address': None,
    'weather_outside_temp': None,
    'weather_code': None,
}

BOOLEAN_FIELDS = {
    'door_fl', 'door_fr', 'door_rl', 'door_rr', 'trunk_status', 'hood_status',
    'handbrake_status', 'is_locked', 'central_lock_status',
}
STRING_FIELDS = {
    'gear_position', 'battery_health_12v', 'bms_version', 'gateway_version',
    'mhu_version', 'vcu_version', 'bcm_version', 'tbox_version',
    'firmware_version',
}


def resource_path(object_id, instance_id, resource_id) -> str:
    return f"/{int(object_id)}/{int(instance_id)}/{int(resource_id)}"


def build_telemetry_request(
    alias_map: Mapping[str, Tuple[str, str, str]] = STATIC_ALIAS_MAP,
    aliases: Iterable[str] = CORE_TELEMETRY_ALIASES,
    fallback: Iterable[str] = FALLBACK_TELEMETRY_RESOURCES,
) -> Tuple[List[dict], Dict[str, str]]:
    """
    Build the batch read body for the telemetry ping.

    Returns the list of {objectId, instanceId, resourceId} objects to send and
    a lookup from resource path to field name for parsing the reply.
    """
    request_objects = []
    path_to_alias = {}
    seen = set()

    for alias in aliases:
        triple = alias_map.get(alias)
        if not triple:
            continue
        path = resource_path(*triple)
        path_to_alias[path] = alias
        if path in seen:
            continue
        seen.add(path)
        request_objects.append({
            'objectId': str(triple[0]),
            'instanceId': str(triple[1]),
            'resourceId': str(triple[2]),
        })

    for raw_path in fallback:
        parts = [p for p in raw_path.split('/') if p]
        if len(parts) != 3:
            continue
        path = resource_path(*parts)
        if path in seen:
            continue
        seen.add(path)
        request_objects.append({
            'objectId': parts[0],
            'instanceId': parts[1],
            'resourceId': parts[2],
        })

    return request_objects, path_to_alias


def _reading_path(item: dict) -> Optional[str]:
    try:
        if item.get('objectId') is not None:
            return resource_path(item['objectId'], item.get('instanceId', 0), item.get('resourceId', 0))
        device_key = item.get('deviceKey')
        if device_key:
            parts = device_key.split('_')
            if len(parts) == 3:
                return resource_path(*parts)
    except (TypeError, ValueError):
        pass
    return None


def coerce_value(field_name: str, value: Any) -> Any:
    if value is None:
        return None
    if field_name in STRING_FIELDS:
        return str(value)
    if field_name in BOOLEAN_FIELDS:
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ('1', 'true', 'on', 'open', 'locked')
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    try:
        number = float(text)
    except ValueError:
        return text
    return int(number) if number.is_integer() else number


def parse_telemetry(readings: Any, path_to_alias: Mapping[str, str]) -> Dict[str, Any]:
    """Merge the vendor's raw reading array into named fields."""
    parsed: Dict[str, Any] = {}
    if not isinstance(readings, list):
        logger.debug("Telemetry reply has no reading array")
        return parsed

    for item in readings:
        if not isinstance(item, dict):
            continue
        path = _reading_path(item)
        alias = path_to_alias.get(path) if path else None
        if not alias:
            continue
        parsed[alias] = coerce_value(alias, item.get('value'))

    return parsed


def deep_scan_candidates(resources: Iterable[dict]) -> List[dict]:
    """Alias catalog entries whose name hints at service, OTA or fault data."""
    candidates = []
    for resource in resources:
        name = (resource.get('resourceName') or '').upper()
        alias = (resource.get('alias') or '').upper()
        if any(keyword in name or keyword in alias for keyword in DEEP_SCAN_KEYWORDS):
            candidates.append(resource)
    return candidates


def raw_request_objects(resources: Iterable[dict]) -> List[dict]:
    """Request objects for every catalog entry that carries a device object id."""
    return [
        {
            'objectId': item['devObjID'],
            'instanceId': item.get('devObjInstID') or '0',
            'resourceId': item.get('devRsrcID') or '0',
        }
        for item in resources
        if item.get('devObjID')
    ]
