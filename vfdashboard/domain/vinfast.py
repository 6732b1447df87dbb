"""
Static knowledge about the VinFast connected-car backend.

Endpoint paths, the headers the official mobile app sends, the proxy
allow-list and the seed alias map used to build batch telemetry reads.
"""

# Headers the mobile app sends on every call
API_HEADERS = {
    'Accept': 'application/json',
    'x-service-name': 'CAPP',
    'x-app-version': '1.10.3',
    'x-device-platform': 'VFDashBoard',
    'x-device-family': 'Community',
    'x-device-os-version': '1.0',
    'x-device-locale': 'en-US',
    'x-timezone': 'Asia/Ho_Chi_Minh',
    'x-device-identifier': 'vfdashboard-community-edition',
}

# Path prefixes the gateway relays. The trailing slash is part of the prefix
ALLOWED_PROXY_PREFIXES = (
    'ccarusermgnt/',
    'ccaraccessmgmt/',
    'modelmgmt/',
    'ccarcharging/',
    'ccarbookingmgmt/',
)

USER_VEHICLE_PATH = 'ccarusermgnt/api/v1/user-vehicle'
TELEMETRY_PING_PATH = 'ccaraccessmgmt/api/v1/telemetry/app/ping'
RAW_TELEMETRY_PATH = 'ccaraccessmgmt/api/v1/telemetry/list_resource'
ALIAS_PATH = 'modelmgmt/api/v2/vehicle-model/mobile-app/vehicle/get-alias'
CHARGING_STATION_SEARCH_PATH = 'ccarcharging/api/v1/stations/search'
CHARGING_HISTORY_SEARCH_PATH = 'ccarcharging/api/v1/charging-sessions/search'

DEFAULT_ALIAS_VERSION = '1.0'

# field name -> (objectId, instanceId, resourceId)
STATIC_ALIAS_MAP = {
    'battery_level': ('34180', '1', '10'),
    'range': ('34180', '1', '11'),
    'charging_status': ('34183', '1', '7'),
    'target_soc': ('34183', '1', '10'),
    'remaining_charging_time': ('34183', '1', '11'),
    'soh_percentage': ('34180', '1', '20'),
    'battery_health_12v': ('34180', '2', '1'),
    'odometer': ('34199', '0', '3'),
    'speed': ('34188', '0', '1'),
    'gear_position': ('34187', '0', '1'),
    'ignition_status': ('34187', '0', '2'),
    'handbrake_status': ('34187', '0', '5'),
    'latitude': ('6', '0', '0'),
    'longitude': ('6', '0', '1'),
    'heading': ('6', '0', '4'),
    'is_locked': ('34206', '1', '1'),
    'central_lock_status': ('34206', '1', '2'),
    'door_fl': ('34215', '1', '1'),
    'door_fr': ('34215', '2', '1'),
    'door_rl': ('34215', '3', '1'),
    'door_rr': ('34215', '4', '1'),
    'trunk_status': ('34215', '5', '1'),
    'hood_status': ('34215', '6', '1'),
    'window_status': ('34216', '0', '1'),
    'tire_pressure_fl': ('34196', '1', '1'),
    'tire_pressure_fr': ('34196', '2', '1'),
    'tire_pressure_rl': ('34196', '3', '1'),
    'tire_pressure_rr': ('34196', '4', '1'),
    'tire_temp_fl': ('34196', '1', '2'),
    'tire_temp_fr': ('34196', '2', '2'),
    'tire_temp_rl': ('34196', '3', '2'),
    'tire_temp_rr': ('34196', '4', '2'),
    'inside_temp': ('34224', '0', '1'),
    'outside_temp': ('34224', '0', '2'),
    'climate_driver_temp': ('34224', '1', '1'),
    'climate_passenger_temp': ('34224', '2', '1'),
    'fan_speed': ('34224', '0', '5'),
    'thermal_warning': ('34180', '1', '30'),
    'service_alert': ('34199', '0', '10'),
    'bms_version': ('34220', '1', '1'),
    'gateway_version': ('34220', '2', '1'),
    'mhu_version': ('34220', '3', '1'),
    'vcu_version': ('34220', '4', '1'),
    'bcm_version': ('34220', '5', '1'),
    'tbox_version': ('34220', '6', '1'),
    'firmware_version': ('34220', '0', '1'),
}

CORE_TELEMETRY_ALIASES = tuple(STATIC_ALIAS_MAP)

# Extra resources read on every ping even though no field is mapped to them yet
FALLBACK_TELEMETRY_RESOURCES = (
    '/34180/1/10',
    '/34183/1/7',
    '/34199/0/3',
    '/6/0/0',
    '/6/0/1',
    '/34181/1/1',
    '/34182/1/1',
)

# Alias catalog entries worth surfacing when inspecting the full telemetry
DEEP_SCAN_KEYWORDS = (
    'SERVICE', 'MAINTENANCE', 'WARRANTY', 'BOOKING', 'APPOINTMENT', 'NEXT',
    'SCHEDULE', 'OTA', 'UPDATE', 'FIRMWARE', 'VERSION', 'ENERGY',
    'CONSUMPTION', 'EFFICIENCY', 'TRIP', 'HISTORY', 'NOTIFICATION', 'ALERT',
    'ERROR', 'FAULT', 'DIAGNOSTIC', 'RECALL', 'CAMPAIGN',
)
