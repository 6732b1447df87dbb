import os
import sys


def _csv(value):
    return [item.strip() for item in value.split(',') if item.strip()]


def _region(code, auth0_domain, auth0_client_id, api_base):
    prefix = f'VINFAST_{code.upper()}_'
    domain = os.environ.get(prefix + 'AUTH0_DOMAIN', auth0_domain)
    return {
        'auth0_domain': domain,
        'auth0_client_id': os.environ.get(prefix + 'AUTH0_CLIENT_ID', auth0_client_id),
        'auth0_audience': os.environ.get(prefix + 'AUTH0_AUDIENCE', f'https://{domain}/api/v2/'),
        'api_base': os.environ.get(prefix + 'API_BASE', api_base).rstrip('/'),
    }


class Config:
    # Critical Security: SECRET_KEY must be set, it signs the session metadata cookie
    SECRET_KEY = os.environ.get('FLASK_SECRET_KEY')
    if not SECRET_KEY:
        print("ERROR: FLASK_SECRET_KEY environment variable must be set for security")
        print("Generate a secure key with: python -c 'import secrets; print(secrets.token_hex(32))'")
        sys.exit(1)

    # Server Configuration
    PORT = int(os.environ.get('PORT', 8000))
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

    # CORS Configuration (credentials are cookies, origins must be explicit in production)
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

    # Rate Limiting Configuration
    # For production, use Redis: RATELIMIT_STORAGE_URL = "redis://localhost:6379"
    RATELIMIT_STORAGE_URL = os.environ.get('RATELIMIT_STORAGE_URL', 'memory://')
    RATELIMIT_STORAGE_URI = RATELIMIT_STORAGE_URL
    RATELIMIT_DEFAULT = os.environ.get('RATELIMIT_DEFAULT', '20 per minute')
    RATELIMIT_ENABLED = os.environ.get('RATELIMIT_ENABLED', 'True').lower() == 'true'

    # VinFast regions
    DEFAULT_REGION = os.environ.get('VINFAST_DEFAULT_REGION', 'vn')
    REGIONS = {
        'vn': _region('vn', 'vin3s.au.auth0.com',
                      os.environ.get('VINFAST_VN_CLIENT_ID', ''),
                      'https://mobile.connected-car.vinfast.vn'),
        'us': _region('us', 'vinfast-us-prod.us.auth0.com',
                      'xhGY7XKDFSk1Q22rxidvwujfz0EPAbUP',
                      'https://mobile.connected-car.vinfastauto.us'),
        'eu': _region('eu', 'vinfast-eu-prod.eu.auth0.com',
                      os.environ.get('VINFAST_EU_CLIENT_ID', ''),
                      'https://mobile.connected-car.vinfastauto.eu'),
    }
    VINFAST_REQUEST_TIMEOUT = int(os.environ.get('VINFAST_REQUEST_TIMEOUT', 30))

    # Request signing. Both secrets are supplied out of band; signed calls fail without them
    X_HASH_SECRET = os.environ.get('VINFAST_X_HASH_SECRET')
    X_HASH_2_SECRET = os.environ.get('VINFAST_X_HASH_2_SECRET')
    SIGNING_PLATFORM = os.environ.get('VINFAST_SIGNING_PLATFORM', 'android')
    SIGNED_PREFIXES = _csv(os.environ.get('VINFAST_SIGNED_PREFIXES', 'ccarcharging/'))

    # Business error codes / messages embedded in 200 bodies that mean "log in again"
    SESSION_EXPIRED_CODES = _csv(os.environ.get('VINFAST_SESSION_EXPIRED_CODES', '401000'))
    SESSION_EXPIRED_MARKERS = _csv(os.environ.get(
        'VINFAST_SESSION_EXPIRED_MARKERS', 'session expired,token expired,unauthorized'))

    # Cookies
    COOKIE_SECURE = os.environ.get('COOKIE_SECURE', 'False').lower() == 'true'
    COOKIE_SAMESITE = os.environ.get('COOKIE_SAMESITE', 'None' if COOKIE_SECURE else 'Lax')
    ACCESS_TOKEN_COOKIE_MAX_AGE = int(os.environ.get('ACCESS_TOKEN_COOKIE_MAX_AGE', 86400))
    REFRESH_TOKEN_COOKIE_MAX_AGE = int(os.environ.get('REFRESH_TOKEN_COOKIE_MAX_AGE', 7776000))

    # Session metadata lifetime
    SESSION_TTL_HOURS = int(os.environ.get('SESSION_TTL_HOURS', 12))
    REMEMBER_ME_TTL_DAYS = int(os.environ.get('REMEMBER_ME_TTL_DAYS', 30))

    # Client-side persisted store (charging history, session metadata)
    REDIS_URL = os.environ.get('REDIS_URL')
    REDIS_ENABLED = os.environ.get('REDIS_ENABLED', 'False').lower() == 'true'

    # Charging history
    CHARGING_CACHE_TTL_HOURS = int(os.environ.get('CHARGING_CACHE_TTL_HOURS', 24))
    CHARGING_CACHE_MAX_VINS = int(os.environ.get('CHARGING_CACHE_MAX_VINS', 5))
    CHARGING_HISTORY_PAGE_SIZE = int(os.environ.get('CHARGING_HISTORY_PAGE_SIZE', 100))
    CHARGING_HISTORY_CONCURRENCY = int(os.environ.get('CHARGING_HISTORY_CONCURRENCY', 4))

    # Best-effort enrichment (reverse geocoding, weather)
    ENRICHMENT_TIMEOUT = float(os.environ.get('ENRICHMENT_TIMEOUT', 5))
    NOMINATIM_USER_AGENT = os.environ.get('NOMINATIM_USER_AGENT', 'VFDashBoard/1.0')
    WEATHER_API_URL = os.environ.get('WEATHER_API_URL', 'https://api.open-meteo.com/v1/forecast')
