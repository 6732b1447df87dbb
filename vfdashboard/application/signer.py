"""
Request signing for the VinFast mobile API.

The vendor's app sends two independent HMAC-SHA256 headers on some endpoint
families. Both are pure functions of their inputs; the timestamp and secrets
are always passed in so the same inputs give the same signature.
"""

import base64
import hashlib
import hmac
import logging
import re
import time
from typing import Dict, Optional

from vfdashboard.application.errors import SigningMisconfiguredError

logger = logging.getLogger(__name__)

_DUPLICATE_SLASHES = re.compile(r'/{2,}')


def current_timestamp_ms() -> int:
    return int(time.time() * 1000)


def normalize_path(path: str) -> str:
    """Strip query and fragment, collapse slashes, drop trailing slash, force a leading one."""
    path = (path or '').split('?', 1)[0].split('#', 1)[0]
    path = _DUPLICATE_SLASHES.sub('/', '/' + path.strip())
    if len(path) > 1:
        path = path.rstrip('/')
    return path


def _hmac_b64(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode('utf-8'), message.encode('utf-8'), hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


def compute_signature(method: str, path: str, vehicle_id: Optional[str], secret: str,
                      timestamp: int) -> str:
    """Primary signature, sent as X-HASH."""
    parts = [method, normalize_path(path)]
    if vehicle_id:
        parts.append(vehicle_id)
    parts.extend([secret, str(timestamp)])
    return _hmac_b64(secret, '_'.join(parts).lower())


def compute_secondary_signature(method: str, path: str, vehicle_id: Optional[str],
                                player_id: Optional[str], secret: str, timestamp: int,
                                platform: str = 'android') -> str:
    """Secondary signature, sent as X-HASH-2."""
    parts = [platform]
    if vehicle_id:
        parts.append(vehicle_id)
    if player_id:
        parts.append(player_id)
    parts.append(normalize_path(path).lstrip('/').replace('/', '_'))
    parts.extend([method, str(timestamp)])
    return _hmac_b64(secret, '_'.join(parts).lower())


def build_signature_headers(method: str, path: str, vehicle_id: Optional[str],
                            player_id: Optional[str], secret: Optional[str],
                            secondary_secret: Optional[str], platform: str = 'android',
                            timestamp: Optional[int] = None) -> Dict[str, str]:
    if not secret or not secondary_secret:
        logger.error("Signing secret is not configured; refusing to send an unsigned request "
                     "(set VINFAST_X_HASH_SECRET and VINFAST_X_HASH_2_SECRET)")
        raise SigningMisconfiguredError()

    if timestamp is None:
        timestamp = current_timestamp_ms()

    return {
        'X-HASH': compute_signature(method, path, vehicle_id, secret, timestamp),
        'X-HASH-2': compute_secondary_signature(method, path, vehicle_id, player_id,
                                                secondary_secret, timestamp, platform),
        'X-TIMESTAMP': str(timestamp),
    }
