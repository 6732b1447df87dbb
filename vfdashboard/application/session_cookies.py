"""
Server half of the session store.

Vendor credentials only ever travel in HttpOnly cookies. The one cookie page
code can read, `vf_session`, holds a signed token with the non-sensitive
session metadata (vin, user id, region, expiry).
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import jwt

from config import Config
from vfdashboard.domain.models import SessionMetadata, SessionTokens, now_ms

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = 'access_token'
REFRESH_TOKEN_COOKIE = 'refresh_token'
VIN_COOKIE = 'vin'
USER_ID_COOKIE = 'user_id'
REGION_COOKIE = 'region'
METADATA_COOKIE = 'vf_session'

AUTH_COOKIES = (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, VIN_COOKIE, USER_ID_COOKIE,
                REGION_COOKIE, METADATA_COOKIE)


@dataclass
class SessionCredentials:
    access_token: Optional[str]
    refresh_token: Optional[str]
    vin: Optional[str]
    user_id: Optional[str]
    region: Optional[str]

    def __repr__(self):
        return f"SessionCredentials(vin={self.vin}, region={self.region})"


def session_ttl(remember_me: bool) -> timedelta:
    if remember_me:
        return timedelta(days=Config.REMEMBER_ME_TTL_DAYS)
    return timedelta(hours=Config.SESSION_TTL_HOURS)


def build_metadata(vin, user_id, region, remember_me=False, email=None) -> SessionMetadata:
    issued_at = now_ms()
    expires_at = issued_at + int(session_ttl(remember_me).total_seconds() * 1000)
    return SessionMetadata(vin=vin, user_id=user_id, region=region, remember_me=remember_me,
                           issued_at=issued_at, expires_at=expires_at, email=email)


def create_metadata_token(meta: SessionMetadata) -> str:
    payload = meta.to_dict()
    payload['iat'] = meta.issued_at // 1000
    payload['exp'] = meta.expires_at // 1000
    token = jwt.encode(payload, Config.SECRET_KEY, algorithm='HS256')
    if isinstance(token, bytes):
        token = token.decode('utf-8')
    return token


def decode_metadata_token(token: Optional[str]) -> Optional[SessionMetadata]:
    """Verify a `vf_session` token; None when missing, forged or expired."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, Config.SECRET_KEY, algorithms=['HS256'])
        return SessionMetadata.from_dict(payload)
    except jwt.ExpiredSignatureError:
        logger.info("Session metadata token expired")
        return None
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Invalid session metadata token: {e.__class__.__name__}")
        return None


def _cookie_options(http_only=True):
    return {
        'path': '/',
        'httponly': http_only,
        'secure': Config.COOKIE_SECURE,
        'samesite': Config.COOKIE_SAMESITE,
    }


def _set_tokens(response, tokens: SessionTokens, refresh_max_age: int):
    response.set_cookie(ACCESS_TOKEN_COOKIE, tokens.access_token,
                        max_age=Config.ACCESS_TOKEN_COOKIE_MAX_AGE, **_cookie_options())
    if tokens.refresh_token:
        response.set_cookie(REFRESH_TOKEN_COOKIE, tokens.refresh_token,
                            max_age=refresh_max_age, **_cookie_options())


def issue_session_cookies(response, tokens: SessionTokens, meta: SessionMetadata):
    """Set credential cookies plus the readable metadata cookie after a login."""
    max_age = max(1, (meta.expires_at - now_ms()) // 1000)
    refresh_max_age = Config.REFRESH_TOKEN_COOKIE_MAX_AGE if meta.remember_me else max_age

    _set_tokens(response, tokens, refresh_max_age)
    response.set_cookie(REGION_COOKIE, meta.region, max_age=refresh_max_age, **_cookie_options())
    for name, value in ((VIN_COOKIE, meta.vin), (USER_ID_COOKIE, meta.user_id)):
        if value:
            response.set_cookie(name, value, max_age=refresh_max_age, **_cookie_options())
        else:
            # No vehicle on this account, drop the previous login's context
            response.delete_cookie(name, **_cookie_options())
    response.set_cookie(METADATA_COOKIE, create_metadata_token(meta), max_age=max_age,
                        **_cookie_options(http_only=False))
    return response


def refresh_session_cookies(response, tokens: SessionTokens, meta: Optional[SessionMetadata] = None):
    """Rotate credential cookies after a refresh, keeping the login's lifetime policy."""
    remember_me = meta.remember_me if meta else False
    refresh_max_age = (Config.REFRESH_TOKEN_COOKIE_MAX_AGE if remember_me
                       else int(session_ttl(False).total_seconds()))
    _set_tokens(response, tokens, refresh_max_age)
    return response


def clear_session_cookies(response):
    for name in AUTH_COOKIES:
        response.delete_cookie(name, path='/', secure=Config.COOKIE_SECURE,
                               samesite=Config.COOKIE_SAMESITE,
                               httponly=name != METADATA_COOKIE)
    return response


def read_credentials(request) -> SessionCredentials:
    cookies = request.cookies
    return SessionCredentials(
        access_token=cookies.get(ACCESS_TOKEN_COOKIE),
        refresh_token=cookies.get(REFRESH_TOKEN_COOKIE),
        vin=cookies.get(VIN_COOKIE),
        user_id=cookies.get(USER_ID_COOKIE),
        region=cookies.get(REGION_COOKIE),
    )
