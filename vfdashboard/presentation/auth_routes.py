import logging
from functools import wraps

from flask import make_response, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_restx import Namespace, Resource, fields

from config import Config
from vfdashboard.application.auth_service import auth_service
from vfdashboard.application.errors import GatewayError, LoginFailedError
from vfdashboard.application.session_cookies import (
    METADATA_COOKIE,
    clear_session_cookies,
    decode_metadata_token,
    issue_session_cookies,
    read_credentials,
    refresh_session_cookies,
)

logger = logging.getLogger(__name__)

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[Config.RATELIMIT_DEFAULT]
)

api = Namespace('auth', description='Session brokering operations')

login_model = api.model('Login', {
    'email': fields.String(required=True, description='VinFast account email'),
    'password': fields.String(required=True, description='Password'),
    'region': fields.String(description='Region code (vn, us, eu)', default='vn'),
    'remember_me': fields.Boolean(description='Keep the session for weeks instead of hours',
                                  default=False)
})


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return value is True


def session_required(f):
    """Require vendor credentials in the cookie jar; passes `credentials` to the handler."""
    @wraps(f)
    def decorated(*args, **kwargs):
        credentials = read_credentials(request)
        if not credentials.access_token and not credentials.refresh_token:
            logger.warning(f"Unauthenticated call to {request.path}")
            return {'error': 'Not authenticated', 'code': 'unauthenticated'}, 401
        kwargs['credentials'] = credentials
        return f(*args, **kwargs)
    return decorated


@api.route('/login')
class Login(Resource):
    @api.doc('login')
    @api.expect(login_model)
    @limiter.limit("5 per minute")
    def post(self):
        data = request.get_json(silent=True)
        if not data:
            return {'error': 'Email and password required', 'code': 'invalid_request'}, 400

        email = data.get('email')
        password = data.get('password')
        if not email or not password:
            return {'error': 'Email and password required', 'code': 'invalid_request'}, 400

        try:
            tokens, meta = auth_service.login(
                email,
                password,
                region=data.get('region'),
                remember_me=_flag(data.get('remember_me'))
            )
        except LoginFailedError as e:
            return e.to_response()
        except GatewayError as e:
            logger.error(f"Login error: {e.code}")
            return LoginFailedError('server_error').to_response()

        response = make_response({
            'success': True,
            'session': {
                'vin': meta.vin,
                'region': meta.region,
                'remember_me': meta.remember_me,
                'expires_at': meta.expires_at,
            }
        }, 200)
        return issue_session_cookies(response, tokens, meta)


@api.route('/logout')
class Logout(Resource):
    @api.doc('logout')
    def post(self):
        response = make_response({'success': True}, 200)
        logger.info("Session cookies cleared")
        return clear_session_cookies(response)


@api.route('/refresh')
class TokenRefresh(Resource):
    @api.doc('refresh')
    @limiter.limit("10 per minute")
    def post(self):
        credentials = read_credentials(request)
        try:
            tokens = auth_service.refresh(credentials)
        except GatewayError as e:
            logger.warning(f"Refresh failed ({e.code}), clearing session")
            response = make_response({'error': 'Session expired', 'code': 'session_expired'}, 401)
            return clear_session_cookies(response)

        meta = decode_metadata_token(request.cookies.get(METADATA_COOKIE))
        response = make_response({'success': True}, 200)
        return refresh_session_cookies(response, tokens, meta)


@api.route('/session')
class CurrentSession(Resource):
    @api.doc('session')
    def get(self):
        meta = decode_metadata_token(request.cookies.get(METADATA_COOKIE))
        credentials = read_credentials(request)
        if not meta or not (credentials.access_token or credentials.refresh_token):
            return {'error': 'Not authenticated', 'code': 'unauthenticated'}, 401
        return {'data': meta.to_dict()}, 200


@api.route('/user')
class UserProfile(Resource):
    @api.doc('user_profile')
    @limiter.limit("10 per minute")
    @session_required
    def get(self, credentials):
        try:
            return {'data': auth_service.user_profile(credentials)}, 200
        except GatewayError as e:
            return e.to_response()


@api.route('/vehicles')
class Vehicles(Resource):
    @api.doc('list_vehicles')
    @limiter.limit("10 per minute")
    @session_required
    def get(self, credentials):
        try:
            return {'data': auth_service.list_vehicles(credentials)}, 200
        except GatewayError as e:
            return e.to_response()
