class GatewayError(Exception):
    """Base error for the gateway. Only `message` and `code` reach the caller."""

    status_code = 500
    code = 'gateway_error'
    message = 'Internal server error'

    def __init__(self, message=None):
        if message:
            self.message = message
        super().__init__(self.message)

    def to_response(self):
        return {'error': self.message, 'code': self.code}, self.status_code


class PathNotAllowedError(GatewayError):
    status_code = 403
    code = 'not_allowed'
    message = 'Path not allowed'


class NotAuthenticatedError(GatewayError):
    status_code = 401
    code = 'unauthenticated'
    message = 'Not authenticated'


class SigningMisconfiguredError(GatewayError):
    status_code = 500
    code = 'server_misconfigured'
    message = 'Server misconfigured'


class UpstreamUnavailableError(GatewayError):
    status_code = 502
    code = 'upstream_unavailable'
    message = 'Upstream unavailable'


# Auth0 answers a wrong password with 403 invalid_grant, so the error field wins over the status
AUTH0_LOGIN_ERRORS = {
    'invalid_grant': 'invalid_credentials',
    'invalid_user_password': 'invalid_credentials',
    'too_many_attempts': 'too_many_attempts',
    'unauthorized': 'access_denied',
    'access_denied': 'access_denied',
}


class LoginFailedError(GatewayError):
    """Login rejected; `category` is one of the user-presentable categories."""

    MESSAGES = {
        'invalid_credentials': (401, 'Invalid email or password. Please check your credentials.'),
        'too_many_attempts': (429, 'Too many login attempts. Please wait and try again.'),
        'access_denied': (403, 'Access denied for this account.'),
        'server_error': (502, 'Login service unavailable. Please try again later.'),
    }

    def __init__(self, category):
        if category not in self.MESSAGES:
            category = 'server_error'
        self.category = category
        self.code = category
        self.status_code, message = self.MESSAGES[category]
        super().__init__(message)

    @classmethod
    def from_status(cls, status_code):
        if status_code in (400, 401):
            return cls('invalid_credentials')
        if status_code == 403:
            return cls('access_denied')
        if status_code == 429:
            return cls('too_many_attempts')
        return cls('server_error')

    @classmethod
    def from_vendor(cls, status_code, body):
        """Category from the Auth0 `error` field, falling back to the status code."""
        error = body.get('error') if isinstance(body, dict) else None
        if error in AUTH0_LOGIN_ERRORS:
            return cls(AUTH0_LOGIN_ERRORS[error])
        return cls.from_status(status_code)
