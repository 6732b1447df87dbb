class VendorClientError(Exception):
    """Base class for errors raised by the dashboard-side vendor client."""

    def __init__(self, message: str = 'Request failed'):
        super().__init__(message)
        self.message = message


class AuthenticationError(VendorClientError):
    """Login failed. `category` is safe to show to the user, vendor detail never is."""

    MESSAGES = {
        'invalid_credentials': 'Invalid email or password. Please check your credentials.',
        'too_many_attempts': 'Too many login attempts. Please wait and try again.',
        'access_denied': 'Access denied for this account.',
        'server_error': 'Server error. Please try again later.',
    }

    def __init__(self, category: str):
        if category not in self.MESSAGES:
            category = 'server_error'
        super().__init__(self.MESSAGES[category])
        self.category = category

    @classmethod
    def from_status(cls, status_code: int) -> "AuthenticationError":
        if status_code in (400, 401):
            return cls('invalid_credentials')
        if status_code == 403:
            return cls('access_denied')
        if status_code == 429:
            return cls('too_many_attempts')
        return cls('server_error')


class SessionExpiredError(VendorClientError):
    def __init__(self, message: str = 'Session expired. Please log in again.'):
        super().__init__(message)


class NotLoggedInError(VendorClientError):
    def __init__(self, message: str = 'Not logged in'):
        super().__init__(message)


class VendorRequestError(VendorClientError):
    """A gateway/vendor call failed with a non-auth status, a network error or an unusable body."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code
