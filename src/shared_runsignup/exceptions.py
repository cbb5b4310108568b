"""
Error taxonomy for the RunSignUp client
"""
from typing import Optional

from .config import ConfigurationError, TOKEN_EXPIRED_ERROR_CODE


class RunSignUpError(Exception):
    """Base class for every error raised by this package"""
    pass


class ValidationError(RunSignUpError):
    """Local pre-flight check failed; no request was sent"""
    pass


class TransportError(RunSignUpError):
    """Network unreachable or request timed out"""
    pass


class ApiError(RunSignUpError):
    """Server returned a structured error (or an HTTP error without one)"""

    def __init__(self, code: int, message: str, status_code: Optional[int] = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"API Error {code}: {message}")

    @classmethod
    def from_envelope(cls, error: dict, status_code: Optional[int] = None) -> 'ApiError':
        try:
            code = int(error.get('error_code', 0))
        except (TypeError, ValueError):
            code = 0
        message = str(error.get('error_msg') or 'Unknown error')
        if code == TOKEN_EXPIRED_ERROR_CODE:
            return AuthExpiredError(code, message, status_code)
        return cls(code, message, status_code)


class AuthExpiredError(ApiError):
    """Access token rejected as expired; refresh and replay once"""
    pass


class AuthInvalidError(RunSignUpError):
    """Refresh failed; credentials were purged and the account must be re-linked"""
    pass


class AuthorizationError(RunSignUpError):
    """Interactive authorization ended with a provider error"""
    pass


class AuthorizationCancelledError(RunSignUpError):
    """User closed the authorization flow"""
    pass


class NotLinkedError(RunSignUpError):
    """Action needs a linked RunSignUp account"""
    pass


__all__ = [
    'RunSignUpError',
    'ConfigurationError',
    'ValidationError',
    'TransportError',
    'ApiError',
    'AuthExpiredError',
    'AuthInvalidError',
    'AuthorizationError',
    'AuthorizationCancelledError',
    'NotLinkedError',
]
