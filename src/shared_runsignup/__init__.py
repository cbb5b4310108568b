"""
Shared RunSignUp Client Package
"""
from .auth import AuthManager, AuthState, BrowserAuthorizer
from .config import Config, ConfigurationError, get_config
from .exceptions import (
    ApiError,
    AuthExpiredError,
    AuthInvalidError,
    AuthorizationError,
    NotLinkedError,
    RunSignUpError,
    TransportError,
    ValidationError,
)
from .integration import AppUser, IntegrationState, LinkStatus, RunSignUpIntegration
from .photos import PhotoClient
from .races import RaceClient, RaceStatus
from .registrations import RegistrationClient
from .token_store import DotenvTokenStore, InMemoryTokenStore
from .transport import ApiTransport
from .users import UserClient

__all__ = [
    'AuthManager', 'AuthState', 'BrowserAuthorizer',
    'Config', 'ConfigurationError', 'get_config',
    'ApiError', 'AuthExpiredError', 'AuthInvalidError', 'AuthorizationError',
    'NotLinkedError', 'RunSignUpError', 'TransportError', 'ValidationError',
    'AppUser', 'IntegrationState', 'LinkStatus', 'RunSignUpIntegration',
    'PhotoClient', 'RaceClient', 'RaceStatus', 'RegistrationClient', 'UserClient',
    'DotenvTokenStore', 'InMemoryTokenStore', 'ApiTransport',
]
