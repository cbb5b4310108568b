"""
Configuration settings for the shared RunSignUp client
"""
import os
import logging
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://runsignup.com"
TEST_BASE_URL = "https://test.runsignup.com"
DEFAULT_REDIRECT_URI = "unified5k://auth"

# Envelope error_code RunSignUp returns for an expired/invalid OAuth token
TOKEN_EXPIRED_ERROR_CODE = 6


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete"""
    pass


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 't', 'on')


class Config:
    """RunSignUp Configuration"""

    def __init__(self):
        # Partner key pair (optional - OAuth is enough for user-scoped calls)
        self.runsignup_api_key = os.getenv('RUNSIGNUP_API_KEY', '')
        self.runsignup_api_secret = os.getenv('RUNSIGNUP_API_SECRET', '')

        # OAuth2 client credentials
        self.oauth_client_id = os.getenv('RUNSIGNUP_OAUTH_CLIENT_ID', '')
        self.oauth_client_secret = os.getenv('RUNSIGNUP_OAUTH_CLIENT_SECRET', '')
        self.redirect_uri = os.getenv('RUNSIGNUP_REDIRECT_URI', DEFAULT_REDIRECT_URI)

        # API Endpoints
        default_url = TEST_BASE_URL if os.getenv('RUNSIGNUP_ENV', '').lower() == 'test' else PRODUCTION_BASE_URL
        self.base_url = os.getenv('RUNSIGNUP_BASE_URL', default_url).rstrip('/')
        self.timeout = float(os.getenv('RUNSIGNUP_TIMEOUT', '30'))

        # Provider cannot always complete a standard code exchange
        self.code_as_token_fallback = _flag('RUNSIGNUP_CODE_AS_TOKEN_FALLBACK', True)

    @property
    def has_partner_key(self) -> bool:
        return bool(self.runsignup_api_key and self.runsignup_api_secret)

    def validate(self):
        """Validate required configuration"""
        if not self.oauth_client_id:
            raise ConfigurationError("RUNSIGNUP_OAUTH_CLIENT_ID not set")
        if not self.base_url.startswith('https://'):
            raise ConfigurationError(f"RUNSIGNUP_BASE_URL must be https: {self.base_url}")
        if not self.redirect_uri:
            raise ConfigurationError("RUNSIGNUP_REDIRECT_URI not set")


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = Config()
    return _config
