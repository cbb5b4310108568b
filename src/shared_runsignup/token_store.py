"""
Token storage backends.

The authentication manager only needs three operations on a store, so any
secure keychain can be plugged in as long as it offers get/save/delete by key.
"""
import os
import logging
from typing import Dict, Optional, Protocol

from dotenv import dotenv_values, set_key, unset_key

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = 'runsignup_access_token'
REFRESH_TOKEN_KEY = 'runsignup_refresh_token'
TOKEN_EXPIRY_KEY = 'runsignup_token_expiry'

ALL_TOKEN_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, TOKEN_EXPIRY_KEY)


class TokenStore(Protocol):
    """Secure storage capability: opaque strings under fixed named slots"""

    def get_token(self, key: str) -> Optional[str]:
        ...

    def save_token(self, key: str, value: str) -> None:
        ...

    def delete_token(self, key: str) -> None:
        ...


class InMemoryTokenStore:
    """Token storage in memory (lost on process exit)"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._tokens: Dict[str, str] = dict(initial or {})

    def get_token(self, key: str) -> Optional[str]:
        return self._tokens.get(key)

    def save_token(self, key: str, value: str) -> None:
        self._tokens[key] = value

    def delete_token(self, key: str) -> None:
        self._tokens.pop(key, None)


class DotenvTokenStore:
    """Persists tokens in a .env file, upper-casing slot names"""

    def __init__(self, env_file: Optional[str] = None):
        self.env_file = env_file or self._find_env_file()

    def _find_env_file(self) -> str:
        """Find the .env file location"""
        # Look for .env in current directory or parent directories
        current = os.getcwd()
        while True:
            env_path = os.path.join(current, '.env')
            if os.path.exists(env_path):
                return env_path
            parent = os.path.dirname(current)
            if parent == current:
                return '.env'  # Fallback
            current = parent

    def get_token(self, key: str) -> Optional[str]:
        if not os.path.exists(self.env_file):
            return None
        value = dotenv_values(self.env_file).get(key.upper())
        return value or None

    def save_token(self, key: str, value: str) -> None:
        if not os.path.exists(self.env_file):
            open(self.env_file, 'a').close()
        set_key(self.env_file, key.upper(), value)
        logger.debug(f"Saved {key} to {self.env_file}")

    def delete_token(self, key: str) -> None:
        if not os.path.exists(self.env_file):
            return
        if key.upper() in dotenv_values(self.env_file):
            unset_key(self.env_file, key.upper())
