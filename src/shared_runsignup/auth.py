"""
RunSignUp OAuth2 Authentication Manager

Drives the authorization-code flow, persists access/refresh tokens through an
injected token store and refreshes them when the API reports expiry.

Usage:
    from shared_runsignup import AuthManager, InMemoryTokenStore

    auth = AuthManager(InMemoryTokenStore(), authorizer=BrowserAuthorizer())
    result = await auth.authorize()
    if result.code:
        await auth.exchange_code_for_token(result.code)
"""
import asyncio
import logging
import secrets
import webbrowser
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol
from urllib.parse import parse_qsl, unquote, urlencode, urlparse

import requests

from .config import Config, ConfigurationError, get_config
from .exceptions import (
    ApiError,
    AuthInvalidError,
    AuthorizationCancelledError,
    AuthorizationError,
    TransportError,
    ValidationError,
)
from .models import AuthorizationOutcome, AuthorizationResult, Credential, LinkedIdentity
from .token_store import (
    ACCESS_TOKEN_KEY,
    ALL_TOKEN_KEYS,
    REFRESH_TOKEN_KEY,
    TOKEN_EXPIRY_KEY,
    TokenStore,
)

logger = logging.getLogger(__name__)

# RunSignUp uses /Profile/OAuth2/ for both authorization and token
AUTHORIZE_ENDPOINT = '/Profile/OAuth2/RequestGrant'
TOKEN_ENDPOINT = '/Profile/OAuth2/GetAccessToken'
OAUTH_SCOPES = ['rsu_api_read', 'rsu_api_write']

DEFAULT_EXPIRES_IN = 3600
CODE_AS_TOKEN_EXPIRES_IN = 2592000  # 30 days


class AuthState(str, Enum):
    UNAUTHENTICATED = 'unauthenticated'
    AUTHORIZATION_PENDING = 'authorization_pending'
    LINKED = 'linked'
    EXPIRED = 'expired'


class Authorizer(Protocol):
    """Interactive flow (browser, webview); returns the callback URL or None if dismissed"""

    async def open(self, authorization_url: str, redirect_uri: str) -> Optional[str]:
        ...


def extract_callback_params(text: str) -> Dict[str, str]:
    """Extract OAuth callback parameters from a redirect URL or a raw code"""
    if not text:
        return {}
    text = text.strip()

    if not any(c in text for c in '?#&') and not text.startswith(('code=', 'access_token=', 'error=')):
        return {'code': unquote(text)}

    parsed = urlparse(text)
    params: Dict[str, str] = {}
    # Implicit grants put the token in the fragment
    for chunk in (parsed.query, parsed.fragment):
        params.update(dict(parse_qsl(chunk)))
    if not params:
        params.update(dict(parse_qsl(text)))
    return params


def code_as_token_credential(code: str) -> Credential:
    """
    Workaround for RunSignUp's token endpoint, which needs browser session
    cookies we do not have: the authorization code is accepted as a bearer
    token. No refresh token is issued, so expiry forces a re-link.
    """
    return Credential.issue(code, CODE_AS_TOKEN_EXPIRES_IN)


class BrowserAuthorizer:
    """Opens the system browser and reads the redirect URL back from the terminal"""

    def __init__(self, opener: Callable[[str], Any] = webbrowser.open,
                 prompt: Callable[[str], str] = input):
        self._opener = opener
        self._prompt = prompt

    async def open(self, authorization_url: str, redirect_uri: str) -> Optional[str]:
        print("Opening browser for authorization...")
        print("If browser doesn't open, go to this URL:")
        print(authorization_url)
        print()
        print(f"After you authorize you will be sent to {redirect_uri}?code=...")
        print("Copy that full URL (or just the code) from the address bar.")
        self._opener(authorization_url)

        answer = await asyncio.to_thread(
            self._prompt, "Paste the redirect URL or code here (empty to cancel): "
        )
        answer = (answer or '').strip()
        return answer or None


class AuthManager:
    """Manages RunSignUp OAuth tokens with coalesced refresh"""

    def __init__(self, token_store: TokenStore, authorizer: Optional[Authorizer] = None,
                 config: Optional[Config] = None, session: Optional[requests.Session] = None):
        self.config = config or get_config()
        self.token_store = token_store
        self.authorizer = authorizer
        self.session = session or requests.Session()
        self.token_url = f"{self.config.base_url}{TOKEN_ENDPOINT}"
        self.authorize_endpoint = f"{self.config.base_url}{AUTHORIZE_ENDPOINT}"

        # Identity returned alongside the token, when the provider includes one
        self.token_identity: Optional[LinkedIdentity] = None

        self._pending_redirect_uri: Optional[str] = None
        self._authorizing = False
        self._refresh_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        if self._pending_redirect_uri is not None:
            return AuthState.AUTHORIZATION_PENDING
        credential = self.credential()
        if credential is None:
            return AuthState.UNAUTHENTICATED
        if credential.is_expired():
            return AuthState.EXPIRED
        return AuthState.LINKED

    def credential(self) -> Optional[Credential]:
        """Current credential from the token store, or None"""
        access_token = self.token_store.get_token(ACCESS_TOKEN_KEY)
        if not access_token:
            return None

        expiry = self.token_store.get_token(TOKEN_EXPIRY_KEY)
        try:
            expires_at = datetime.fromisoformat(expiry) if expiry else None
        except ValueError:
            expires_at = None
        if expires_at is None:
            logger.warning("Stored access token has no usable expiry, treating as expired")
            expires_at = datetime.fromtimestamp(0, timezone.utc)
        elif expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        return Credential(
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=self.token_store.get_token(REFRESH_TOKEN_KEY) or None,
        )

    def access_token(self) -> Optional[str]:
        credential = self.credential()
        return credential.access_token if credential else None

    def is_authenticated(self) -> bool:
        return self.credential() is not None

    def _store_credential(self, credential: Credential, replace_refresh: bool = False):
        self.token_store.save_token(ACCESS_TOKEN_KEY, credential.access_token)
        self.token_store.save_token(TOKEN_EXPIRY_KEY, credential.expires_at.isoformat())
        if credential.refresh_token:
            self.token_store.save_token(REFRESH_TOKEN_KEY, credential.refresh_token)
        elif replace_refresh:
            self.token_store.delete_token(REFRESH_TOKEN_KEY)

    def _purge(self):
        for key in ALL_TOKEN_KEYS:
            self.token_store.delete_token(key)

    # -------------------------------------------------------------------------
    # Authorization flow
    # -------------------------------------------------------------------------

    def authorization_url(self, state: str, redirect_uri: Optional[str] = None) -> str:
        """Generate the OAuth authorization URL"""
        params = {
            'client_id': self.config.oauth_client_id,
            'redirect_uri': redirect_uri or self.config.redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(OAUTH_SCOPES),
            'state': state,
        }
        return f"{self.authorize_endpoint}?{urlencode(params)}"

    async def authorize(self) -> AuthorizationResult:
        """Run the interactive flow until it succeeds, is cancelled or errors"""
        if self.authorizer is None:
            raise ConfigurationError("No authorizer configured for interactive authorization")
        if self._authorizing:
            raise AuthorizationError("An authorization flow is already in progress")

        redirect_uri = self.config.redirect_uri
        state = secrets.token_urlsafe(16)
        url = self.authorization_url(state, redirect_uri)
        logger.info(f"Starting OAuth flow with redirect URI: {redirect_uri}")

        self._authorizing = True
        try:
            callback = await self.authorizer.open(url, redirect_uri)
        except AuthorizationCancelledError:
            callback = None
        finally:
            self._authorizing = False

        if not callback:
            logger.info("Authorization was cancelled by user")
            return AuthorizationResult(AuthorizationOutcome.CANCELLED)

        params = extract_callback_params(callback)
        if 'error' in params:
            message = params.get('error_description') or params['error']
            logger.error(f"OAuth error: {message}")
            return AuthorizationResult(AuthorizationOutcome.ERROR, params, message)

        returned_state = params.get('state')
        if returned_state is not None and returned_state != state:
            logger.error("OAuth state mismatch, discarding callback")
            return AuthorizationResult(AuthorizationOutcome.ERROR, params, 'State mismatch')

        if params.get('access_token'):
            logger.info("Access token received directly in callback")
            return AuthorizationResult(AuthorizationOutcome.SUCCESS, params)

        if params.get('code'):
            logger.info("Authorization code received, token exchange pending")
            self._pending_redirect_uri = redirect_uri
            return AuthorizationResult(AuthorizationOutcome.SUCCESS, params)

        return AuthorizationResult(
            AuthorizationOutcome.ERROR, params, 'No authorization code or token received'
        )

    async def exchange_code_for_token(self, code: str, redirect_uri: Optional[str] = None) -> Credential:
        """Exchange authorization code for access and refresh tokens"""
        if not code:
            raise ValidationError("Authorization code is empty")

        # Must be the same redirect_uri as authorization
        expected = self._pending_redirect_uri or self.config.redirect_uri
        redirect_uri = redirect_uri or expected
        if redirect_uri != expected:
            raise ConfigurationError(
                f"Redirect URI mismatch: exchange used {redirect_uri}, authorization used {expected}"
            )

        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': redirect_uri,
            'client_id': self.config.oauth_client_id,
            'client_secret': self.config.oauth_client_secret,
        }
        try:
            response = await self._post_token_endpoint(data, 'Token exchange')
            token_data = self._token_payload(response)

            if token_data is None:
                if not self.config.code_as_token_fallback:
                    raise AuthorizationError(f"Token exchange failed: {response.status_code}")
                logger.warning("Token exchange unavailable, using authorization code as bearer token")
                credential = code_as_token_credential(code)
            else:
                credential = Credential.from_token_response(token_data, DEFAULT_EXPIRES_IN)
                user = token_data.get('user')
                if isinstance(user, dict):
                    self.token_identity = LinkedIdentity.from_api(user)

            self._store_credential(credential, replace_refresh=True)
        finally:
            # A code is single use; a failed exchange needs a fresh authorize()
            self._pending_redirect_uri = None
        logger.info(f"Account linked, token {credential.access_token[:6]}... expires {credential.expires_at}")
        return credential

    def accept_implicit_token(self, params: Dict[str, str]) -> Credential:
        """Store a token that arrived directly in the authorization callback"""
        token = params.get('access_token')
        if not token:
            raise ValidationError("Callback did not include an access token")
        try:
            expires_in = int(params.get('expires_in') or DEFAULT_EXPIRES_IN)
        except ValueError:
            expires_in = DEFAULT_EXPIRES_IN
        credential = Credential.issue(token, expires_in, params.get('refresh_token'))
        self._store_credential(credential, replace_refresh=True)
        self._pending_redirect_uri = None
        return credential

    # -------------------------------------------------------------------------
    # Refresh / logout
    # -------------------------------------------------------------------------

    async def refresh_token(self, stale_token: Optional[str] = None) -> Credential:
        """
        Refresh the access token.

        Callers arriving while a refresh is in flight await the same task. When
        ``stale_token`` is given and the stored token has already moved on, the
        current credential is returned without another request.
        """
        if self._refresh_task is not None and not self._refresh_task.done():
            return await asyncio.shield(self._refresh_task)

        if stale_token is not None:
            current = self.credential()
            if current is not None and current.access_token != stale_token:
                logger.debug("Token already refreshed by a concurrent request")
                return current

        self._refresh_task = asyncio.get_running_loop().create_task(self._refresh())
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> Credential:
        refresh_token = self.token_store.get_token(REFRESH_TOKEN_KEY)
        if not refresh_token:
            self._purge()
            raise AuthInvalidError("No refresh token available, account must be re-linked")

        data = {
            'grant_type': 'refresh_token',
            'client_id': self.config.oauth_client_id,
            'client_secret': self.config.oauth_client_secret,
            'refresh_token': refresh_token,
        }
        response = await self._post_token_endpoint(data, 'Token refresh')
        if response.status_code >= 500:
            # Server errors leave the stored tokens in place
            logger.error(f"Token refresh failed with server error: {response.status_code}")
            raise ApiError(response.status_code, f"Token endpoint unavailable (HTTP {response.status_code})",
                           response.status_code)

        token_data = self._token_payload(response)
        if token_data is None:
            logger.error(f"Token refresh failed: {response.status_code}")
            self._purge()
            raise AuthInvalidError(f"Token refresh failed: {response.status_code}")

        credential = Credential.from_token_response(token_data, DEFAULT_EXPIRES_IN)
        if credential.refresh_token is None:
            credential = replace(credential, refresh_token=refresh_token)
        self._store_credential(credential)
        logger.info("Token refreshed successfully")
        return credential

    async def logout(self):
        """Clear all stored tokens"""
        self._purge()
        self._pending_redirect_uri = None
        self.token_identity = None

    # -------------------------------------------------------------------------
    # Token endpoint
    # -------------------------------------------------------------------------

    async def _post_token_endpoint(self, data: dict, action: str) -> requests.Response:
        headers = {'Content-Type': 'application/x-www-form-urlencoded'}
        try:
            return await asyncio.to_thread(
                self.session.post, self.token_url, data=data, headers=headers,
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"{action} request failed: {e}")
            raise TransportError(f"{action} request failed: {e}") from e

    @staticmethod
    def _token_payload(response: requests.Response) -> Optional[dict]:
        if response.status_code >= 400:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict) or not data.get('access_token'):
            return None
        return data
