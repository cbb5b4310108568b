"""
HTTP transport for the RunSignUp REST API

Every request carries ``format=json`` plus the credentials its resource family
needs. Responses are unwrapped from the ``{data, error}`` envelope; an expired
token triggers one shared refresh and a single replay.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import requests

from .config import Config, get_config
from .exceptions import ApiError, AuthExpiredError, TransportError

logger = logging.getLogger(__name__)


class CredentialScheme(str, Enum):
    BEARER_AND_PARTNER_KEY = 'bearer+partner_key'
    BEARER = 'bearer'
    PARTNER_KEY = 'partner_key'
    DEFAULT = 'default'


# Checked in this order; first match wins
_SCHEME_MARKERS = (
    (CredentialScheme.BEARER_AND_PARTNER_KEY, ('/registration', 'participant', '/waitlist')),
    (CredentialScheme.BEARER, ('/rest/user', '/profile/oauth2/userinfo')),
    (CredentialScheme.PARTNER_KEY, ('/photos', '/photo-albums', '/photo/')),
)


def credential_scheme_for(path: str) -> CredentialScheme:
    lowered = path.lower()
    for scheme, markers in _SCHEME_MARKERS:
        if any(marker in lowered for marker in markers):
            return scheme
    return CredentialScheme.DEFAULT


class ApiTransport:
    """Async wrapper around a requests session bound to the RunSignUp base URL"""

    def __init__(self, auth=None, config: Optional[Config] = None,
                 session: Optional[requests.Session] = None):
        self.config = config or get_config()
        self.auth = auth
        self.base_url = self.config.base_url
        self.timeout = self.config.timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })

    def is_configured(self) -> bool:
        """OAuth token or partner key pair is enough for most operations"""
        has_token = bool(self.auth and self.auth.access_token())
        return has_token or self.config.has_partner_key

    def _prepare(self, path: str, params: Optional[Dict[str, Any]]) -> Tuple[dict, dict, Optional[str]]:
        """Build query params and headers; returns the bearer token actually sent"""
        scheme = credential_scheme_for(path)
        query = {k: v for k, v in (params or {}).items() if v is not None}
        query['format'] = 'json'
        headers: Dict[str, str] = {}

        use_key = scheme in (CredentialScheme.BEARER_AND_PARTNER_KEY, CredentialScheme.PARTNER_KEY)
        use_bearer = scheme in (CredentialScheme.BEARER_AND_PARTNER_KEY, CredentialScheme.BEARER)
        if scheme is CredentialScheme.DEFAULT:
            use_key = self.config.has_partner_key
            use_bearer = not use_key

        if use_key:
            if self.config.has_partner_key:
                query['api_key'] = self.config.runsignup_api_key
                query['api_secret'] = self.config.runsignup_api_secret
            else:
                logger.debug(f"No partner key configured for {path}")

        token = None
        if use_bearer:
            token = self.auth.access_token() if self.auth else None
            if token:
                headers['Authorization'] = f'Bearer {token}'
            else:
                logger.debug(f"No access token available for {path}")

        return query, headers, token

    async def request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                      body: Any = None, _replayed: bool = False) -> Any:
        query, headers, sent_token = self._prepare(path, params)
        url = f"{self.base_url}{path}"

        try:
            response = await asyncio.to_thread(
                self.session.request, method, url,
                params=query, json=body, headers=headers, timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"API No Response: {method} {path}: {e}")
            raise TransportError(f"{method} {path} failed: {e}") from e

        try:
            return self._unwrap(response)
        except AuthExpiredError:
            # Nothing to refresh if no user token went out
            if _replayed or sent_token is None or self.auth is None:
                raise
            logger.info(f"Token expired on {method} {path}, attempting refresh...")
            await self.auth.refresh_token(stale_token=sent_token)
            return await self.request(method, path, params, body, _replayed=True)

    def _unwrap(self, response: requests.Response) -> Any:
        status = response.status_code
        try:
            payload = response.json()
        except ValueError:
            logger.error(f"API Error Response: status={status}, non-JSON body")
            raise ApiError(status, f"Non-JSON response (HTTP {status})", status)

        if isinstance(payload, dict):
            error = payload.get('error')
            if error:
                api_error = (ApiError.from_envelope(error, status) if isinstance(error, dict)
                             else ApiError(status, str(error), status))
                logger.error(f"API Error Response: status={status}, {api_error}")
                raise api_error
            if status >= 400:
                raise ApiError(status, f"HTTP {status}", status)
            if payload.get('data') is not None:
                return payload['data']
            return payload

        if status >= 400:
            raise ApiError(status, f"HTTP {status}", status)
        return payload

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request('GET', path, params=params)

    async def post(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request('POST', path, params=params, body=body)

    async def put(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request('PUT', path, params=params, body=body)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request('DELETE', path, params=params)
