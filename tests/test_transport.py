import asyncio
import os
import sys
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from pathlib import Path

import requests

APIHELPERS_SRC = Path(__file__).resolve().parents[1] / "src"
sys.path.insert(0, str(APIHELPERS_SRC))

from shared_runsignup.auth import AuthManager
from shared_runsignup.config import Config
from shared_runsignup.exceptions import (
    ApiError,
    AuthExpiredError,
    AuthInvalidError,
    TransportError,
)
from shared_runsignup.token_store import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    TOKEN_EXPIRY_KEY,
    InMemoryTokenStore,
)
from shared_runsignup.transport import ApiTransport, CredentialScheme, credential_scheme_for

EXPIRED = {'error': {'error_code': 6, 'error_msg': 'Token expired'}}


def json_response(payload, status=200):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload
    return response


def html_response(status=502):
    response = MagicMock()
    response.status_code = status
    response.json.side_effect = ValueError("Expecting value")
    return response


class TestCredentialScheme(unittest.TestCase):
    def test_registration_paths_use_both(self):
        for path in ('/race/1/registration/add', '/race/1/participants',
                     '/race/1/event/2/waitlist/add', '/rest/race/1/participants.json'):
            self.assertEqual(credential_scheme_for(path), CredentialScheme.BEARER_AND_PARTNER_KEY, path)

    def test_user_paths_use_bearer(self):
        for path in ('/rest/user/5.json', '/Profile/OAuth2/UserInfo', '/rest/user/me'):
            self.assertEqual(credential_scheme_for(path), CredentialScheme.BEARER, path)

    def test_user_registration_list_uses_both(self):
        # Registration marker is checked first
        self.assertEqual(credential_scheme_for('/rest/user/5/registrations.json'),
                         CredentialScheme.BEARER_AND_PARTNER_KEY)

    def test_photo_paths_use_partner_key(self):
        for path in ('/rest/v2/photos/get-race-photos.json', '/rest/race/1/photo-albums.json'):
            self.assertEqual(credential_scheme_for(path), CredentialScheme.PARTNER_KEY, path)

    def test_other_paths_default(self):
        self.assertEqual(credential_scheme_for('/races'), CredentialScheme.DEFAULT)


class TransportTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._original_env = os.environ.copy()
        for key in [k for k in os.environ if k.startswith("RUNSIGNUP_")]:
            del os.environ[key]
        os.environ["RUNSIGNUP_OAUTH_CLIENT_ID"] = "test-client-id"
        os.environ["RUNSIGNUP_OAUTH_CLIENT_SECRET"] = "test-secret"
        self.config = Config()

        expires_at = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
        self.store = InMemoryTokenStore({
            ACCESS_TOKEN_KEY: "old",
            REFRESH_TOKEN_KEY: "refresh-1",
            TOKEN_EXPIRY_KEY: expires_at,
        })
        self.auth_session = MagicMock()
        self.auth_session.post.return_value = json_response(
            {'access_token': 'new', 'refresh_token': 'refresh-2', 'expires_in': 3600}
        )
        self.auth = AuthManager(self.store, config=self.config, session=self.auth_session)
        self.session = MagicMock()

    def tearDown(self):
        os.environ.clear()
        os.environ.update(self._original_env)

    def make_transport(self, auth=True):
        return ApiTransport(auth=self.auth if auth else None, config=self.config, session=self.session)

    def last_call(self):
        args, kwargs = self.session.request.call_args
        return args, kwargs


class TestRequests(TransportTestCase):
    async def test_unwraps_data(self):
        self.session.request.return_value = json_response({'data': {'race_id': 7}})
        transport = self.make_transport()

        result = await transport.get('/race/7', {'events': 'T', 'skip': None})

        self.assertEqual(result, {'race_id': 7})
        args, kwargs = self.last_call()
        self.assertEqual(args, ('GET', 'https://runsignup.com/race/7'))
        self.assertEqual(kwargs['params'], {'events': 'T', 'format': 'json'})
        self.assertEqual(kwargs['timeout'], 30.0)

    async def test_payload_without_data_returned_whole(self):
        self.session.request.return_value = json_response({'races': []})
        transport = self.make_transport()

        self.assertEqual(await transport.get('/races'), {'races': []})

    async def test_default_scheme_prefers_partner_key(self):
        self.config.runsignup_api_key = "key"
        self.config.runsignup_api_secret = "key-secret"
        self.session.request.return_value = json_response({'races': []})
        transport = self.make_transport()

        await transport.get('/races')

        _, kwargs = self.last_call()
        self.assertEqual(kwargs['params']['api_key'], "key")
        self.assertEqual(kwargs['params']['api_secret'], "key-secret")
        self.assertNotIn('Authorization', kwargs['headers'])

    async def test_default_scheme_falls_back_to_bearer(self):
        self.session.request.return_value = json_response({'races': []})
        transport = self.make_transport()

        await transport.get('/races')

        _, kwargs = self.last_call()
        self.assertEqual(kwargs['headers']['Authorization'], "Bearer old")
        self.assertNotIn('api_key', kwargs['params'])

    async def test_registration_sends_bearer_and_key(self):
        self.config.runsignup_api_key = "key"
        self.config.runsignup_api_secret = "key-secret"
        self.session.request.return_value = json_response({'registration_id': 9})
        transport = self.make_transport()

        await transport.post('/race/1/registration/add', {'first_name': 'Ada'})

        args, kwargs = self.last_call()
        self.assertEqual(args[0], 'POST')
        self.assertEqual(kwargs['json'], {'first_name': 'Ada'})
        self.assertEqual(kwargs['headers']['Authorization'], "Bearer old")
        self.assertEqual(kwargs['params']['api_key'], "key")

    async def test_photo_path_never_sends_bearer(self):
        self.session.request.return_value = json_response({'photos': []})
        transport = self.make_transport()

        await transport.get('/rest/v2/photos/get-race-photos.json', {'race_id': 1})

        _, kwargs = self.last_call()
        self.assertNotIn('Authorization', kwargs['headers'])

    async def test_error_envelope_raises_even_on_200(self):
        self.session.request.return_value = json_response(
            {'error': {'error_code': 101, 'error_msg': 'Race not found'}}
        )
        transport = self.make_transport()

        with self.assertRaises(ApiError) as ctx:
            await transport.get('/race/404')
        self.assertEqual(ctx.exception.code, 101)
        self.assertEqual(ctx.exception.message, "Race not found")
        self.assertEqual(str(ctx.exception), "API Error 101: Race not found")

    async def test_http_error_without_envelope(self):
        self.session.request.return_value = json_response({}, status=500)
        transport = self.make_transport()

        with self.assertRaises(ApiError) as ctx:
            await transport.get('/races')
        self.assertEqual(ctx.exception.status_code, 500)

    async def test_non_json_response(self):
        self.session.request.return_value = html_response()
        transport = self.make_transport()

        with self.assertRaises(ApiError):
            await transport.get('/races')

    async def test_network_error(self):
        self.session.request.side_effect = requests.exceptions.ConnectionError("unreachable")
        transport = self.make_transport()

        with self.assertRaises(TransportError):
            await transport.get('/races')

    def test_is_configured(self):
        self.assertTrue(self.make_transport().is_configured())
        self.assertFalse(self.make_transport(auth=False).is_configured())
        self.config.runsignup_api_key = "key"
        self.config.runsignup_api_secret = "key-secret"
        self.assertTrue(self.make_transport(auth=False).is_configured())


class TestExpiryReplay(TransportTestCase):
    def fake_request(self, method, url, params=None, json=None, headers=None, timeout=None):
        if (headers or {}).get('Authorization') == 'Bearer old':
            return json_response(EXPIRED)
        return json_response({'data': {'user': {'user_id': 5}}})

    async def test_refresh_then_replay_once(self):
        self.session.request.side_effect = self.fake_request
        transport = self.make_transport()

        result = await transport.get('/rest/user/5.json')

        self.assertEqual(result, {'user': {'user_id': 5}})
        self.assertEqual(self.session.request.call_count, 2)
        self.assertEqual(self.auth_session.post.call_count, 1)
        self.assertEqual(self.store.get_token(ACCESS_TOKEN_KEY), "new")

    async def test_second_expiry_is_terminal(self):
        self.session.request.return_value = json_response(EXPIRED)
        transport = self.make_transport()

        with self.assertRaises(AuthExpiredError):
            await transport.get('/rest/user/5.json')
        self.assertEqual(self.session.request.call_count, 2)
        self.assertEqual(self.auth_session.post.call_count, 1)

    async def test_no_refresh_when_no_bearer_sent(self):
        self.session.request.return_value = json_response(EXPIRED)
        transport = self.make_transport()

        with self.assertRaises(AuthExpiredError):
            await transport.get('/rest/v2/photos/get-race-photos.json')
        self.assertEqual(self.session.request.call_count, 1)
        self.auth_session.post.assert_not_called()

    async def test_failed_refresh_surfaces_auth_invalid(self):
        self.session.request.return_value = json_response(EXPIRED)
        self.auth_session.post.return_value = json_response({'error': 'invalid_grant'}, status=400)
        transport = self.make_transport()

        with self.assertRaises(AuthInvalidError):
            await transport.get('/rest/user/5.json')
        self.assertEqual(self.session.request.call_count, 1)
        self.assertIsNone(self.store.get_token(ACCESS_TOKEN_KEY))

    async def test_concurrent_expired_requests_refresh_once(self):
        self.session.request.side_effect = self.fake_request
        transport = self.make_transport()

        results = await asyncio.gather(*(transport.get('/rest/user/5.json') for _ in range(4)))

        self.assertEqual(self.auth_session.post.call_count, 1)
        self.assertEqual(len(results), 4)
        self.assertTrue(all(r == {'user': {'user_id': 5}} for r in results))


if __name__ == '__main__':
    unittest.main()
