"""
Tests for the auth manager facade.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from jose import jwt
from pydantic import BaseModel

from conftest import ScriptedClient, protected_api
from session_client.api_client import ApiResponse
from session_client.auth.auth_manager import AuthManager, AuthOptions
from session_client.auth.token_storage import MemoryStorage
from session_shared.exceptions import ConfigurationError, CredentialOperationError, ErrorCode
from session_shared.models import DEFAULT_STORAGE_KEYS, SessionState


class User(BaseModel):
    id: int
    name: str


class TestSignIn:
    """Test signing in."""

    @pytest.mark.asyncio
    async def test_sign_in_calls_operations_once(self, make_options, storage):
        options = make_options()
        manager = await AuthManager.create(options)

        state = await manager.sign_in({'email': 'ada@example.com', 'password': 'secret'})

        options.sign_in.assert_awaited_once_with({'email': 'ada@example.com', 'password': 'secret'}, manager)
        options.get_user.assert_awaited_once_with(manager)
        assert manager.get_is_signed_in()
        assert manager.get_access_token() == 'A1'
        assert manager.get_refresh_token() == 'R1'
        assert manager.get_user() == {'id': 1, 'name': 'Ada'}
        assert state == manager.get_state()
        assert storage.snapshot()[DEFAULT_STORAGE_KEYS.access_token] == 'A1'

    @pytest.mark.asyncio
    async def test_sign_in_failure_leaves_state_untouched(self, make_options):
        options = make_options(sign_in=AsyncMock(side_effect=RuntimeError("invalid credentials")))
        manager = await AuthManager.create(options)

        with pytest.raises(CredentialOperationError) as exc_info:
            await manager.sign_in({'email': 'ada@example.com'})

        assert exc_info.value.error_code == ErrorCode.AUTH_SIGN_IN_FAILED
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not manager.get_is_signed_in()
        options.get_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sign_in_without_token_pair(self, make_options):
        options = make_options(sign_in=AsyncMock(return_value={'token': 'A1'}))
        manager = await AuthManager.create(options)

        with pytest.raises(CredentialOperationError) as exc_info:
            await manager.sign_in()

        assert exc_info.value.error_code == ErrorCode.AUTH_INVALID_CREDENTIALS_RESULT
        assert not manager.get_is_signed_in()

    @pytest.mark.asyncio
    async def test_get_user_failure_leaves_state_untouched(self, make_options, storage):
        options = make_options(get_user=AsyncMock(side_effect=RuntimeError("profile unavailable")))
        manager = await AuthManager.create(options)

        with pytest.raises(CredentialOperationError) as exc_info:
            await manager.sign_in()

        assert exc_info.value.error_code == ErrorCode.AUTH_GET_USER_FAILED
        assert exc_info.value.context['operation'] == 'get_user'
        assert manager.get_state() == SessionState.signed_out()
        assert manager.get_access_token() is None
        assert storage.snapshot() == {}

    @pytest.mark.asyncio
    async def test_operations_use_bound_http_client(self, make_options):
        def handler(request):
            if request.url.endswith('/login'):
                return 200, {'accessToken': 'A1', 'refreshToken': 'R1'}
            if request.headers.get('Authorization') == 'Bearer A1':
                return 200, {'id': 7, 'name': 'Grace'}
            return 401, {'detail': 'Not authenticated'}

        async def sign_in(params, manager):
            return await manager.http.post('/login', json=params)

        async def get_user(manager):
            return await manager.http.get('/me')

        client = ScriptedClient(handler)
        manager = await AuthManager.create(make_options(
            client, sign_in=sign_in, get_user=get_user, user_model=User
        ))

        await manager.sign_in({'email': 'grace@example.com'})

        assert manager.get_user() == User(id=7, name='Grace')
        me_request = client.sent[-1]
        assert me_request.url == 'http://api.test/me'
        assert me_request.headers['Authorization'] == 'Bearer A1'

    @pytest.mark.asyncio
    async def test_api_response_unwrapped(self, make_options):
        request = Mock()
        options = make_options(
            sign_in=AsyncMock(return_value=ApiResponse(
                status=200, data={'accessToken': 'A9', 'refreshToken': 'R9'}, request=request
            )),
            get_user=AsyncMock(return_value=ApiResponse(status=200, data={'id': 9}, request=request)),
        )
        manager = await AuthManager.create(options)

        await manager.sign_in()

        assert manager.get_access_token() == 'A9'
        assert manager.get_user() == {'id': 9}

    @pytest.mark.asyncio
    async def test_sign_in_notifies_subscribers_once(self, make_options):
        manager = await AuthManager.create(make_options())
        listener = Mock()
        manager.subscribe(listener)

        await manager.sign_in()

        listener.assert_called_once_with(manager.get_state())


class TestSignOut:
    """Test signing out."""

    @pytest.mark.asyncio
    async def test_sign_out(self, make_options, storage):
        sign_out = AsyncMock()
        manager = await AuthManager.create(make_options(sign_out=sign_out))
        await manager.sign_in()

        await manager.sign_out()
        await manager.sign_out()

        sign_out.assert_awaited_once_with(manager)
        assert not manager.get_is_signed_in()
        assert storage.snapshot() == {}


class TestReads:
    """Test synchronous reads and helpers."""

    @pytest.mark.asyncio
    async def test_initial_state_round_trip(self, make_options, signed_in_state):
        storage = Mock()
        storage.get = AsyncMock()
        options = make_options(initial_state=signed_in_state, storage=storage)

        manager = await AuthManager.create(options)

        assert manager.get_access_token() == 'A1'
        assert manager.get_user() == {'id': 1}
        assert manager.get_is_signed_in()
        storage.get.assert_not_awaited()
        options.refresh_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restores_from_storage(self, make_options):
        storage = MemoryStorage({
            DEFAULT_STORAGE_KEYS.access_token: 'S1',
            DEFAULT_STORAGE_KEYS.refresh_token: 'T1',
            DEFAULT_STORAGE_KEYS.user: '{"id": 3}',
        })

        manager = await AuthManager.create(make_options(storage=storage))

        assert manager.get_state() == SessionState.signed_in('S1', 'T1', {'id': 3})

    @pytest.mark.asyncio
    async def test_access_token_expiry(self, make_options):
        expires = datetime(2030, 1, 1, tzinfo=timezone.utc)
        token = jwt.encode({'sub': '1', 'exp': int(expires.timestamp())}, 'secret', algorithm='HS256')
        state = SessionState.signed_in(token, 'R1', {'id': 1})

        manager = await AuthManager.create(make_options(initial_state=state))

        assert manager.get_access_token_expires_at() == expires

    @pytest.mark.asyncio
    async def test_opaque_token_has_no_expiry(self, make_options, signed_in_state):
        manager = await AuthManager.create(make_options(initial_state=signed_in_state))

        assert manager.get_access_token_expires_at() is None

    @pytest.mark.asyncio
    async def test_custom_authorization_header(self, make_options, signed_in_state):
        client = ScriptedClient(lambda request: (200, None))
        manager = await AuthManager.create(make_options(
            client,
            initial_state=signed_in_state,
            build_authorization_header=lambda m: f"Token {m.get_access_token()}"
        ))

        await manager.http.get('/items')

        assert manager.get_authorization_header() == 'Token A1'
        assert client.sent[0].headers['Authorization'] == 'Token A1'

    @pytest.mark.asyncio
    async def test_close_detaches_interceptors(self, make_options, signed_in_state):
        client = ScriptedClient(lambda request: (200, None))
        manager = await AuthManager.create(make_options(client, initial_state=signed_in_state))

        await manager.close()
        await client.get('/items')

        assert 'Authorization' not in client.sent[0].headers


class TestAuthOptions:
    """Test option validation."""

    def test_missing_operation_rejected(self):
        with pytest.raises(ConfigurationError) as exc_info:
            AuthOptions(sign_in=None, refresh_token=AsyncMock(), get_user=AsyncMock())

        assert exc_info.value.error_code == ErrorCode.CONFIG_MISSING_REQUIRED_SETTING
        assert exc_info.value.context['config_key'] == 'sign_in'

    def test_initial_state_type_checked(self):
        with pytest.raises(ConfigurationError):
            AuthOptions(
                sign_in=AsyncMock(),
                refresh_token=AsyncMock(),
                get_user=AsyncMock(),
                initial_state={'isSignedIn': False}
            )
