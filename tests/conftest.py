"""
Shared fixtures for the Auth Session client tests.
"""

import asyncio
from typing import Any, Callable, List, Tuple
from unittest.mock import AsyncMock

import pytest

from session_client.api_client import ApiRequest, ApiResponse, AuthApiClient
from session_client.auth.auth_manager import AuthOptions
from session_client.auth.token_storage import MemoryStorage
from session_shared.models import SessionState

Handler = Callable[[ApiRequest], Tuple[int, Any]]


class ScriptedClient(AuthApiClient):
    """AuthApiClient answering requests from a handler instead of the network."""

    def __init__(self, handler: Handler):
        super().__init__(base_url='http://api.test')
        self.handler = handler
        self.sent: List[ApiRequest] = []

    async def _dispatch(self, request: ApiRequest) -> ApiResponse:
        self.sent.append(request)
        # Yield like a real round trip would
        await asyncio.sleep(0)
        status, data = self.handler(request)
        return ApiResponse(status=status, data=data, request=request)


def protected_api(valid_token: str) -> Handler:
    """Handler accepting only requests that carry the given bearer token."""

    def handler(request: ApiRequest) -> Tuple[int, Any]:
        if request.headers.get('Authorization') == f"Bearer {valid_token}":
            return 200, {'path': request.url}
        return 401, {'detail': 'Token expired'}

    return handler


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def signed_in_state():
    return SessionState.signed_in('A1', 'R1', {'id': 1})


@pytest.fixture
def make_options(storage):
    """Build AuthOptions with async mocks for every credential operation."""

    def factory(client=None, **overrides):
        values = dict(
            sign_in=AsyncMock(return_value={'accessToken': 'A1', 'refreshToken': 'R1'}),
            refresh_token=AsyncMock(return_value={'accessToken': 'A2', 'refreshToken': 'R2'}),
            get_user=AsyncMock(return_value={'id': 1, 'name': 'Ada'}),
            http_client=client or ScriptedClient(protected_api('A2')),
            storage=storage,
        )
        values.update(overrides)
        return AuthOptions(**values)

    return factory
