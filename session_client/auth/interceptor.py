"""
Binds the refresh coordinator into the HTTP client's interceptor pipeline.
"""

import logging
from typing import Callable

from session_client.api_client import ApiRequest, ApiResponse, ApiResponseError, AuthApiClient
from session_client.auth.refresh_coordinator import AUTHORIZATION_HEADER, RefreshCoordinator

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401


def bind_auth_interceptors(client: AuthApiClient, coordinator: RefreshCoordinator) -> Callable[[], None]:
    """
    Attach session handling to an HTTP client.

    Outgoing requests get the current Authorization header. Responses with
    status 401 on a request that was not yet retried are handed to the
    coordinator; every other error passes through unchanged.

    Returns:
        Callable removing both interceptors again
    """

    def attach_authorization(request: ApiRequest) -> ApiRequest:
        header = coordinator.get_authorization_header()
        if header:
            request.headers[AUTHORIZATION_HEADER] = header
        return request

    async def recover_unauthorized(error: ApiResponseError) -> ApiResponse:
        if error.status == HTTP_UNAUTHORIZED and not error.request.retried:
            logger.debug(f"Unauthorized response for {error.request.method} {error.request.url}")
            return await coordinator.handle_unauthorized(error)
        raise error

    remove_request = client.add_request_interceptor(attach_authorization)
    remove_response = client.add_response_error_interceptor(recover_unauthorized)

    def unbind() -> None:
        remove_request()
        remove_response()

    return unbind
