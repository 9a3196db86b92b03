"""
HTTP API Client for the Auth Session client.

This module provides the HTTP client the session machinery is bound to: an
aiohttp session wrapper with JSON defaults and a small interceptor pipeline.
Request interceptors may rewrite every outgoing request (e.g. to attach the
Authorization header); response error interceptors see every non-2xx answer
and may either resolve it with a replacement response or let it fail.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError

logger = logging.getLogger(__name__)


class APIClientError(Exception):
    """Base exception for API client errors."""
    pass


class NetworkError(APIClientError):
    """Network-related errors (connection refused, timeouts, DNS...)."""
    pass


@dataclass
class ApiRequest:
    """A request as seen by the interceptor pipeline."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json: Any = None
    params: Optional[Dict[str, Any]] = None
    retried: bool = False

    def copy(self, **changes) -> 'ApiRequest':
        """Return a copy with its own headers dict."""
        return replace(self, headers=dict(self.headers), **changes)


@dataclass
class ApiResponse:
    """A fully read response."""
    status: int
    data: Any
    request: ApiRequest
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class ApiResponseError(APIClientError):
    """Raised for non-2xx responses, carrying the response and its request."""

    def __init__(self, response: ApiResponse):
        self.response = response
        self.request = response.request
        self.status = response.status

        detail = response.data.get('detail') if isinstance(response.data, dict) else None
        super().__init__(
            f"Request failed ({response.status}): "
            f"{response.request.method} {response.request.url}"
            + (f" - {detail}" if detail else "")
        )


RequestInterceptor = Callable[[ApiRequest], ApiRequest]
ResponseErrorInterceptor = Callable[[ApiResponseError], Awaitable[ApiResponse]]


class AuthApiClient:
    """
    HTTP client with request and response-error interceptors.

    Non-2xx responses are surfaced as ApiResponseError once every response
    error interceptor has declined to resolve them. There is no automatic
    retry on network errors: each call results in at most one attempt unless
    an interceptor reissues the request.
    """

    DEFAULT_HEADERS = {'Content-Type': 'application/json'}

    def __init__(
        self,
        base_url: str = '',
        timeout: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[ClientSession] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = ClientTimeout(total=timeout)
        self.headers = {**self.DEFAULT_HEADERS, **(headers or {})}

        self._session = session
        self._owns_session = session is None

        self._request_interceptors: List[RequestInterceptor] = []
        self._error_interceptors: List[ResponseErrorInterceptor] = []

        logger.debug(f"API client initialized (base_url={self.base_url or '<none>'})")

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                limit_per_host=5,
                keepalive_timeout=30,
            )
            self._session = ClientSession(
                connector=connector,
                timeout=self.timeout,
                headers=self.headers
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def closed(self) -> bool:
        return self._session is None or self._session.closed

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> Callable[[], None]:
        """
        Register a synchronous request interceptor.

        Returns:
            Callable removing the interceptor again
        """
        self._request_interceptors.append(interceptor)
        return lambda: self._remove(self._request_interceptors, interceptor)

    def add_response_error_interceptor(self, interceptor: ResponseErrorInterceptor) -> Callable[[], None]:
        """
        Register an interceptor for non-2xx responses.

        The interceptor either returns a replacement ApiResponse, which
        becomes the result of the call, or raises. An ApiResponseError raised
        by one interceptor is handed to the next one.

        Returns:
            Callable removing the interceptor again
        """
        self._error_interceptors.append(interceptor)
        return lambda: self._remove(self._error_interceptors, interceptor)

    @staticmethod
    def _remove(interceptors: list, interceptor) -> None:
        if interceptor in interceptors:
            interceptors.remove(interceptor)

    def build_url(self, url: str) -> str:
        if url.startswith(('http://', 'https://')) or not self.base_url:
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    async def request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> ApiResponse:
        """
        Make an HTTP request through the interceptor pipeline.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            url: Absolute URL or path relative to base_url
            json: Request body data
            params: Query parameters
            headers: Extra request headers

        Returns:
            The 2xx response, or the response an error interceptor resolved to

        Raises:
            ApiResponseError: On a non-2xx response nobody resolved
            NetworkError: On transport failure
        """
        request = ApiRequest(
            method=method.upper(),
            url=self.build_url(url),
            headers=dict(headers or {}),
            json=json,
            params=params
        )
        return await self.send(request)

    async def get(self, url: str, **kwargs) -> ApiResponse:
        return await self.request('GET', url, **kwargs)

    async def post(self, url: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.request('POST', url, json=json, **kwargs)

    async def put(self, url: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.request('PUT', url, json=json, **kwargs)

    async def patch(self, url: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.request('PATCH', url, json=json, **kwargs)

    async def delete(self, url: str, **kwargs) -> ApiResponse:
        return await self.request('DELETE', url, **kwargs)

    async def send(self, request: ApiRequest) -> ApiResponse:
        """Send a prepared request through the interceptor pipeline."""
        for interceptor in list(self._request_interceptors):
            request = interceptor(request)

        response = await self._dispatch(request)
        if response.ok:
            return response

        error = ApiResponseError(response)
        for interceptor in list(self._error_interceptors):
            try:
                return await interceptor(error)
            except ApiResponseError as e:
                error = e
        raise error

    async def _dispatch(self, request: ApiRequest) -> ApiResponse:
        """Perform the actual HTTP round trip."""
        session = await self._ensure_session()

        logger.debug(f"Making {request.method} request to {request.url}"
                     f"{' (retry)' if request.retried else ''}")

        try:
            async with session.request(
                method=request.method,
                url=request.url,
                json=request.json,
                params=request.params,
                headers=request.headers
            ) as response:
                data = await self._read_body(response)
                return ApiResponse(
                    status=response.status,
                    data=data,
                    request=request,
                    headers=dict(response.headers)
                )
        except (ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Network error on {request.method} {request.url}: {e}")
            raise NetworkError(f"Network request failed: {e}") from e

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        """Decode a JSON body, falling back to text; empty bodies become None."""
        text = await response.text()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text
