"""
Refresh coordination for the Auth Session client.

Turns the unauthorized -> refresh -> retry sequence into one shared operation:
concurrent requests that fail with 401 while a refresh is running wait for
that refresh instead of starting their own, and all of them see the same
outcome. A failed refresh ends in a clean signed-out session, and a refresh
that settles after a sign-in or sign-out replaced its session leaves the
newer session untouched.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

from session_shared.exceptions import ErrorCode, RefreshError
from session_shared.logging_config import AuditLogger, log_structured_error
from session_shared.models import AuthResult, SessionState
from session_client.api_client import ApiResponse, ApiResponseError, AuthApiClient
from session_client.auth.session_state import SessionStateMachine
from session_client.auth.single_flight import SingleFlight

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = 'Authorization'


class RefreshCoordinator:
    """
    Coordinates token refresh for one session.

    Args:
        session: The session state machine the tokens belong to
        http_client: Client used to reissue requests after a refresh
        refresh_operation: Zero-argument coroutine function returning a token pair
        sign_out_operation: Optional coroutine function run before a forced sign-out
        header_builder: Optional synchronous override for the Authorization value
    """

    def __init__(
        self,
        session: SessionStateMachine,
        http_client: AuthApiClient,
        refresh_operation: Callable[[], Awaitable[Any]],
        sign_out_operation: Optional[Callable[[], Awaitable[None]]] = None,
        header_builder: Optional[Callable[[], Optional[str]]] = None
    ):
        self._session = session
        self._http = http_client
        self._refresh_operation = refresh_operation
        self._sign_out_operation = sign_out_operation
        self._header_builder = header_builder

        self._flight: SingleFlight[SessionState] = SingleFlight('token refresh')
        self.audit = AuditLogger()

    def get_authorization_header(self) -> Optional[str]:
        """
        Value for the Authorization header of outgoing requests.

        Never triggers a refresh.
        """
        if self._header_builder is not None:
            return self._header_builder()

        token = self._session.access_token
        if token:
            return f"Bearer {token}"
        return None

    async def refresh(self, trigger: str = "explicit") -> SessionState:
        """
        Refresh the token pair, or join the refresh already in flight.

        Returns:
            The session state after the refresh

        Raises:
            RefreshError: If signed out, or if the refresh operation failed. In
                the latter case the session has been signed out, unless it
                was replaced while the refresh was running.
        """
        if not self._session.is_signed_in:
            raise RefreshError("Cannot refresh tokens while signed out", ErrorCode.AUTH_NOT_SIGNED_IN)

        refreshed_from = self._session.state
        return await self._flight.run(lambda: self._perform_refresh(trigger, refreshed_from))

    async def _perform_refresh(self, trigger: str, refreshed_from: SessionState) -> SessionState:
        logger.info(f"Refreshing access token (trigger: {trigger})")

        try:
            result = AuthResult.coerce(await self._refresh_operation())
        except Exception as e:
            error = RefreshError(
                f"Token refresh failed: {e}",
                context={'trigger': trigger},
                cause=e,
                user_message="Your session has expired. Please sign in again."
            )
            self.audit.log_token_refresh(success=False, trigger=trigger, failure_reason=str(e))

            if self._is_superseded(refreshed_from):
                logger.info("Session changed during the failed refresh, leaving it in place")
                raise error from e

            log_structured_error(logger, error, level=logging.WARNING)
            await self._session.apply_sign_out(self._sign_out_operation)
            self.audit.log_sign_out(reason="refresh_failed")
            raise error from e

        if self._is_superseded(refreshed_from):
            logger.info("Session changed during refresh, discarding refreshed tokens")
            self.audit.log_token_refresh(success=False, trigger=trigger, failure_reason="superseded")
            if not self._session.is_signed_in:
                raise RefreshError(
                    "Signed out while the token refresh was running",
                    ErrorCode.AUTH_NOT_SIGNED_IN,
                    context={'trigger': trigger}
                )
            return self._session.state

        # No suspension between the check above and the in-memory update
        state = await self._session.apply_refresh(result)
        self.audit.log_token_refresh(success=True, trigger=trigger)
        return state

    def _is_superseded(self, refreshed_from: SessionState) -> bool:
        """Whether a sign-in or sign-out replaced the session the refresh started from."""
        return self._session.state is not refreshed_from

    async def handle_unauthorized(self, error: ApiResponseError) -> ApiResponse:
        """
        Recover a request that was answered with 401.

        Joins or starts a refresh, then reissues the request once with the
        new Authorization header.

        Args:
            error: The unauthorized response error of the original request

        Returns:
            Response of the reissued request

        Raises:
            ApiResponseError: The original error when signed out, when the
                refresh failed (chained to the RefreshError) or when raised
                from within the refresh operation itself; or the error of the
                reissued request
        """
        if not self._session.is_signed_in:
            raise error

        if self._flight.owns_current_task():
            # A request made by the refresh or sign-out operation was rejected
            raise error

        if not self._flight.in_flight and self._is_stale(error):
            logger.debug("Tokens rotated since the request was sent, reissuing")
        else:
            try:
                await self.refresh(trigger="unauthorized")
            except RefreshError as e:
                raise error from e

        return await self._http.send(error.request.copy(retried=True))

    def _is_stale(self, error: ApiResponseError) -> bool:
        """Whether the failed request carried an Authorization value that is no longer current."""
        sent = error.request.headers.get(AUTHORIZATION_HEADER)
        current = self.get_authorization_header()
        return sent is not None and current is not None and sent != current
