"""
Auth Manager for the Auth Session client.

This module ties the session state machine, the refresh coordinator and the
HTTP client together behind one object. Credential operations are supplied
by the embedder through AuthOptions; each receives the manager so it can use
``manager.http`` or read the current tokens.
"""

import logging
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from session_shared.exceptions import (
    ConfigurationError, CredentialOperationError, ErrorCode, RefreshError
)
from session_shared.interfaces import IStorage
from session_shared.logging_config import AuditLogger
from session_shared.models import AuthResult, SessionState, StorageKeys
from session_client.api_client import ApiResponse, AuthApiClient
from session_client.config import ClientConfiguration
from session_client.auth.interceptor import bind_auth_interceptors
from session_client.auth.refresh_coordinator import RefreshCoordinator
from session_client.auth.session_state import SessionStateMachine, StateListener
from session_client.auth.tokens import parse_token_expiration

logger = logging.getLogger(__name__)

# Token pair being signed in, visible to the get_user operation of the same sign-in
_signing_in: ContextVar[Optional[Tuple['AuthManager', AuthResult]]] = ContextVar(
    'signing_in', default=None
)


@dataclass
class AuthOptions:
    """
    Configuration of one auth manager.

    The three credential operations are required. ``sign_in`` is called as
    ``sign_in(params, manager)``, the others as ``operation(manager)``; all
    of them are coroutine functions except ``build_authorization_header``.
    Collaborators left as None are built from ``config`` (or a default
    ClientConfiguration).
    """
    sign_in: Callable[[Any, 'AuthManager'], Awaitable[Any]]
    refresh_token: Callable[['AuthManager'], Awaitable[Any]]
    get_user: Callable[['AuthManager'], Awaitable[Any]]
    sign_out: Optional[Callable[['AuthManager'], Awaitable[None]]] = None
    build_authorization_header: Optional[Callable[['AuthManager'], Optional[str]]] = None
    http_client: Optional[AuthApiClient] = None
    storage: Optional[IStorage] = None
    storage_keys: Optional[StorageKeys] = None
    refresh_token_on_init: bool = False
    initial_state: Optional[SessionState] = None
    user_model: Optional[Type[BaseModel]] = None
    config: Optional[ClientConfiguration] = None

    def __post_init__(self):
        for name in ('sign_in', 'refresh_token', 'get_user'):
            if not callable(getattr(self, name)):
                raise ConfigurationError(
                    f"Auth option '{name}' must be callable",
                    ErrorCode.CONFIG_MISSING_REQUIRED_SETTING,
                    config_key=name
                )
        for name in ('sign_out', 'build_authorization_header'):
            value = getattr(self, name)
            if value is not None and not callable(value):
                raise ConfigurationError(
                    f"Auth option '{name}' must be callable",
                    ErrorCode.CONFIG_INVALID_VALUE,
                    config_key=name
                )
        if self.initial_state is not None and not isinstance(self.initial_state, SessionState):
            raise ConfigurationError(
                "initial_state must be a SessionState",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='initial_state'
            )


def _payload(value: Any) -> Any:
    """Unwrap an HTTP response returned by a credential operation."""
    if isinstance(value, ApiResponse):
        return value.data
    return value


class AuthManager:
    """
    Authentication session of one application.

    Use ``await AuthManager.create(options)`` or the auth factory; the
    constructor alone does not restore the session or bind the HTTP client.
    """

    def __init__(self, options: AuthOptions):
        self._options = options

        config = options.config
        if options.http_client is None or options.storage is None or options.storage_keys is None:
            config = config or ClientConfiguration()

        self._owns_http = options.http_client is None
        self._http = options.http_client if options.http_client is not None else config.create_http_client()
        storage = options.storage if options.storage is not None else config.create_storage()
        storage_keys = options.storage_keys if options.storage_keys is not None else config.get_storage_keys()

        self._session = SessionStateMachine(storage, storage_keys, options.user_model)
        self._coordinator = RefreshCoordinator(
            self._session,
            self._http,
            refresh_operation=lambda: options.refresh_token(self),
            sign_out_operation=self._sign_out_operation(),
            header_builder=self._build_authorization_header
        )
        self._unbind = None
        self.audit = AuditLogger()

    @classmethod
    async def create(cls, options: AuthOptions) -> 'AuthManager':
        """
        Build a ready manager.

        The session is seeded from ``initial_state`` when given, else restored
        from storage. With ``refresh_token_on_init`` a signed-in session is
        refreshed before returning; a failed refresh leaves the manager signed
        out but does not fail creation.
        """
        manager = cls(options)
        try:
            await manager._initialize()
        except Exception:
            await manager.close()
            raise
        return manager

    async def _initialize(self) -> None:
        if self._options.initial_state is not None:
            self._session.seed(self._options.initial_state)
            source = 'initial_state'
        else:
            await self._session.load()
            source = 'storage'
        self.audit.log_session_restore(source, self._session.is_signed_in)

        self._unbind = bind_auth_interceptors(self._http, self._coordinator)

        if self._options.refresh_token_on_init and self._session.is_signed_in:
            try:
                await self._coordinator.refresh(trigger='init')
            except RefreshError as e:
                logger.warning(f"Initial token refresh failed, starting signed out: {e}")

        logger.info(f"Auth manager ready (signed in: {self._session.is_signed_in})")

    def _sign_out_operation(self) -> Optional[Callable[[], Awaitable[None]]]:
        if self._options.sign_out is None:
            return None
        return lambda: self._options.sign_out(self)

    def _build_authorization_header(self) -> Optional[str]:
        if self._options.build_authorization_header is not None:
            return self._options.build_authorization_header(self)
        token = self.get_access_token()
        return f"Bearer {token}" if token else None

    # Operations

    async def sign_in(self, params: Any = None) -> SessionState:
        """
        Sign in with the configured sign-in operation, then fetch the user.

        Each operation is called exactly once. While ``get_user`` runs, the
        new access token is used for its requests; the session itself only
        changes once both operations succeeded.

        Raises:
            CredentialOperationError: If either operation failed or returned
                unusable data. The session is left unchanged.
        """
        try:
            result = AuthResult.coerce(_payload(await self._options.sign_in(params, self)))
        except Exception as e:
            self.audit.log_sign_in(success=False, failure_reason=str(e))
            raise self._operation_error('sign_in', ErrorCode.AUTH_SIGN_IN_FAILED, e) from e

        pending = _signing_in.set((self, result))
        try:
            user = self._build_user(_payload(await self._options.get_user(self)))
        except Exception as e:
            self.audit.log_sign_in(success=False, failure_reason=str(e))
            raise self._operation_error('get_user', ErrorCode.AUTH_GET_USER_FAILED, e) from e
        finally:
            _signing_in.reset(pending)

        state = await self._session.apply_sign_in(result, user)
        self.audit.log_sign_in(success=True)
        return state

    async def sign_out(self) -> SessionState:
        """Sign out. Idempotent; the sign-out operation's failure never blocks it."""
        was_signed_in = self._session.is_signed_in
        state = await self._session.apply_sign_out(self._sign_out_operation())
        if was_signed_in:
            self.audit.log_sign_out(reason="requested")
        return state

    async def refresh(self) -> SessionState:
        """Explicitly refresh the tokens, sharing any refresh already in flight."""
        return await self._coordinator.refresh(trigger='explicit')

    def _build_user(self, payload: Any) -> Any:
        if payload is None:
            raise ValueError("get_user returned no user")
        if self._options.user_model is not None and not isinstance(payload, self._options.user_model):
            return self._options.user_model.model_validate(payload)
        return payload

    @staticmethod
    def _operation_error(operation: str, error_code: ErrorCode, error: Exception) -> CredentialOperationError:
        if isinstance(error, ValidationError):
            error_code = ErrorCode.AUTH_INVALID_CREDENTIALS_RESULT
        return CredentialOperationError(
            f"{operation} failed: {error}",
            error_code,
            operation=operation,
            cause=error
        )

    # Reads

    def get_access_token(self) -> Optional[str]:
        pending = _signing_in.get()
        if pending is not None and pending[0] is self:
            return pending[1].access_token
        return self._session.access_token

    def get_refresh_token(self) -> Optional[str]:
        pending = _signing_in.get()
        if pending is not None and pending[0] is self:
            return pending[1].refresh_token
        return self._session.refresh_token

    def get_user(self) -> Any:
        return self._session.user

    def get_is_signed_in(self) -> bool:
        return self._session.is_signed_in

    def get_state(self) -> SessionState:
        return self._session.state

    def get_access_token_expires_at(self) -> Optional[datetime]:
        """Expiry of the current access token, read from its unverified ``exp`` claim."""
        return parse_token_expiration(self.get_access_token())

    def get_authorization_header(self) -> Optional[str]:
        return self._coordinator.get_authorization_header()

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Subscribe to session changes; returns the unsubscribe callable."""
        return self._session.subscribe(listener)

    @property
    def http(self) -> AuthApiClient:
        """The HTTP client bound to this session."""
        return self._http

    async def close(self) -> None:
        """Detach from the HTTP client and close it when the manager created it."""
        if self._unbind is not None:
            self._unbind()
            self._unbind = None
        if self._owns_http:
            await self._http.close()
