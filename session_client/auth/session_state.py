"""
Session state machine for the Auth Session client.

Owns the current session (signed in with tokens and user, or signed out),
applies transitions, notifies subscribers and mirrors every transition to the
storage port. The in-memory state is updated and subscribers are notified
before any storage write is issued; storage is best-effort durability and a
failed write never rolls back or blocks a transition.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, List, Optional, Type

from pydantic import BaseModel, ValidationError

from session_shared.exceptions import CredentialOperationError, ErrorCode, InvalidTransitionError
from session_shared.interfaces import IStorage
from session_shared.logging_config import log_structured_error
from session_shared.models import AuthResult, DEFAULT_STORAGE_KEYS, SessionState, StorageKeys

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState], None]


class SessionStateMachine:
    """
    Two-state machine: signed out, signed in.

    Reads are synchronous and never suspend. Transitions are coroutines
    because they persist to storage after updating memory.
    """

    def __init__(
        self,
        storage: IStorage,
        storage_keys: StorageKeys = DEFAULT_STORAGE_KEYS,
        user_model: Optional[Type[BaseModel]] = None
    ):
        self._storage = storage
        self._keys = storage_keys
        self._user_model = user_model

        self._state = SessionState.signed_out()
        self._listeners: List[StateListener] = []

        # Serializes storage writes so storage converges to the latest state
        self._persist_lock = asyncio.Lock()

    # Synchronous reads

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_signed_in(self) -> bool:
        return self._state.is_signed_in

    @property
    def access_token(self) -> Optional[str]:
        return self._state.access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self._state.refresh_token

    @property
    def user(self) -> Any:
        return self._state.user

    # Subscriptions

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """
        Add a listener called synchronously with the new state after each transition.

        Returns:
            Callable removing the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        """Notify listeners of the current state."""
        state = self._state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Error in session state listener: {e}")

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        self._notify()

    # Initialization

    def seed(self, state: SessionState) -> None:
        """Install an initial state without touching storage."""
        self._set_state(state)

    async def load(self) -> SessionState:
        """
        Restore the session from storage.

        A complete record yields a signed-in state. A missing, partial or
        unreadable record yields a signed-out state; partial records are
        cleared from storage.
        """
        try:
            access_token = await self._storage.get(self._keys.access_token)
            refresh_token = await self._storage.get(self._keys.refresh_token)
            raw_user = await self._storage.get(self._keys.user)
        except Exception as e:
            logger.warning(f"Failed to read persisted session, starting signed out: {e}")
            self.seed(SessionState.signed_out())
            return self._state

        if access_token and refresh_token and raw_user is not None:
            try:
                user = self._deserialize_user(raw_user)
            except (ValueError, ValidationError) as e:
                logger.warning(f"Persisted user cannot be decoded, starting signed out: {e}")
            else:
                if user is not None:
                    self.seed(SessionState.signed_in(access_token, refresh_token, user))
                    return self._state

        self.seed(SessionState.signed_out())
        if access_token or refresh_token or raw_user is not None:
            logger.info("Discarding incomplete persisted session")
            await self._persist()
        return self._state

    # Transitions

    async def apply_sign_in(self, result: AuthResult, user: Any) -> SessionState:
        """
        Transition to signed in, overwriting any current session.

        Args:
            result: Token pair from the sign-in operation
            user: User returned by the get-user operation

        Returns:
            The new state
        """
        self._set_state(SessionState.signed_in(result.access_token, result.refresh_token, user))
        state = self._state
        await self._persist()
        return state

    async def apply_refresh(self, result: AuthResult) -> SessionState:
        """
        Replace the token pair of a signed-in session; the user is kept.

        Raises:
            InvalidTransitionError: If the session is signed out
        """
        if not self._state.is_signed_in:
            raise InvalidTransitionError("Cannot apply refreshed tokens while signed out")

        self._set_state(SessionState.signed_in(
            result.access_token, result.refresh_token, self._state.user
        ))
        state = self._state
        await self._persist()
        return state

    async def apply_sign_out(
        self,
        sign_out_callback: Optional[Callable[[], Awaitable[None]]] = None
    ) -> SessionState:
        """
        Transition to signed out. Idempotent.

        The sign-out callback runs first, only while signed in, and its
        failure is logged without blocking the local clear.
        """
        if sign_out_callback is not None and self._state.is_signed_in:
            try:
                await sign_out_callback()
            except Exception as e:
                error = CredentialOperationError(
                    f"Sign-out callback failed, clearing session anyway: {e}",
                    ErrorCode.AUTH_SIGN_OUT_FAILED,
                    operation='sign_out',
                    cause=e
                )
                log_structured_error(logger, error, level=logging.WARNING)

        if self._state.is_signed_in:
            self._set_state(SessionState.signed_out())
        state = self._state
        await self._persist()
        return state

    # Persistence

    async def _persist(self) -> None:
        """Mirror the current in-memory state to storage, slot by slot."""
        async with self._persist_lock:
            state = self._state
            if state.is_signed_in:
                try:
                    serialized_user = self._serialize_user(state.user)
                except (TypeError, ValueError) as e:
                    logger.error(f"User cannot be serialized, session will not persist: {e}")
                    return
                operations = [
                    (self._keys.access_token, state.access_token),
                    (self._keys.refresh_token, state.refresh_token),
                    (self._keys.user, serialized_user),
                ]
            else:
                operations = [(key, None) for key in self._keys.all()]

            for key, value in operations:
                try:
                    if value is None:
                        await self._storage.remove(key)
                    else:
                        await self._storage.set(key, value)
                except Exception as e:
                    logger.warning(f"Failed to persist session slot {key}: {e}")

    def _serialize_user(self, user: Any) -> str:
        if isinstance(user, BaseModel):
            return user.model_dump_json()
        return json.dumps(user)

    def _deserialize_user(self, raw_user: str) -> Any:
        if self._user_model is not None:
            return self._user_model.model_validate_json(raw_user)
        return json.loads(raw_user)
