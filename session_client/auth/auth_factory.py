"""
Auth Factory for the Auth Session client.

Lazily builds the auth manager once per factory. Concurrent first accesses
share one construction; a failed construction is not remembered, so the
next access starts over.
"""

import logging
from typing import Optional

from session_shared.exceptions import ConstructionError, ErrorCode
from session_shared.logging_config import AuditEventType, AuditLogger
from session_client.auth.auth_manager import AuthManager, AuthOptions
from session_client.auth.single_flight import SingleFlight

logger = logging.getLogger(__name__)


class AuthFactory:
    """
    Owns at most one AuthManager.

    Args:
        options: Options used when the manager gets constructed
    """

    def __init__(self, options: Optional[AuthOptions] = None):
        self._options = options
        self._manager: Optional[AuthManager] = None
        self._construction: SingleFlight[AuthManager] = SingleFlight('auth manager construction')
        self.audit = AuditLogger()

    def configure(self, options: Optional[AuthOptions]) -> None:
        """Set the options for the next construction. An existing manager is kept."""
        self._options = options

    @property
    def is_initialized(self) -> bool:
        return self._manager is not None

    @property
    def manager(self) -> Optional[AuthManager]:
        return self._manager

    async def get_auth_manager(self, options: Optional[AuthOptions] = None) -> AuthManager:
        """
        Get the manager, constructing it on first access.

        Args:
            options: Replaces the configured options if no manager exists yet
                and no construction is running

        Raises:
            ConstructionError: If this construction attempt failed; every
                caller waiting on the same attempt receives it
        """
        if self._manager is not None:
            return self._manager

        if options is not None and not self._construction.in_flight:
            self._options = options

        return await self._construction.run(self._construct)

    async def _construct(self) -> AuthManager:
        try:
            manager = await self.create_auth_manager()
        except Exception as e:
            logger.error(f"Auth manager construction failed: {e}")
            self.audit.log_event(
                AuditEventType.MANAGER_CONSTRUCTION,
                "Auth manager construction failed",
                result="failure",
                additional_context={'failure_reason': str(e)}
            )
            if isinstance(e, ConstructionError):
                raise
            raise ConstructionError(f"Failed to construct auth manager: {e}", cause=e) from e

        self._manager = manager
        self.audit.log_event(
            AuditEventType.MANAGER_CONSTRUCTION,
            "Auth manager constructed",
            result="success",
            additional_context={'is_signed_in': manager.get_is_signed_in()}
        )
        return manager

    async def create_auth_manager(self, options: Optional[AuthOptions] = None) -> AuthManager:
        """
        Build a new manager without memoizing it.

        Raises:
            ConstructionError: If no options are given or configured
        """
        options = options or self._options
        if options is None:
            raise ConstructionError(
                "Auth factory has no options configured",
                ErrorCode.FACTORY_NOT_CONFIGURED
            )
        return await AuthManager.create(options)

    async def reset(self) -> None:
        """
        Forget the manager so the next access constructs a new one.

        The forgotten manager is closed. A construction already running is
        not affected.
        """
        manager, self._manager = self._manager, None
        if manager is not None:
            await manager.close()
            logger.info("Auth manager reset")


_default_factory = AuthFactory()


def get_auth_factory() -> AuthFactory:
    """Process-wide default factory."""
    return _default_factory


async def get_auth_manager(options: Optional[AuthOptions] = None) -> AuthManager:
    """Shortcut for ``get_auth_factory().get_auth_manager(options)``."""
    return await _default_factory.get_auth_manager(options)


async def reset_auth_factory() -> None:
    """Tear down the default factory: forget its manager and its options."""
    await _default_factory.reset()
    _default_factory.configure(None)
