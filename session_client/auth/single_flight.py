"""
Single-flight execution of asynchronous operations.

At most one instance of an operation runs at a time; callers arriving while
it is in flight join it and receive its outcome, success or failure. The
memo is cleared as soon as the operation settles, so the next call after a
settlement starts a fresh run. Used for token refresh and for the lazy
construction of the auth manager.
"""

import asyncio
import logging
from contextvars import ContextVar
from typing import Awaitable, Callable, Generic, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Flights whose operation the current context runs in; child tasks inherit it
_running_flights: ContextVar[Tuple['SingleFlight', ...]] = ContextVar('running_flights', default=())


class SingleFlight(Generic[T]):
    """
    Shares one in-flight asynchronous operation between concurrent callers.
    """

    def __init__(self, name: str):
        self.name = name
        self._task: Optional['asyncio.Task[T]'] = None

    @property
    def in_flight(self) -> bool:
        """Whether an operation is currently running."""
        return self._task is not None

    def owns_current_task(self) -> bool:
        """
        Whether the caller is running inside the in-flight operation itself.

        Also true for tasks the operation spawned (asyncio.gather,
        asyncio.create_task, asyncio.wait_for), which inherit its context.
        """
        return self._task is not None and self in _running_flights.get()

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run operation, or join the run already in flight.

        The operation factory is only invoked when nothing is in flight.
        Waiters are shielded: cancelling one caller does not cancel the
        shared operation for the others.

        Args:
            operation: Zero-argument coroutine function to execute

        Returns:
            Result of the shared operation

        Raises:
            Whatever the shared operation raised
        """
        task = self._task
        if task is None:
            task = asyncio.ensure_future(self._execute(operation))
            task.add_done_callback(self._consume_outcome)
            self._task = task
            logger.debug(f"{self.name}: started")
        else:
            logger.debug(f"{self.name}: joining operation in flight")

        return await asyncio.shield(task)

    @staticmethod
    def _consume_outcome(task: 'asyncio.Task') -> None:
        # Every waiter may have been cancelled; mark the exception as retrieved
        if not task.cancelled():
            task.exception()

    async def _execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        # The task runs in its own copy of the context, so this never leaks to callers
        _running_flights.set(_running_flights.get() + (self,))
        try:
            return await operation()
        finally:
            # Cleared before any waiter resumes
            self._task = None
            logger.debug(f"{self.name}: settled")
