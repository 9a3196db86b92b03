"""
Core interfaces for the Auth Session client.

This module defines the abstract interfaces that embedders implement
to plug their own collaborators into the session machinery.
"""

from abc import ABC, abstractmethod
from typing import Optional


class IStorage(ABC):
    """
    Key-value persistence for the session (the storage port).

    Values are strings; the session state machine serializes the user
    itself. Implementations raise StorageError on backend failures.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None when absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store value under key, overwriting any previous value."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove key. Removing an absent key is not an error."""
        pass
