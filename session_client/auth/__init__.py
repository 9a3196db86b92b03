"""
Authentication package for the Auth Session client.

This package contains the session state machine, the refresh coordinator,
the storage backends and the lazily constructed auth manager.
"""

from session_client.auth.auth_factory import (
    AuthFactory, get_auth_factory, get_auth_manager, reset_auth_factory
)
from session_client.auth.auth_manager import AuthManager, AuthOptions
from session_client.auth.token_storage import MemoryStorage, SecureStorage

__all__ = [
    'AuthFactory',
    'AuthManager',
    'AuthOptions',
    'MemoryStorage',
    'SecureStorage',
    'get_auth_factory',
    'get_auth_manager',
    'reset_auth_factory',
]
