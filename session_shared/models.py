"""
Core data models for the Auth Session client.

This module defines the data structures shared by the session state machine,
the storage backends and the auth factory: the session snapshot, the
credentials returned by sign-in/refresh operations and the storage key layout.
"""

from collections.abc import Mapping
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class StorageKeys:
    """Names of the three persisted session slots."""
    access_token: str = '@authsession/access'
    refresh_token: str = '@authsession/refresh'
    user: str = '@authsession/user'

    def __post_init__(self):
        keys = (self.access_token, self.refresh_token, self.user)
        if not all(keys):
            raise ValueError("Storage keys cannot be empty")
        if len(set(keys)) != len(keys):
            raise ValueError("Storage keys must be distinct")

    @classmethod
    def with_namespace(cls, namespace: str) -> 'StorageKeys':
        """Build keys under a custom namespace, e.g. ``@myapp/auth``."""
        namespace = namespace.rstrip('/')
        return cls(
            access_token=f"{namespace}/access",
            refresh_token=f"{namespace}/refresh",
            user=f"{namespace}/user",
        )

    def all(self) -> tuple:
        return (self.access_token, self.refresh_token, self.user)


DEFAULT_STORAGE_KEYS = StorageKeys()


@dataclass(frozen=True)
class SessionState:
    """
    Snapshot of the authentication session.

    A session is either signed in, with access token, refresh token and user
    all present, or signed out, with all three absent. Partial states are
    rejected at construction time.
    """
    is_signed_in: bool = False
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user: Any = None

    def __post_init__(self):
        credentials = (self.access_token, self.refresh_token, self.user)
        if self.is_signed_in:
            if any(value is None for value in credentials) or not self.access_token or not self.refresh_token:
                raise ValueError("Signed-in state requires access token, refresh token and user")
        elif any(value is not None for value in credentials):
            raise ValueError("Signed-out state cannot carry credentials")

    @classmethod
    def signed_in(cls, access_token: str, refresh_token: str, user: Any) -> 'SessionState':
        return cls(True, access_token, refresh_token, user)

    @classmethod
    def signed_out(cls) -> 'SessionState':
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuthResult(BaseModel):
    """Token pair returned by the sign-in and refresh operations."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    access_token: str = Field(alias='accessToken', min_length=1)
    refresh_token: str = Field(alias='refreshToken', min_length=1)

    @classmethod
    def coerce(cls, value: Any) -> 'AuthResult':
        """
        Build an AuthResult from whatever a credential operation returned.

        Accepts an AuthResult, a mapping with snake_case or camelCase keys,
        an HTTP response object exposing the payload as ``.data``, or any
        object with ``access_token``/``refresh_token`` attributes.

        Raises:
            pydantic.ValidationError: If no token pair can be extracted
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls.model_validate(dict(value))
        if hasattr(value, 'data') and not hasattr(value, 'access_token'):
            return cls.coerce(value.data)
        return cls.model_validate(value, from_attributes=True)
