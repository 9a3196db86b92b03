"""
Exception hierarchy for the Auth Session client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions for consistent error handling across the session
state machine, the refresh coordinator and the auth factory.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the Auth Session client."""

    # Credential operation errors (1000-1099)
    AUTH_SIGN_IN_FAILED = "AUTH_1001"
    AUTH_REFRESH_FAILED = "AUTH_1002"
    AUTH_GET_USER_FAILED = "AUTH_1003"
    AUTH_SIGN_OUT_FAILED = "AUTH_1004"
    AUTH_NOT_SIGNED_IN = "AUTH_1005"
    AUTH_INVALID_CREDENTIALS_RESULT = "AUTH_1006"

    # Storage errors (3000-3099)
    STORAGE_READ_FAILED = "STORAGE_3001"
    STORAGE_WRITE_FAILED = "STORAGE_3002"
    STORAGE_REMOVE_FAILED = "STORAGE_3003"
    STORAGE_CORRUPTED_RECORD = "STORAGE_3004"

    # Auth factory errors (6000-6099)
    FACTORY_CONSTRUCTION_FAILED = "FACTORY_6001"
    FACTORY_NOT_CONFIGURED = "FACTORY_6002"

    # Configuration errors (8000-8099)
    CONFIG_MISSING_REQUIRED_SETTING = "CONFIG_8003"
    CONFIG_INVALID_VALUE = "CONFIG_8004"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    SIGN_IN_AGAIN = "sign_in_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class AuthSessionError(Exception):
    """
    Base exception class for all Auth Session client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class CredentialOperationError(AuthSessionError):
    """A caller-supplied sign-in, get-user or sign-out operation failed."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_SIGN_IN_FAILED,
                 operation: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if operation:
            context['operation'] = operation

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


class RefreshError(AuthSessionError):
    """The refresh operation failed; the session has been signed out."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_REFRESH_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.SIGN_IN_AGAIN],
            **kwargs
        )


class InvalidTransitionError(AuthSessionError):
    """A state transition was requested from a state that does not allow it."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_NOT_SIGNED_IN, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.SIGN_IN_AGAIN],
            **kwargs
        )


class StorageError(AuthSessionError):
    """Reading or writing the persisted session failed."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
                 key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if key:
            context['key'] = key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.IGNORE],
            context=context,
            **kwargs
        )


class ConstructionError(AuthSessionError):
    """Building the auth manager failed; the next access retries."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.FACTORY_CONSTRUCTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.RETRY],
            **kwargs
        )


class ConfigurationError(AuthSessionError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.CONFIG_INVALID_VALUE,
                 config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', None) or {}
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION, RecoveryAction.CONTACT_ADMIN],
            context=context,
            **kwargs
        )
