"""
Logging configuration for the Auth Session client.

This module provides the audit trail of session transitions (sign-in,
refresh, sign-out, restore, construction) and the formatters used for the
client's log output. Credentials never reach a log line: formatters redact
token-like fields in structured data and bearer values inside messages.
"""

import json
import logging
import logging.handlers
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from session_shared.exceptions import AuthSessionError

PACKAGE_LOGGER = 'session_client'
AUDIT_LOGGER = 'session_client.audit'

REDACTED = '[redacted]'
_SECRET_KEY_MARKERS = ('token', 'authorization', 'password', 'secret')
_BEARER_VALUE = re.compile(r'\b(Bearer)\s+[^\s,;\'"]+', re.IGNORECASE)

_STANDARD_RECORD_FIELDS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {
    'message', 'asctime', 'taskName', 'error_info', 'audit_info',
}


class LogFormat(Enum):
    """Log format enumeration."""
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Types of session events that should be audited."""
    SIGN_IN = "sign_in"
    SIGN_OUT = "sign_out"
    TOKEN_REFRESH = "token_refresh"
    SESSION_RESTORE = "session_restore"
    MANAGER_CONSTRUCTION = "manager_construction"


def redact(value: Any) -> Any:
    """
    Copy of value with credentials masked.

    Mapping entries whose key names a token, password, secret or
    Authorization header are replaced wholesale; bearer values embedded in
    strings are masked in place. Other values pass through unchanged.
    """
    if isinstance(value, dict):
        return {
            key: REDACTED if _is_secret_key(key) and value[key] is not None else redact(value[key])
            for key in value
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    if isinstance(value, str):
        return _BEARER_VALUE.sub(rf'\1 {REDACTED}', value)
    return value


def _is_secret_key(key: Any) -> bool:
    name = str(key).lower()
    return any(marker in name for marker in _SECRET_KEY_MARKERS)


def _error_fields(error: AuthSessionError) -> Dict[str, Any]:
    return {
        'code': error.error_code.value,
        'severity': error.severity.value,
        'context': redact(error.context),
        'recovery_actions': [action.value for action in error.recovery_actions],
    }


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record, with credentials redacted.

    Structured errors (``extra={'error_info': ...}``) and audit records
    (``extra={'audit_info': ...}``) get their own keys; any other extra
    fields are collected under ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': redact(record.getMessage()),
        }

        error = getattr(record, 'error_info', None)
        if isinstance(error, AuthSessionError):
            entry['error'] = _error_fields(error)

        if hasattr(record, 'audit_info'):
            entry['audit'] = redact(record.audit_info)

        extra = {
            key: value for key, value in vars(record).items()
            if key not in _STANDARD_RECORD_FIELDS
        }
        if extra:
            entry['extra'] = redact(extra)

        if record.exc_info:
            entry['exception'] = redact(self.formatException(record.exc_info))

        return json.dumps(entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """Human-readable lines followed by the error code and audit data, if any."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        lines = [redact(super().format(record))]

        error = getattr(record, 'error_info', None)
        if isinstance(error, AuthSessionError):
            fields = _error_fields(error)
            lines.append(f"  error {fields['code']} ({fields['severity']})")
            if fields['context']:
                lines.append(f"  context {json.dumps(fields['context'], default=str, sort_keys=True)}")

        if hasattr(record, 'audit_info'):
            lines.append(f"  audit {json.dumps(redact(record.audit_info), default=str, sort_keys=True)}")

        return '\n'.join(lines)


class AuditLogger:
    """
    Logger for session audit events with structured information.
    """

    def __init__(self, logger_name: str = AUDIT_LOGGER):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an audit event with structured information.

        Args:
            event_type: Type of audit event
            message: Human-readable message
            result: Result of the operation (success, failure, etc.)
            additional_context: Additional context information
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'result': result,
            'context': additional_context or {}
        }
        audit_info = {k: v for k, v in audit_info.items() if v is not None}

        self.logger.info(message, extra={'audit_info': audit_info})

    def log_sign_in(self, success: bool = True, failure_reason: Optional[str] = None):
        """Log sign-in attempts."""
        self.log_event(
            event_type=AuditEventType.SIGN_IN,
            message=f"Sign-in {'successful' if success else 'failed'}",
            result="success" if success else "failure",
            additional_context={'failure_reason': failure_reason} if failure_reason else None
        )

    def log_sign_out(self, reason: str = "requested"):
        """Log sign-out, either requested by the application or forced by a failed refresh."""
        self.log_event(
            event_type=AuditEventType.SIGN_OUT,
            message=f"Signed out ({reason})",
            result="success",
            additional_context={'reason': reason}
        )

    def log_token_refresh(self, success: bool = True, trigger: str = "unauthorized",
                          failure_reason: Optional[str] = None):
        """Log refresh operations."""
        context = {'trigger': trigger}
        if failure_reason:
            context['failure_reason'] = failure_reason

        self.log_event(
            event_type=AuditEventType.TOKEN_REFRESH,
            message=f"Token refresh {'successful' if success else 'failed'} (trigger: {trigger})",
            result="success" if success else "failure",
            additional_context=context
        )

    def log_session_restore(self, source: str, is_signed_in: bool):
        """Log how the initial session state was obtained."""
        self.log_event(
            event_type=AuditEventType.SESSION_RESTORE,
            message=f"Session restored from {source} (signed in: {is_signed_in})",
            result="success",
            additional_context={'source': source, 'is_signed_in': is_signed_in}
        )


def setup_logging(
    level: str = "INFO",
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Attach one handler to the client's package logger.

    Audit records share the handler through the ``session_client.audit``
    child logger. Calling this again replaces the handler instead of adding
    a second one. The root logger is left alone.

    Args:
        level: Level name for the package logger
        log_format: Output format of the handler
        log_file: Rotating log file; stderr when not given
        max_file_size: Size in bytes before the file rotates
        backup_count: Number of rotated files to keep

    Returns:
        The configured package logger
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_file_size, backupCount=backup_count, encoding='utf-8'
        )
    else:
        handler = logging.StreamHandler()

    if log_format == LogFormat.JSON:
        handler.setFormatter(StructuredFormatter())
    elif log_format == LogFormat.DETAILED:
        handler.setFormatter(DetailedFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))

    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False
    return package_logger


def log_structured_error(logger: logging.Logger, error: AuthSessionError, level: int = logging.ERROR):
    """Log a structured error so formatters can render its code and context."""
    logger.log(level, error.message, extra={'error_info': error})
