"""
Tests for the structured exception hierarchy and the logging helpers.
"""

import json
import logging
from unittest.mock import Mock

import pytest

from session_shared.exceptions import (
    AuthSessionError, CredentialOperationError, ErrorCode, ErrorSeverity, RecoveryAction,
    RefreshError, StorageError
)
from session_shared.logging_config import (
    REDACTED, AuditEventType, AuditLogger, DetailedFormatter, LogFormat, StructuredFormatter,
    log_structured_error, redact, setup_logging
)


def make_record(**extra):
    record = logging.LogRecord(
        name='session_client.auth', level=logging.WARNING, pathname=__file__, lineno=1,
        msg='Token refresh failed', args=(), exc_info=None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestExceptions:
    """Test structured error information."""

    def test_to_dict(self):
        cause = RuntimeError("connection reset")
        error = CredentialOperationError(
            "sign_in failed", operation='sign_in', cause=cause, context={'attempt': 1}
        )

        data = error.to_dict()

        assert data['error']['code'] == ErrorCode.AUTH_SIGN_IN_FAILED.value
        assert data['error']['context']['attempt'] == 1
        assert data['error']['context']['operation'] == 'sign_in'
        assert data['error']['cause'] == {'type': 'RuntimeError', 'message': 'connection reset'}
        assert RecoveryAction.RETRY.value in data['error']['recovery_actions']

    def test_refresh_error_suggests_sign_in(self):
        error = RefreshError("Token refresh failed")

        assert error.severity == ErrorSeverity.HIGH
        assert error.recovery_actions == [RecoveryAction.SIGN_IN_AGAIN]

    def test_storage_error_key_in_context(self):
        error = StorageError("Failed to store", ErrorCode.STORAGE_WRITE_FAILED, key='@authsession/user')

        assert error.context == {'key': '@authsession/user'}
        assert isinstance(error, AuthSessionError)


class TestLogging:
    """Test formatters and the audit logger."""

    def test_structured_formatter_includes_error(self):
        error = RefreshError("Token refresh failed", context={'trigger': 'unauthorized'})

        entry = json.loads(StructuredFormatter().format(make_record(error_info=error)))

        assert entry['message'] == 'Token refresh failed'
        assert entry['error']['code'] == ErrorCode.AUTH_REFRESH_FAILED.value
        assert entry['error']['context'] == {'trigger': 'unauthorized'}

    def test_detailed_formatter_includes_audit(self):
        formatted = DetailedFormatter().format(make_record(audit_info={'event_type': 'sign_out'}))

        assert 'Token refresh failed' in formatted
        assert 'sign_out' in formatted

    def test_audit_event(self):
        audit = AuditLogger()
        audit.logger = Mock()

        audit.log_token_refresh(success=False, trigger='unauthorized', failure_reason='revoked')

        message = audit.logger.info.call_args.args[0]
        audit_info = audit.logger.info.call_args.kwargs['extra']['audit_info']
        assert 'failed' in message
        assert audit_info['event_type'] == AuditEventType.TOKEN_REFRESH.value
        assert audit_info['result'] == 'failure'
        assert audit_info['context'] == {'trigger': 'unauthorized', 'failure_reason': 'revoked'}

    def test_log_structured_error(self):
        logger = Mock()
        error = StorageError("Failed to store")

        log_structured_error(logger, error, level=logging.WARNING)

        logger.log.assert_called_once_with(logging.WARNING, 'Failed to store', extra={'error_info': error})


class TestRedaction:
    """Test that credentials never reach formatted output."""

    def test_redact_nested_structures(self):
        value = {
            'access_token': 'A1',
            'headers': {'Authorization': 'Bearer A1', 'Accept': 'application/json'},
            'attempts': [{'refreshToken': 'R1'}],
            'user': None,
            'accessToken': None,
        }

        assert redact(value) == {
            'access_token': REDACTED,
            'headers': {'Authorization': REDACTED, 'Accept': 'application/json'},
            'attempts': [{'refreshToken': REDACTED}],
            'user': None,
            'accessToken': None,
        }

    def test_redact_bearer_values_in_text(self):
        assert redact("retrying with Bearer eyJhbGciOi.payload.sig") == f"retrying with Bearer {REDACTED}"
        assert redact("no credentials here") == "no credentials here"

    def test_structured_formatter_redacts_extra_fields(self):
        record = make_record(refresh_token='R1', request_id='abc')
        record.msg = 'Sent Authorization: Bearer A1'

        entry = json.loads(StructuredFormatter().format(record))

        assert entry['extra'] == {'refresh_token': REDACTED, 'request_id': 'abc'}
        assert 'A1' not in entry['message']
        assert 'R1' not in json.dumps(entry)

    def test_detailed_formatter_redacts_error_context(self):
        error = RefreshError("Token refresh failed", context={'token': 'R1', 'trigger': 'explicit'})

        formatted = DetailedFormatter().format(make_record(error_info=error))

        assert ErrorCode.AUTH_REFRESH_FAILED.value in formatted
        assert 'explicit' in formatted
        assert 'R1' not in formatted


class TestSetupLogging:
    """Test handler installation on the package logger."""

    @pytest.fixture
    def package_logger(self):
        package_logger = logging.getLogger('session_client')
        yield package_logger
        for handler in list(package_logger.handlers):
            package_logger.removeHandler(handler)
            handler.close()
        package_logger.propagate = True
        package_logger.setLevel(logging.NOTSET)

    def test_repeated_setup_replaces_handler(self, package_logger, tmp_path):
        log_file = tmp_path / 'logs' / 'client.log'

        setup_logging(level='DEBUG', log_format=LogFormat.JSON)
        configured = setup_logging(level='DEBUG', log_format=LogFormat.JSON, log_file=str(log_file))

        assert configured is package_logger
        assert len(package_logger.handlers) == 1
        assert isinstance(package_logger.handlers[0].formatter, StructuredFormatter)
        assert package_logger.level == logging.DEBUG

    def test_audit_records_reach_package_handler(self, package_logger, tmp_path):
        log_file = tmp_path / 'client.log'
        setup_logging(log_format=LogFormat.JSON, log_file=str(log_file))

        AuditLogger().log_sign_out(reason='requested')
        package_logger.handlers[0].flush()

        entry = json.loads(log_file.read_text().splitlines()[-1])
        assert entry['logger'] == 'session_client.audit'
        assert entry['audit']['event_type'] == AuditEventType.SIGN_OUT.value
