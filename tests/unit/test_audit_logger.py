"""Unit tests for audit logger."""

from unittest.mock import MagicMock, patch

import pytest

from agent_reactor.utils.audit_logger import AuditEventType, AuditLogger, get_audit_logger


@pytest.fixture
def mock_logger():
    """Mock logger for testing."""
    mock = MagicMock()
    with patch("agent_reactor.utils.audit_logger.get_logger", return_value=mock):
        yield mock


def test_audit_logger_singleton():
    """Test that get_audit_logger returns singleton instance."""
    logger1 = get_audit_logger()
    logger2 = get_audit_logger()
    assert logger1 is logger2


def test_log_basic_event(mock_logger):
    """Test logging a basic event."""
    logger = AuditLogger()

    logger.log_event(
        event_type=AuditEventType.CONTAINER_START,
        container_id="c" * 64,
        container_name="v2-claude-reactor-base-amd64-abcd1234-default",
        account="default",
    )

    call_args = mock_logger.info.call_args
    assert call_args[0][0] == "audit_event"
    extra = call_args[1]["extra"]
    assert extra["event_type"] == "container_start"
    assert extra["container_id"] == "c" * 64
    assert extra["container_name"] == "v2-claude-reactor-base-amd64-abcd1234-default"
    assert extra["account"] == "default"
    assert "timestamp" in extra
    assert extra["outcome"] == "success"
    assert "details" not in extra
    assert "error" not in extra


def test_optional_fields_omitted(mock_logger):
    """Test that absent identifiers are left out of the event."""
    logger = AuditLogger()

    logger.log_event(event_type=AuditEventType.IMAGE_BUILD, details={"image": "base"})

    extra = mock_logger.info.call_args[1]["extra"]
    assert "container_id" not in extra
    assert "account" not in extra
    assert extra["details"] == {"image": "base"}


def test_session_token_is_redacted(mock_logger):
    """Test that session tokens never reach the audit log."""
    logger = AuditLogger()

    logger.log_event(
        event_type=AuditEventType.SESSION_CREATE,
        details={"strategy": "created", "session_token": "0123456789abcdef"},
    )

    details = mock_logger.info.call_args[1]["extra"]["details"]
    assert details["strategy"] == "created"
    assert details["session_token"] == "***REDACTED***"


def test_nested_details_are_sanitized(mock_logger):
    """Test redaction inside nested dictionaries and lists."""
    logger = AuditLogger()

    logger.log_event(
        event_type=AuditEventType.CONTAINER_START,
        details={
            "environment": {"API_KEY": "abc", "TERM": "xterm"},
            "mounts": [{"source": "/home/u/.ssh", "auth_socket": "/tmp/agent"}, "plain"],
        },
    )

    details = mock_logger.info.call_args[1]["extra"]["details"]
    assert details["environment"] == {"API_KEY": "***REDACTED***", "TERM": "xterm"}
    assert details["mounts"][0] == {"source": "/home/u/.ssh", "auth_socket": "***REDACTED***"}
    assert details["mounts"][1] == "plain"


def test_event_type_values():
    """Test that event types serialize to stable names."""
    assert AuditEventType.SESSION_RECOVER.value == "session_recover"
    assert AuditEventType.CONTAINER_REAP.value == "container_reap"
    assert AuditEventType.SESSION_CLEANUP == "session_cleanup"


def test_failure_event(mock_logger):
    """Test that an error marks the event as a failure."""
    logger = AuditLogger()

    logger.log_event(
        event_type=AuditEventType.OPERATION_FAILED,
        details={"operation": "start", "reason": "exhausted"},
        error="connection refused",
    )

    extra = mock_logger.info.call_args[1]["extra"]
    assert extra["outcome"] == "failure"
    assert extra["error"] == "connection refused"
    assert extra["details"]["reason"] == "exhausted"
