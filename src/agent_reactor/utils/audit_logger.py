"""Structured audit logging for container and session lifecycle events."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from agent_reactor.utils.logging import get_logger


class AuditEventType(str, Enum):
    """Types of audit events."""

    # Container events
    CONTAINER_START = "container_start"
    CONTAINER_REUSE = "container_reuse"
    CONTAINER_STOP = "container_stop"
    CONTAINER_REMOVE = "container_remove"
    CONTAINER_UNHEALTHY = "container_unhealthy"
    CONTAINER_REAP = "container_reap"

    # Image events
    IMAGE_BUILD = "image_build"

    # Recovery events
    OPERATION_FAILED = "operation_failed"

    # Session events
    SESSION_CREATE = "session_create"
    SESSION_RECOVER = "session_recover"
    SESSION_CLEANUP = "session_cleanup"


class AuditLogger:
    """Structured audit logger for tracking lifecycle operations."""

    def __init__(self):
        """Initialize the audit logger."""
        self._logger = get_logger("audit")
        # Audit events are emitted regardless of the root level
        self._logger.setLevel(logging.INFO)

    def log_event(
        self,
        event_type: AuditEventType,
        container_id: Optional[str] = None,
        container_name: Optional[str] = None,
        account: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of event being logged
            container_id: Container ID if relevant
            container_name: Deterministic container name if relevant
            account: Account the event belongs to
            details: Additional event-specific details
            error: Final error message when the event records a failure
        """
        sanitized_details = self._sanitize_details(details or {})

        event = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
            "outcome": "failure" if error else "success",
        }

        if container_id:
            event["container_id"] = container_id
        if container_name:
            event["container_name"] = container_name
        if account:
            event["account"] = account
        if sanitized_details:
            event["details"] = sanitized_details
        if error:
            event["error"] = error

        self._logger.info("audit_event", extra=event)

    def _sanitize_details(self, details: dict[str, Any]) -> dict[str, Any]:
        """
        Sanitize sensitive information from event details.

        Args:
            details: Raw event details

        Returns:
            Sanitized details with sensitive fields redacted
        """
        sensitive_keys = {
            "password",
            "token",
            "secret",
            "key",
            "auth",
            "credentials",
        }

        sanitized = {}
        for key, value in details.items():
            if any(sensitive_word in key.lower() for sensitive_word in sensitive_keys):
                sanitized[key] = "***REDACTED***"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_details(value)
            elif isinstance(value, list):
                sanitized[key] = [
                    self._sanitize_details(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                sanitized[key] = value

        return sanitized


# Global audit logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """
    Get the global audit logger instance.

    Returns:
        AuditLogger instance
    """
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
