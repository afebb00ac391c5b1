"""Data models for Agent Reactor."""

from .containers import (
    DEFAULT_ACCOUNT,
    ContainerConfig,
    ContainerIdentity,
    ContainerStatus,
    ExecResult,
    Mount,
    StartOutcome,
)
from .recovery import RecoveryPolicy
from .sessions import SessionRecord, generate_session_token

__all__ = [
    "DEFAULT_ACCOUNT",
    "ContainerConfig",
    "ContainerIdentity",
    "ContainerStatus",
    "ExecResult",
    "Mount",
    "RecoveryPolicy",
    "SessionRecord",
    "StartOutcome",
    "generate_session_token",
]
