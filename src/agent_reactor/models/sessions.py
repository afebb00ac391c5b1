"""Persisted session record model."""

import secrets
from datetime import datetime, timezone

from pydantic import BaseModel, Field


def generate_session_token() -> str:
    """Generate a new opaque 16-hex-character session token."""
    return secrets.token_hex(8)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecord(BaseModel):
    """Maps one (account, project) pair to its container and session token."""

    account: str
    project_path: str
    project_hash: str
    container_name: str
    container_id: str
    session_token: str = Field(default_factory=generate_session_token)
    created_at: datetime = Field(default_factory=_utcnow)
    last_seen: datetime = Field(default_factory=_utcnow)

    def touch(self) -> "SessionRecord":
        """Return a copy with ``last_seen`` set to now."""
        return self.model_copy(update={"last_seen": _utcnow()})

    @property
    def display_token(self) -> str:
        """Shortened token safe for log output."""
        return self.session_token[:8]
