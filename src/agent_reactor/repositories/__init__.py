"""Repository layer for persisted state."""

from .sessions import SessionRepository

__all__ = ["SessionRepository"]
