"""Utility modules for Agent Reactor."""

from .logging import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
