"""Configuration module for Agent Reactor."""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
