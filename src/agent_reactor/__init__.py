"""Agent Reactor - sandboxed coding-agent container lifecycle orchestration."""

__version__ = "0.1.0"
