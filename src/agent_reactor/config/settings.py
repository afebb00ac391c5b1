"""Settings and configuration management for Agent Reactor."""

from functools import lru_cache
from pathlib import Path
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="REACTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Naming configuration
    container_prefix: str = Field(
        default="v2-claude-reactor",
        description="Prefix shared by every image and container this tool manages",
    )

    default_variant: str = Field(
        default="base",
        description="Variant used when the caller does not name one",
    )

    # Docker configuration
    docker_host: str | None = Field(
        default=None,
        description="Docker daemon host URL (defaults to Docker's standard detection)",
    )

    docker_timeout_s: int = Field(
        default=60,
        description="Timeout in seconds for a single Docker API request",
    )

    build_context: str = Field(
        default=".",
        description="Directory used as the Docker build context for variant images",
    )

    dockerfile: str = Field(
        default="Dockerfile",
        description="Dockerfile path relative to the build context",
    )

    stop_timeout_s: int = Field(
        default=30,
        description="Grace period in seconds before a stopping container is killed",
    )

    # Host paths
    state_dir: str = Field(
        default="~/.claude-reactor/sessions",
        description="Directory holding persisted session records",
    )

    config_root: str = Field(
        default="~/.claude-reactor",
        description="Root directory for isolated per-account configuration",
    )

    # In-container paths
    container_home: str = Field(
        default="/home/claude",
        description="Home directory of the agent user inside the container",
    )

    project_mount_target: str = Field(
        default="/app",
        description="In-container path the project directory is mounted at",
    )

    user_mount_root: str = Field(
        default="/mnt",
        description="Namespace under which user-specified extra mounts are placed",
    )

    # Recovery configuration
    max_attempts: int = Field(
        default=3,
        description="Maximum attempts for start, build and stop operations",
    )

    initial_delay_s: float = Field(
        default=1.0,
        description="Delay in seconds before the first retry",
    )

    max_delay_s: float = Field(
        default=10.0,
        description="Upper bound in seconds for any single retry delay",
    )

    backoff_multiplier: float = Field(
        default=2.0,
        description="Multiplier applied to the retry delay after each attempt",
    )

    health_check_attempts: int = Field(
        default=5,
        description="Number of liveness polls after a container starts",
    )

    health_check_delay_s: float = Field(
        default=1.0,
        description="Delay in seconds between liveness polls",
    )

    liveness_probe_timeout_s: float = Field(
        default=5.0,
        description="Deadline in seconds for probing a recorded session container",
    )

    # Idle cleanup configuration
    idle_cleanup_enabled: bool = Field(
        default=False,
        description="Run the background reaper for idle containers",
    )

    idle_timeout_s: int = Field(
        default=3600,
        description="Inactivity in seconds after which a container is reaped",
    )

    cleanup_interval_s: int = Field(
        default=60,
        description="Interval in seconds between idle container scans",
    )

    # Post-start provisioning
    upgrade_command: str = Field(
        default="claude upgrade",
        description="Command started in the background after a fresh container starts",
    )

    attach_command: str = Field(
        default="claude",
        description="Command run when attaching to a container without an explicit one",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: Literal["json", "text"] = Field(
        default="text",
        description="Log format (json or text)",
    )

    @property
    def state_path(self) -> Path:
        """Expanded session state directory."""
        return Path(self.state_dir).expanduser()

    @property
    def upgrade_command_list(self) -> List[str]:
        """Split the upgrade command into argv form."""
        return self.upgrade_command.split()

    @property
    def attach_command_list(self) -> List[str]:
        """Split the attach command into argv form."""
        return self.attach_command.split()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
