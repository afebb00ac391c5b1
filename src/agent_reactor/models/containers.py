"""Container identity, mount and configuration models."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

DEFAULT_ACCOUNT = "default"

# Label applied to every container this tool creates
MANAGED_LABEL = "com.claude-reactor.managed"
ACCOUNT_LABEL = "com.claude-reactor.account"
PROJECT_LABEL = "com.claude-reactor.project-hash"
VARIANT_LABEL = "com.claude-reactor.variant"


@dataclass(frozen=True)
class ContainerIdentity:
    """Deterministic identity of a container for one (variant, project, account)."""

    prefix: str
    variant: str
    architecture: str
    project_hash: str
    account: str = DEFAULT_ACCOUNT

    @property
    def name(self) -> str:
        """Composed container name."""
        account = self.account or DEFAULT_ACCOUNT
        return "-".join(
            [self.prefix, self.variant, self.architecture, self.project_hash, account]
        )

    @property
    def image_name(self) -> str:
        """Name of the variant image this container runs."""
        return f"{self.prefix}-{self.variant}-{self.architecture}"

    @property
    def labels(self) -> Dict[str, str]:
        """Docker labels describing this identity."""
        return {
            MANAGED_LABEL: "true",
            ACCOUNT_LABEL: self.account or DEFAULT_ACCOUNT,
            PROJECT_LABEL: self.project_hash,
            VARIANT_LABEL: self.variant,
        }


@dataclass
class Mount:
    """A single bind mount from the host into the container."""

    source: str
    target: str
    kind: str = "bind"
    read_only: bool = False

    def describe(self) -> str:
        """Human-readable one-line summary."""
        suffix = " (read-only)" if self.read_only else ""
        return f"{self.source} -> {self.target}{suffix}"


@dataclass
class ContainerConfig:
    """
    Full startup specification for one orchestration call.

    ``mounts`` is ``None`` when the default mount set should be built and an
    empty list when the caller explicitly wants no mounts.
    """

    identity: ContainerIdentity
    image: str
    project_path: str
    command: List[str] = field(default_factory=list)
    environment: Dict[str, str] = field(default_factory=dict)
    mounts: Optional[List[Mount]] = None
    interactive: bool = True
    tty: bool = True
    run_upgrade: bool = False
    host_docker: bool = False

    @property
    def name(self) -> str:
        """Container name derived from the identity."""
        return self.identity.name

    @property
    def account(self) -> str:
        """Account the container belongs to."""
        return self.identity.account or DEFAULT_ACCOUNT


@dataclass
class ContainerStatus:
    """Engine view of a container looked up by name."""

    name: str
    exists: bool = False
    running: bool = False
    id: Optional[str] = None
    image: Optional[str] = None
    state: Optional[str] = None
    started_at: Optional[str] = None


@dataclass
class ExecResult:
    """Result of a non-interactive command executed in a container."""

    exit_code: int
    output: str = ""

    @property
    def ok(self) -> bool:
        """Whether the command exited successfully."""
        return self.exit_code == 0


@dataclass
class StartOutcome:
    """What start_or_recover produced and how."""

    container_id: str
    container_name: str
    strategy: str
    session_token: Optional[str] = None

    @property
    def recovered(self) -> bool:
        """Whether an existing container was reused rather than created."""
        return self.strategy not in ("created", "ephemeral")
