"""Bind mount assembly and validation for agent containers."""

import os
import posixpath
import stat
from pathlib import Path
from typing import List, Optional

from docker.types import Mount as DockerMount

from agent_reactor.config import get_settings
from agent_reactor.managers.identity_resolver import validate_account
from agent_reactor.models.containers import DEFAULT_ACCOUNT, Mount
from agent_reactor.utils import get_logger
from agent_reactor.utils.exceptions import MountValidationError

logger = get_logger(__name__)

# Engine control sockets are exempt from existence and open checks
ENGINE_SOCKETS = frozenset(
    {
        "/var/run/docker.sock",
        "/run/docker.sock",
        "/run/podman/podman.sock",
    }
)

HOST_DOCKER_SOCKET = "/var/run/docker.sock"
SSH_AGENT_TARGET = "/ssh-agent.sock"


class MountManager:
    """Builds the bind mount set for a project and account."""

    def __init__(self, project_path: str, home: Optional[str] = None) -> None:
        """
        Initialize mount manager.

        Args:
            project_path: Absolute project directory mounted into the container
            home: Host home directory (defaults to the current user's)
        """
        self.settings = get_settings()
        self.project_path = os.path.abspath(project_path)
        self.home = Path(home).expanduser() if home else Path.home()

    def _container_path(self, *parts: str) -> str:
        return posixpath.join(self.settings.container_home, *parts)

    def account_config_paths(self, account: Optional[str]) -> tuple[Path, Path]:
        """
        Host config file and directory for an account.

        The default account uses the user's primary locations; any other
        account gets an isolated pair under the config root.

        Returns:
            Tuple of (config file, config directory)

        Raises:
            InvalidAccountError: If the account name is unusable
        """
        account = validate_account(account)
        if account == DEFAULT_ACCOUNT:
            return self.home / ".claude.json", self.home / ".claude"

        root = self._config_root()
        return root / f".{account}-claude.json", root / f".{account}-claude"

    def _config_root(self) -> Path:
        configured = Path(self.settings.config_root)
        if configured.is_absolute():
            return configured
        # "~/..." resolves against the injected home so tests stay hermetic
        parts = configured.parts
        if parts and parts[0] == "~":
            return self.home.joinpath(*parts[1:])
        return self.home / configured

    def build_default_mounts(self, account: Optional[str]) -> List[Mount]:
        """
        Create the standard mount set.

        Includes the project tree, the account's agent config, and tool
        configuration that is present on the host. The account config
        directory is created when missing.

        Args:
            account: Account name, ``None`` or "default" for the primary account

        Returns:
            List of mounts
        """
        mounts: List[Mount] = []

        target = self.settings.project_mount_target
        if self.project_path == target:
            # Avoid mounting /app onto itself
            target = "/workspace"
        mounts.append(Mount(source=self.project_path, target=target))
        logger.debug("Added project mount", extra={"source": self.project_path, "target": target})

        for name in (".kube", ".gitconfig"):
            source = self.home / name
            if source.exists():
                mounts.append(
                    Mount(source=str(source), target=self._container_path(name), read_only=True)
                )
                logger.debug("Added tool config mount", extra={"source": str(source)})

        mounts.extend(self._account_mounts(account))
        return mounts

    def _account_mounts(self, account: Optional[str]) -> List[Mount]:
        mounts: List[Mount] = []
        config_file, config_dir = self.account_config_paths(account)

        if config_file.is_file():
            mounts.append(
                Mount(source=str(config_file), target=self._container_path(".claude.json"))
            )
            logger.debug("Added account config file mount", extra={"account": account})

        if not config_dir.exists():
            try:
                config_dir.mkdir(parents=True, exist_ok=True)
                logger.debug(
                    "Created missing account config directory",
                    extra={"path": str(config_dir)},
                )
            except OSError as e:
                logger.warning(
                    "Failed to create account config directory",
                    extra={"path": str(config_dir), "error": str(e)},
                )
                return mounts

        mounts.append(Mount(source=str(config_dir), target=self._container_path(".claude")))
        return mounts

    def append_user_mounts(self, mounts: List[Mount], paths: List[str]) -> List[Mount]:
        """
        Add user-specified directories under the user mount namespace.

        Paths are tilde-expanded and made absolute; missing paths are skipped
        with a warning. Each mount is placed at ``<user_mount_root>/<basename>``.

        Args:
            mounts: Existing mounts
            paths: Host paths requested by the user

        Returns:
            New list with the user mounts appended
        """
        result = list(mounts)
        for raw in paths:
            expanded = self._expand(raw)
            if not os.path.exists(expanded):
                logger.warning("Mount path does not exist, skipping", extra={"path": expanded})
                continue

            basename = os.path.basename(expanded.rstrip(os.sep)) or "root"
            target = posixpath.join(self.settings.user_mount_root, basename)
            result.append(Mount(source=expanded, target=target))
            logger.debug("Added user mount", extra={"source": expanded, "target": target})

        return result

    def _expand(self, path: str) -> str:
        if path == "~":
            path = str(self.home)
        elif path.startswith("~/"):
            path = str(self.home / path[2:])
        if not os.path.isabs(path):
            path = os.path.join(self.project_path, path)
        return os.path.normpath(path)

    def build_ssh_mounts(self, agent_socket: Optional[str]) -> List[Mount]:
        """
        SSH agent socket and read-only SSH client configuration.

        Args:
            agent_socket: Host SSH agent socket, ``None`` to skip it

        Returns:
            List of mounts for SSH materials present on the host
        """
        mounts: List[Mount] = []
        if agent_socket:
            mounts.append(Mount(source=agent_socket, target=SSH_AGENT_TARGET, read_only=True))

        ssh_dir = self.home / ".ssh"
        for name in ("config", "known_hosts"):
            source = ssh_dir / name
            if source.is_file():
                mounts.append(
                    Mount(
                        source=str(source),
                        target=self._container_path(".ssh", name),
                        read_only=True,
                    )
                )
        return mounts

    def build_host_docker_mount(self) -> Mount:
        """Mount of the host Docker socket for docker-in-docker workflows."""
        return Mount(source=HOST_DOCKER_SOCKET, target=HOST_DOCKER_SOCKET)

    def validate(self, mounts: List[Mount]) -> None:
        """
        Check that every mount source exists and is readable.

        Engine control sockets are not checked at all; other socket files are
        only checked for presence because they cannot be opened for reading.

        Raises:
            MountValidationError: Naming every source that failed
        """
        problems: List[str] = []

        for mount in mounts:
            if mount.source in ENGINE_SOCKETS:
                continue

            try:
                info = os.stat(mount.source)
            except FileNotFoundError:
                problems.append(f"mount source does not exist: {mount.source}")
                continue
            except OSError as e:
                problems.append(f"mount source is not accessible: {mount.source} ({e})")
                continue

            if stat.S_ISSOCK(info.st_mode):
                continue

            if stat.S_ISDIR(info.st_mode):
                readable = os.access(mount.source, os.R_OK | os.X_OK)
                if not readable:
                    problems.append(f"mount source is not accessible: {mount.source}")
                continue

            try:
                with open(mount.source, "rb"):
                    pass
            except OSError as e:
                problems.append(f"mount source is not accessible: {mount.source} ({e})")

        if problems:
            raise MountValidationError(problems)

    def to_docker_mounts(self, mounts: List[Mount]) -> List[DockerMount]:
        """Convert mounts to docker SDK mount specs."""
        return [
            DockerMount(
                target=mount.target,
                source=mount.source,
                type=mount.kind,
                read_only=mount.read_only,
            )
            for mount in mounts
        ]

    def summarize(self, mounts: List[Mount]) -> List[str]:
        """One human-readable line per mount."""
        return [mount.describe() for mount in mounts]
