"""Deterministic naming of images and containers."""

import hashlib
import os
import platform
import re
from typing import Callable, Optional

from agent_reactor.config import get_settings
from agent_reactor.models.containers import DEFAULT_ACCOUNT, ContainerIdentity
from agent_reactor.utils import get_logger
from agent_reactor.utils.exceptions import InvalidAccountError, UnsupportedArchitectureError

logger = get_logger(__name__)

PROJECT_HASH_LENGTH = 8

# Account names become part of container names and host file names
ACCOUNT_PATTERN = re.compile(r"[a-zA-Z0-9][a-zA-Z0-9_.-]*")

# Raw machine strings -> normalized architecture names
_ARCHITECTURES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "i386",
    "i686": "i386",
    "x86": "i386",
    "armv7l": "arm",
    "armv7": "arm",
    "arm": "arm",
}

_PLATFORMS = {
    "amd64": "linux/amd64",
    "arm64": "linux/arm64",
    "i386": "linux/386",
    "arm": "linux/arm/v7",
}


class ArchitectureDetector:
    """Probes the host for its CPU architecture."""

    def __init__(self, machine: Optional[Callable[[], str]] = None) -> None:
        """
        Initialize architecture detector.

        Args:
            machine: Callable returning the raw machine string
        """
        self._machine = machine or platform.machine

    def host_architecture(self) -> str:
        """
        Normalized host architecture.

        Raises:
            UnsupportedArchitectureError: If the machine type is not supported
        """
        raw = self._machine()
        arch = _ARCHITECTURES.get(raw.lower())
        if arch is None:
            raise UnsupportedArchitectureError(raw)
        return arch

    def docker_platform(self) -> str:
        """Docker platform string for the host architecture."""
        return _PLATFORMS[self.host_architecture()]


def project_hash(path: str) -> str:
    """
    Short digest identifying a project directory.

    The path is made absolute and canonical before hashing so that the same
    directory always yields the same value.

    Args:
        path: Project directory

    Returns:
        First 8 lowercase hex characters of the SHA-256 of the canonical path
    """
    canonical = os.path.realpath(os.path.abspath(os.path.expanduser(path)))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:PROJECT_HASH_LENGTH]


def validate_account(account: Optional[str]) -> str:
    """
    Normalize and check an account name.

    Args:
        account: Account name, ``None`` or empty for the default account

    Returns:
        The account name to use

    Raises:
        InvalidAccountError: If the name is not a valid container name component
    """
    if not account:
        return DEFAULT_ACCOUNT
    if not ACCOUNT_PATTERN.fullmatch(account):
        raise InvalidAccountError(account)
    return account


class IdentityResolver:
    """Derives image and container names for a project directory."""

    def __init__(
        self,
        project_path: str,
        detector: Optional[ArchitectureDetector] = None,
        prefix: Optional[str] = None,
    ) -> None:
        """
        Initialize identity resolver.

        Args:
            project_path: Project directory the names are bound to
            detector: Host architecture probe
            prefix: Name prefix (defaults to the configured container prefix)
        """
        self.project_path = os.path.realpath(os.path.abspath(os.path.expanduser(project_path)))
        self.detector = detector or ArchitectureDetector()
        self.prefix = prefix or get_settings().container_prefix

    def project_hash(self) -> str:
        """Hash of the bound project directory."""
        return project_hash(self.project_path)

    def resolve_identity(self, variant: str, account: Optional[str] = None) -> ContainerIdentity:
        """
        Compose the identity for a variant and account.

        Args:
            variant: Image variant name
            account: Account name, ``None`` or empty for the default account

        Returns:
            ContainerIdentity for this project

        Raises:
            InvalidAccountError: If the account name is unusable
        """
        identity = ContainerIdentity(
            prefix=self.prefix,
            variant=variant,
            architecture=self.detector.host_architecture(),
            project_hash=self.project_hash(),
            account=validate_account(account),
        )
        logger.debug(
            "Resolved container identity",
            extra={
                "container_name": identity.name,
                "variant": variant,
                "account": identity.account,
                "project_hash": identity.project_hash,
            },
        )
        return identity

    def resolve_container_name(self, variant: str, account: Optional[str] = None) -> str:
        """Container name for a variant and account."""
        return self.resolve_identity(variant, account).name

    def resolve_image_name(self, variant: str) -> str:
        """Image name for a variant on this host architecture."""
        return f"{self.prefix}-{variant}-{self.detector.host_architecture()}"

    def docker_platform(self) -> str:
        """Docker platform string for image builds."""
        return self.detector.docker_platform()
