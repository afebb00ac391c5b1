"""Docker client utilities for Agent Reactor."""

import docker
from docker import DockerClient
from docker.errors import DockerException

from agent_reactor.config import get_settings
from agent_reactor.utils import get_logger
from agent_reactor.utils.exceptions import DockerDaemonUnreachableError

logger = get_logger(__name__)


class DockerClientManager:
    """Owns one Docker client, validated with a ping when first created."""

    def __init__(self) -> None:
        """Initialize Docker client manager."""
        self._client: DockerClient | None = None
        self.settings = get_settings()

    def _connect(self) -> DockerClient:
        # "auto" negotiates the API version with the daemon
        if self.settings.docker_host:
            return docker.DockerClient(
                base_url=self.settings.docker_host,
                version="auto",
                timeout=self.settings.docker_timeout_s,
            )
        return docker.from_env(version="auto", timeout=self.settings.docker_timeout_s)

    def get_client(self) -> DockerClient:
        """
        Get or create the Docker client.

        Returns:
            DockerClient instance

        Raises:
            DockerDaemonUnreachableError: If the daemon cannot be reached
        """
        if self._client is not None:
            return self._client

        try:
            client = self._connect()
            client.ping()
        except (DockerException, OSError) as e:
            logger.error(
                "Failed to connect to Docker daemon",
                extra={"docker_host": self.settings.docker_host, "error": str(e)},
            )
            raise DockerDaemonUnreachableError(f"Docker daemon is unreachable: {e}") from e

        self._client = client
        logger.debug(
            "Docker daemon connection validated",
            extra={"api_version": client.api.api_version},
        )
        return client

    def close(self) -> None:
        """Close the Docker client connection."""
        if self._client:
            self._client.close()
            self._client = None
            logger.debug("Docker client connection closed")


# Global instance
_docker_manager: DockerClientManager | None = None


def get_docker_client() -> DockerClient:
    """
    Get the shared Docker client, connecting on first use.

    Raises:
        DockerDaemonUnreachableError: If the daemon cannot be reached
    """
    global _docker_manager
    if _docker_manager is None:
        _docker_manager = DockerClientManager()
    return _docker_manager.get_client()


def docker_available() -> bool:
    """Whether the Docker daemon answers a ping."""
    try:
        get_docker_client()
    except DockerDaemonUnreachableError:
        return False
    return True


def close_docker_client() -> None:
    """Close the shared Docker client connection."""
    global _docker_manager
    if _docker_manager:
        _docker_manager.close()
        _docker_manager = None
