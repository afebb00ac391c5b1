"""Unit tests for the shared Docker client."""

from unittest.mock import MagicMock, patch

import pytest
from docker.errors import DockerException

from agent_reactor.config import get_settings
from agent_reactor.utils import docker_client
from agent_reactor.utils.docker_client import (
    DockerClientManager,
    close_docker_client,
    docker_available,
    get_docker_client,
)
from agent_reactor.utils.exceptions import DockerDaemonUnreachableError


@pytest.fixture(autouse=True)
def reset_global_client():
    """Drop the module-level client between tests."""
    docker_client._docker_manager = None
    yield
    docker_client._docker_manager = None


def test_client_created_from_env_and_pinged():
    """Test that the client negotiates its API version and is pinged once."""
    mock_client = MagicMock()
    with patch(
        "agent_reactor.utils.docker_client.docker.from_env", return_value=mock_client
    ) as mock_env:
        manager = DockerClientManager()
        assert manager.get_client() is mock_client
        assert manager.get_client() is mock_client

    mock_env.assert_called_once_with(version="auto", timeout=60)
    mock_client.ping.assert_called_once()


def test_explicit_docker_host(monkeypatch):
    """Test that a configured host bypasses environment detection."""
    monkeypatch.setenv("REACTOR_DOCKER_HOST", "tcp://10.0.0.5:2375")
    get_settings.cache_clear()
    with patch("agent_reactor.utils.docker_client.docker.DockerClient") as mock_cls:
        DockerClientManager().get_client()

    mock_cls.assert_called_once_with(base_url="tcp://10.0.0.5:2375", version="auto", timeout=60)


@pytest.mark.parametrize("error", [DockerException("no socket"), ConnectionError("refused")])
def test_unreachable_daemon(error):
    """Test that connection failures surface as DockerDaemonUnreachableError."""
    mock_client = MagicMock()
    mock_client.ping.side_effect = error
    with patch("agent_reactor.utils.docker_client.docker.from_env", return_value=mock_client):
        manager = DockerClientManager()
        with pytest.raises(DockerDaemonUnreachableError):
            manager.get_client()
        # A failed connection is not cached
        assert manager._client is None


def test_global_client_and_close():
    """Test the shared client lifecycle."""
    mock_client = MagicMock()
    with patch("agent_reactor.utils.docker_client.docker.from_env", return_value=mock_client):
        assert get_docker_client() is get_docker_client()
        assert docker_available() is True

    close_docker_client()

    mock_client.close.assert_called_once()
    assert docker_client._docker_manager is None


def test_docker_available_false():
    """Test availability probe when the daemon is down."""
    with patch(
        "agent_reactor.utils.docker_client.docker.from_env",
        side_effect=DockerException("Error while fetching server API version"),
    ):
        assert docker_available() is False
