"""Integration tests for DockerContainerManager with real Docker."""

import pytest

from agent_reactor.managers.container_manager import DockerContainerManager
from agent_reactor.managers.identity_resolver import project_hash
from agent_reactor.managers.recovery_manager import RecoveryManager
from agent_reactor.managers.session_manager import SessionManager
from agent_reactor.models.containers import ContainerConfig, ContainerIdentity, Mount
from agent_reactor.repositories.sessions import SessionRepository
from agent_reactor.utils.docker_client import get_docker_client
from agent_reactor.utils.exceptions import ContainerNameConflictError

pytestmark = pytest.mark.integration

TEST_IMAGE = "alpine:latest"


@pytest.fixture
def engine(require_docker):
    """Docker engine with the test image available."""
    client = get_docker_client()
    try:
        client.images.get(TEST_IMAGE)
    except Exception:
        try:
            client.images.pull(TEST_IMAGE)
        except Exception:
            pytest.skip(f"{TEST_IMAGE} not available")
    return DockerContainerManager(client)


@pytest.fixture
def config(project):
    """Long-running alpine container bound to the temporary project."""
    identity = ContainerIdentity(
        prefix="agent-reactor-it",
        variant="base",
        architecture="amd64",
        project_hash=project_hash(str(project)),
    )
    return ContainerConfig(
        identity=identity,
        image=TEST_IMAGE,
        project_path=str(project),
        command=["sleep", "300"],
        mounts=[Mount(source=str(project), target="/app")],
        interactive=False,
        tty=False,
    )


@pytest.mark.asyncio
async def test_create_exec_stop_remove(engine, config):
    """Test the basic container lifecycle."""
    container_id = await engine.create_and_start(config)

    try:
        assert await engine.is_running(config.name) is True

        result = await engine.exec_once(container_id, ["echo", "health-check"], timeout_s=10)
        assert result.ok
        assert "health-check" in result.output

        status = await engine.status(config.name)
        assert status.id == container_id
        assert status.started_at

        await engine.stop(container_id)
        assert await engine.is_running(config.name) is False

        # Stopping twice is not an error
        await engine.stop(container_id)
    finally:
        await engine.remove(container_id, force=True)

    assert (await engine.status(config.name)).exists is False
    assert await engine.inspect(container_id) is None


@pytest.mark.asyncio
async def test_duplicate_name_conflicts(engine, config):
    """Test that a second create with the same name reports a conflict."""
    container_id = await engine.create_and_start(config)

    try:
        with pytest.raises(ContainerNameConflictError):
            await engine.create_and_start(config)
    finally:
        await engine.remove(container_id, force=True)


@pytest.mark.asyncio
async def test_session_reattach(engine, config, tmp_path):
    """Test that a second start_or_recover reuses the recorded container."""
    recovery = RecoveryManager(engine)
    sessions = SessionManager(engine, recovery, SessionRepository(tmp_path / "sessions"))

    first = await sessions.start_or_recover(config)
    try:
        second = await sessions.start_or_recover(config)

        assert first.strategy == "created"
        assert second.strategy == "session"
        assert second.container_id == first.container_id
        assert second.session_token == first.session_token
    finally:
        await sessions.cleanup(config.account, config.project_path)

    assert (await engine.status(config.name)).exists is False
