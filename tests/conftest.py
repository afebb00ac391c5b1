"""Test configuration and fixtures."""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from agent_reactor.config import get_settings
from agent_reactor.managers.recovery_manager import RecoveryManager
from agent_reactor.models.containers import ContainerConfig, ContainerStatus, ExecResult
from agent_reactor.models.recovery import RecoveryPolicy
from agent_reactor.utils.docker_client import docker_available as is_docker_available
from agent_reactor.utils.exceptions import ContainerNameConflictError, ContainerNotFoundError


class FakeEngine:
    """In-memory container engine that records every call."""

    def __init__(self) -> None:
        self.containers: Dict[str, Dict[str, Any]] = {}
        self.images: set = set()
        self.calls: List[tuple] = []
        self.create_errors: List[Exception] = []
        self.start_errors: List[Exception] = []
        self.starts_healthy = True
        self.exec_exit_code = 0
        self.exec_commands: List[List[str]] = []
        self.detached_commands: List[List[str]] = []
        self._ids = itertools.count(1)

    def _by_id(self, container_id: str) -> Optional[Dict[str, Any]]:
        for container in self.containers.values():
            if container["id"] == container_id:
                return container
        return None

    def add_container(
        self, name: str, running: bool, started_at: Optional[str] = None
    ) -> str:
        container_id = f"{next(self._ids):064x}"
        self.containers[name] = {
            "id": container_id,
            "name": name,
            "running": running,
            "started_at": started_at,
        }
        return container_id

    def _status(self, container: Dict[str, Any]) -> ContainerStatus:
        return ContainerStatus(
            name=container["name"],
            exists=True,
            running=container["running"],
            id=container["id"],
            state="running" if container["running"] else "exited",
            started_at=container["started_at"],
        )

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    async def create_and_start(self, config: ContainerConfig) -> str:
        self.calls.append(("create_and_start", config.name))
        if self.create_errors:
            raise self.create_errors.pop(0)
        if config.name in self.containers:
            raise ContainerNameConflictError(config.name)
        return self.add_container(config.name, running=self.starts_healthy)

    async def start(self, container_id: str) -> None:
        self.calls.append(("start", container_id))
        if self.start_errors:
            raise self.start_errors.pop(0)
        container = self._by_id(container_id)
        if container is None:
            raise ContainerNotFoundError(container_id)
        container["running"] = True

    async def stop(self, container_id: str) -> None:
        self.calls.append(("stop", container_id))
        container = self._by_id(container_id)
        if container is not None:
            container["running"] = False

    async def remove(self, container_id: str, force: bool = False) -> None:
        self.calls.append(("remove", container_id, force))
        container = self._by_id(container_id)
        if container is not None:
            del self.containers[container["name"]]

    async def is_running(self, name: str) -> bool:
        self.calls.append(("is_running", name))
        container = self.containers.get(name)
        return bool(container and container["running"])

    async def status(self, name: str) -> ContainerStatus:
        self.calls.append(("status", name))
        container = self.containers.get(name)
        if container is None:
            return ContainerStatus(name=name)
        return self._status(container)

    async def inspect(self, container_id: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("inspect", container_id))
        container = self._by_id(container_id)
        if container is None:
            return None
        return {"Id": container_id, "State": {"Running": container["running"]}}

    async def exec_once(
        self, container_id: str, cmd: List[str], timeout_s: Optional[float] = None
    ) -> ExecResult:
        self.calls.append(("exec_once", container_id))
        if self._by_id(container_id) is None:
            raise ContainerNotFoundError(container_id)
        self.exec_commands.append(list(cmd))
        return ExecResult(exit_code=self.exec_exit_code, output="health-check\n")

    async def exec_interactive(self, container_id: str, cmd: List[str]) -> int:
        self.calls.append(("exec_interactive", container_id))
        return 0

    async def exec_detached(self, container_id: str, cmd: List[str]) -> None:
        self.calls.append(("exec_detached", container_id))
        self.detached_commands.append(list(cmd))

    async def list_by_prefix(self, prefix: str) -> List[ContainerStatus]:
        self.calls.append(("list_by_prefix", prefix))
        return [
            self._status(container)
            for name, container in self.containers.items()
            if name.startswith(prefix)
        ]

    async def build_image(self, image: str, variant: str, platform: str) -> None:
        self.calls.append(("build_image", image, variant, platform))
        self.images.add(image)

    async def image_exists(self, image: str) -> bool:
        self.calls.append(("image_exists", image))
        return image in self.images


async def no_sleep(delay: float) -> None:
    """Sleep replacement that returns immediately."""
    return None


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point every host path setting into a temporary directory."""
    monkeypatch.setenv("REACTOR_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("REACTOR_CONFIG_ROOT", str(tmp_path / "home" / ".claude-reactor"))
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def home(tmp_path):
    """Temporary host home directory."""
    path = tmp_path / "home"
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture
def project(tmp_path):
    """Temporary project directory."""
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def fake_engine():
    """In-memory container engine."""
    return FakeEngine()


@pytest.fixture
def recovery(fake_engine):
    """RecoveryManager over the fake engine that never actually sleeps."""
    return RecoveryManager(fake_engine, RecoveryPolicy(), sleep=no_sleep)


@pytest.fixture(scope="session")
def docker_available():
    """Check if Docker daemon is available."""
    return is_docker_available()


@pytest.fixture
def require_docker(docker_available):
    """Skip test if Docker is not available."""
    if not docker_available:
        pytest.skip("Docker daemon not available - skipping integration test")
