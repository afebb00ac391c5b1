"""Container engine capability interface and its Docker implementation."""

import asyncio
import os
import select
import signal
import socket
import sys
import termios
import tty
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from docker import DockerClient
from docker.errors import APIError, BuildError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container as DockerContainer

from agent_reactor.config import get_settings
from agent_reactor.managers.mount_manager import MountManager
from agent_reactor.models.containers import ContainerConfig, ContainerStatus, ExecResult
from agent_reactor.utils import get_logger
from agent_reactor.utils.docker_client import get_docker_client
from agent_reactor.utils.exceptions import (
    ContainerNameConflictError,
    ContainerNotFoundError,
    EngineError,
    ImageNotFoundError,
)

logger = get_logger(__name__)

_STOP_ACCEPTABLE = ("not running", "already stopped", "no such container")


def short_id(container_id: Optional[str]) -> str:
    """First 12 characters of a container ID for log output."""
    return (container_id or "")[:12]


@runtime_checkable
class ContainerEngine(Protocol):
    """Operations the orchestration core needs from a container engine."""

    async def create_and_start(self, config: ContainerConfig) -> str: ...

    async def start(self, container_id: str) -> None: ...

    async def stop(self, container_id: str) -> None: ...

    async def remove(self, container_id: str, force: bool = False) -> None: ...

    async def is_running(self, name: str) -> bool: ...

    async def status(self, name: str) -> ContainerStatus: ...

    async def inspect(self, container_id: str) -> Optional[Dict[str, Any]]: ...

    async def exec_once(
        self, container_id: str, cmd: List[str], timeout_s: Optional[float] = None
    ) -> ExecResult: ...

    async def exec_interactive(self, container_id: str, cmd: List[str]) -> int: ...

    async def exec_detached(self, container_id: str, cmd: List[str]) -> None: ...

    async def list_by_prefix(self, prefix: str) -> List[ContainerStatus]: ...

    async def build_image(self, image: str, variant: str, platform: str) -> None: ...

    async def image_exists(self, image: str) -> bool: ...


def _is_conflict(error: APIError) -> bool:
    return error.status_code == 409 or "already in use" in str(error).lower()


class DockerContainerManager:
    """Thin Docker implementation of :class:`ContainerEngine`.

    Every SDK call runs in a worker thread so each operation is an await
    point the caller can cancel. Nothing here retries; resilience lives in
    the recovery manager.
    """

    def __init__(self, docker_client: Optional[DockerClient] = None) -> None:
        """
        Initialize container manager.

        Args:
            docker_client: Docker client (defaults to the shared client)
        """
        self.settings = get_settings()
        self.docker_client: DockerClient = docker_client or get_docker_client()

    async def _get(self, container_id: str) -> DockerContainer:
        try:
            return await asyncio.to_thread(self.docker_client.containers.get, container_id)
        except NotFound:
            raise ContainerNotFoundError(container_id)
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"failed to look up container {short_id(container_id)}: {e}", e)

    async def create_and_start(self, config: ContainerConfig) -> str:
        """
        Create and start a container for a configuration.

        Args:
            config: Container configuration

        Returns:
            ID of the started container

        Raises:
            ContainerNameConflictError: If a container with the name already exists
            ImageNotFoundError: If the image is missing
            MountValidationError: If a mount source is unusable
            EngineError: If Docker operations fail
        """
        mount_manager = MountManager(config.project_path)
        mounts = config.mounts
        if mounts is None:
            logger.debug(
                "No mounts specified, using defaults", extra={"container_name": config.name}
            )
            mounts = mount_manager.build_default_mounts(config.account)
        mount_manager.validate(mounts)

        for line in mount_manager.summarize(mounts):
            logger.debug("Container mount", extra={"container_name": config.name, "mount": line})

        try:
            docker_container: DockerContainer = await asyncio.to_thread(
                self.docker_client.containers.create,
                image=config.image,
                name=config.name,
                command=config.command or None,
                environment=dict(config.environment),
                mounts=mount_manager.to_docker_mounts(mounts),
                labels=config.identity.labels,
                tty=config.tty,
                stdin_open=config.interactive,
                detach=True,
                network_mode="bridge",
            )
        except ImageNotFound as e:
            raise ImageNotFoundError(config.image, e)
        except APIError as e:
            if _is_conflict(e):
                raise ContainerNameConflictError(config.name, e)
            logger.error(
                "Docker API error creating container",
                extra={"container_name": config.name, "error": str(e)},
            )
            raise EngineError(f"failed to create container {config.name}: {e}", e)
        except (DockerException, OSError) as e:
            raise EngineError(f"failed to create container {config.name}: {e}", e)

        try:
            await asyncio.to_thread(docker_container.start)
        except (APIError, DockerException, OSError) as e:
            logger.error(
                "Docker API error starting container",
                extra={"container_name": config.name, "error": str(e)},
            )
            try:
                await asyncio.to_thread(docker_container.remove, force=True)
            except (APIError, DockerException, OSError) as cleanup_error:
                logger.warning(
                    "Failed to remove container that did not start",
                    extra={"container_name": config.name, "error": str(cleanup_error)},
                )
            raise EngineError(f"failed to start container {config.name}: {e}", e)

        logger.info(
            "Docker container started",
            extra={"container_name": config.name, "docker_id": short_id(docker_container.id)},
        )
        return docker_container.id

    async def start(self, container_id: str) -> None:
        """
        Start an existing stopped container.

        Raises:
            ContainerNotFoundError: If container not found
            EngineError: If Docker operations fail
        """
        docker_container = await self._get(container_id)
        try:
            await asyncio.to_thread(docker_container.start)
        except NotFound:
            raise ContainerNotFoundError(container_id)
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"failed to start container {short_id(container_id)}: {e}", e)
        logger.info("Docker container started", extra={"docker_id": short_id(container_id)})

    async def stop(self, container_id: str) -> None:
        """
        Stop a container gracefully.

        A container that is already stopped or gone counts as stopped.

        Raises:
            EngineError: If Docker operations fail
        """
        try:
            docker_container = await self._get(container_id)
            await asyncio.to_thread(docker_container.stop, timeout=self.settings.stop_timeout_s)
        except (ContainerNotFoundError, NotFound):
            logger.debug("Container already gone", extra={"docker_id": short_id(container_id)})
            return
        except APIError as e:
            if any(marker in str(e).lower() for marker in _STOP_ACCEPTABLE):
                logger.debug(
                    "Container already stopped", extra={"docker_id": short_id(container_id)}
                )
                return
            raise EngineError(f"failed to stop container {short_id(container_id)}: {e}", e)
        except (DockerException, OSError) as e:
            raise EngineError(f"failed to stop container {short_id(container_id)}: {e}", e)

        logger.info("Docker container stopped", extra={"docker_id": short_id(container_id)})

    async def remove(self, container_id: str, force: bool = False) -> None:
        """
        Remove a container and its anonymous volumes.

        A running container is force-removed after a first refusal.

        Raises:
            EngineError: If Docker operations fail
        """
        try:
            docker_container = await self._get(container_id)
            try:
                await asyncio.to_thread(docker_container.remove, v=True, force=force)
            except APIError as e:
                if force or "running container" not in str(e).lower():
                    raise
                logger.warning(
                    "Container is still running, forcing removal",
                    extra={"docker_id": short_id(container_id)},
                )
                await asyncio.to_thread(docker_container.remove, v=True, force=True)
        except (ContainerNotFoundError, NotFound):
            logger.debug("Container already removed", extra={"docker_id": short_id(container_id)})
            return
        except (APIError, DockerException, OSError) as e:
            if "no such container" in str(e).lower():
                return
            raise EngineError(f"failed to remove container {short_id(container_id)}: {e}", e)

        logger.info("Docker container removed", extra={"docker_id": short_id(container_id)})

    async def status(self, name: str) -> ContainerStatus:
        """
        Look up a container by exact name.

        Raises:
            EngineError: If Docker operations fail
        """
        try:
            containers = await asyncio.to_thread(
                self.docker_client.containers.list, all=True, filters={"name": name}
            )
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"failed to list containers: {e}", e)

        for docker_container in containers:
            if docker_container.name == name:
                return self._to_status(docker_container)

        return ContainerStatus(name=name)

    async def is_running(self, name: str) -> bool:
        """Whether a container with this exact name is running."""
        return (await self.status(name)).running

    async def list_by_prefix(self, prefix: str) -> List[ContainerStatus]:
        """
        All containers whose name starts with the prefix.

        Raises:
            EngineError: If Docker operations fail
        """
        try:
            containers = await asyncio.to_thread(
                self.docker_client.containers.list, all=True, filters={"name": prefix}
            )
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"failed to list containers: {e}", e)

        return [self._to_status(c) for c in containers if c.name.startswith(prefix)]

    def _to_status(self, docker_container: DockerContainer) -> ContainerStatus:
        attrs = docker_container.attrs or {}
        state = attrs.get("State") if isinstance(attrs.get("State"), dict) else {}
        image = (attrs.get("Config") or {}).get("Image")
        return ContainerStatus(
            name=docker_container.name,
            exists=True,
            running=docker_container.status == "running",
            id=docker_container.id,
            image=image,
            state=docker_container.status,
            started_at=state.get("StartedAt"),
        )

    async def inspect(self, container_id: str) -> Optional[Dict[str, Any]]:
        """
        Raw inspect data, or ``None`` when the container does not exist.

        Raises:
            EngineError: If Docker operations fail
        """
        try:
            return await asyncio.to_thread(self.docker_client.api.inspect_container, container_id)
        except NotFound:
            return None
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"failed to inspect container {short_id(container_id)}: {e}", e)

    async def exec_once(
        self, container_id: str, cmd: List[str], timeout_s: Optional[float] = None
    ) -> ExecResult:
        """
        Run a command and capture its combined output.

        Args:
            container_id: Container ID
            cmd: Command and arguments
            timeout_s: Optional deadline for the whole exec

        Returns:
            ExecResult carrying the remote exit code

        Raises:
            ContainerNotFoundError: If container not found
            EngineError: If Docker operations fail
            asyncio.TimeoutError: If the deadline passes
        """
        docker_container = await self._get(container_id)
        call = asyncio.to_thread(docker_container.exec_run, cmd, stdout=True, stderr=True)
        try:
            if timeout_s is not None:
                result = await asyncio.wait_for(call, timeout=timeout_s)
            else:
                result = await call
        except NotFound:
            raise ContainerNotFoundError(container_id)
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"exec failed in {short_id(container_id)}: {e}", e)

        output = (result.output or b"").decode("utf-8", errors="replace")
        exit_code = result.exit_code if result.exit_code is not None else -1
        logger.debug(
            "Exec completed",
            extra={"docker_id": short_id(container_id), "cmd": cmd, "exit_code": exit_code},
        )
        return ExecResult(exit_code=exit_code, output=output)

    async def exec_detached(self, container_id: str, cmd: List[str]) -> None:
        """
        Start a command in the background without waiting for it.

        Raises:
            ContainerNotFoundError: If container not found
            EngineError: If Docker operations fail
        """
        docker_container = await self._get(container_id)
        try:
            await asyncio.to_thread(docker_container.exec_run, cmd, detach=True)
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"detached exec failed in {short_id(container_id)}: {e}", e)

    async def exec_interactive(self, container_id: str, cmd: List[str]) -> int:
        """
        Attach the local terminal to a command running in the container.

        The local TTY is put in raw mode for the duration and the remote TTY
        follows local window resizes.

        Returns:
            Exit code of the remote command

        Raises:
            EngineError: If Docker operations fail
        """
        api = self.docker_client.api
        try:
            exec_id = (
                await asyncio.to_thread(
                    api.exec_create, container_id, cmd, stdin=True, tty=True
                )
            )["Id"]
            sock = await asyncio.to_thread(api.exec_start, exec_id, tty=True, socket=True)
        except NotFound:
            raise ContainerNotFoundError(container_id)
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"failed to attach to {short_id(container_id)}: {e}", e)

        stdin_fd = sys.stdin.fileno()
        is_tty = os.isatty(stdin_fd)
        loop = asyncio.get_running_loop()

        def resize() -> None:
            try:
                size = os.get_terminal_size(stdin_fd)
                api.exec_resize(exec_id, height=size.lines, width=size.columns)
            except (OSError, APIError) as e:
                logger.debug("Failed to resize container TTY", extra={"error": str(e)})

        old_attrs = None
        if is_tty:
            old_attrs = termios.tcgetattr(stdin_fd)
            tty.setraw(stdin_fd)
            resize()
            loop.add_signal_handler(signal.SIGWINCH, resize)

        try:
            await asyncio.to_thread(_pump, getattr(sock, "_sock", sock), stdin_fd)
        finally:
            if is_tty:
                loop.remove_signal_handler(signal.SIGWINCH)
                termios.tcsetattr(stdin_fd, termios.TCSADRAIN, old_attrs)
            sock.close()

        try:
            info = await asyncio.to_thread(api.exec_inspect, exec_id)
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"failed to inspect exec in {short_id(container_id)}: {e}", e)

        exit_code = info.get("ExitCode")
        logger.debug("Interactive session completed", extra={"exit_code": exit_code})
        return exit_code if exit_code is not None else -1

    async def build_image(self, image: str, variant: str, platform: str) -> None:
        """
        Build a variant image from the configured build context.

        Raises:
            EngineError: If the build fails
        """
        logger.info(
            "Building Docker image",
            extra={"image": image, "variant": variant, "platform": platform},
        )
        try:
            await asyncio.to_thread(
                self.docker_client.images.build,
                path=self.settings.build_context,
                dockerfile=self.settings.dockerfile,
                tag=image,
                target=variant,
                platform=platform,
                rm=True,
            )
        except BuildError as e:
            raise EngineError(f"image build failed for {image}: {e.msg}", e)
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"image build failed for {image}: {e}", e)

    async def image_exists(self, image: str) -> bool:
        """
        Whether an image is present locally.

        Raises:
            EngineError: If Docker operations fail
        """
        try:
            await asyncio.to_thread(self.docker_client.images.get, image)
            return True
        except ImageNotFound:
            return False
        except (APIError, DockerException, OSError) as e:
            raise EngineError(f"failed to look up image {image}: {e}", e)


def _pump(conn: socket.socket, stdin_fd: int) -> None:
    """Copy bytes between the local terminal and an exec socket until EOF."""
    stdout_fd = sys.stdout.fileno()
    watch = [conn, stdin_fd]
    while True:
        readable, _, _ = select.select(watch, [], [])
        if conn in readable:
            data = conn.recv(4096)
            if not data:
                return
            os.write(stdout_fd, data)
        if stdin_fd in readable:
            data = os.read(stdin_fd, 1024)
            if not data:
                # Local EOF: half-close and keep draining remote output
                conn.shutdown(socket.SHUT_WR)
                watch = [conn]
            else:
                conn.sendall(data)
