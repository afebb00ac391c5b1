"""Entry point wiring settings, logging, Docker and the lifecycle managers."""

from typing import Dict, List, Optional, Sequence

from agent_reactor import __version__
from agent_reactor.config import get_settings
from agent_reactor.managers.container_manager import ContainerEngine, DockerContainerManager
from agent_reactor.managers.identity_resolver import ArchitectureDetector, IdentityResolver
from agent_reactor.managers.maintenance_manager import MaintenanceManager
from agent_reactor.managers.mount_manager import MountManager
from agent_reactor.managers.recovery_manager import RecoveryManager
from agent_reactor.managers.session_manager import SessionManager
from agent_reactor.managers.variant_manager import get_variant_manager
from agent_reactor.models.containers import ContainerConfig, Mount, StartOutcome
from agent_reactor.models.recovery import RecoveryPolicy
from agent_reactor.repositories.sessions import SessionRepository
from agent_reactor.utils import get_logger, setup_logging
from agent_reactor.utils.docker_client import close_docker_client
from agent_reactor.utils.exceptions import ReactorError

logger = get_logger(__name__)


class Reactor:
    """
    Orchestrates one invocation: configure, start or recover, attach, tear down.

    Use as an async context manager so the Docker client and the background
    reaper are released on exit::

        async with Reactor() as reactor:
            config = reactor.prepare_config(os.getcwd(), variant="go")
            outcome = await reactor.start_or_recover(config)
            await reactor.attach(outcome.container_id)
    """

    def __init__(
        self,
        engine: Optional[ContainerEngine] = None,
        repository: Optional[SessionRepository] = None,
        detector: Optional[ArchitectureDetector] = None,
        policy: Optional[RecoveryPolicy] = None,
        home: Optional[str] = None,
    ) -> None:
        """
        Initialize reactor.

        Args:
            engine: Container engine (defaults to Docker, connected on start)
            repository: Session record store (defaults to the configured state dir)
            detector: Host architecture probe
            policy: Retry/backoff tuning (defaults to the configured values)
            home: Host home directory used for default mounts
        """
        self.settings = get_settings()
        self.detector = detector or ArchitectureDetector()
        self.repository = repository or SessionRepository(self.settings.state_path)
        self.policy = policy or RecoveryPolicy.from_settings(self.settings)
        self.home = home
        self._engine = engine
        self._owns_client = engine is None
        self._recovery: Optional[RecoveryManager] = None
        self._sessions: Optional[SessionManager] = None
        self.maintenance: Optional[MaintenanceManager] = None

    async def __aenter__(self) -> "Reactor":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def engine(self) -> ContainerEngine:
        """Container engine; available once started."""
        if self._engine is None:
            raise ReactorError("Reactor has not been started")
        return self._engine

    @property
    def recovery(self) -> RecoveryManager:
        """Recovery manager; available once started."""
        if self._recovery is None:
            raise ReactorError("Reactor has not been started")
        return self._recovery

    @property
    def sessions(self) -> SessionManager:
        """Session manager; available once started."""
        if self._sessions is None:
            raise ReactorError("Reactor has not been started")
        return self._sessions

    async def start(self) -> None:
        """
        Set up logging, connect to Docker and start background maintenance.

        Raises:
            DockerDaemonUnreachableError: If the Docker daemon cannot be reached
        """
        setup_logging(log_level=self.settings.log_level, log_format=self.settings.log_format)
        logger.info("Starting agent reactor", extra={"version": __version__})

        if self._engine is None:
            try:
                self._engine = DockerContainerManager()
                logger.info("Docker client initialized successfully")
            except Exception as e:
                logger.error("Failed to initialize Docker client", extra={"error": str(e)})
                raise

        self._recovery = RecoveryManager(self._engine, self.policy)
        self._sessions = SessionManager(self._engine, self._recovery, self.repository)
        self.maintenance = MaintenanceManager(self._engine, self._recovery, self.repository)

        if self.settings.idle_cleanup_enabled:
            try:
                await self.maintenance.start()
            except Exception as e:
                logger.warning("Failed to start maintenance", extra={"error": str(e)})

    async def close(self) -> None:
        """Stop background maintenance and release the Docker client."""
        if self.maintenance is not None:
            try:
                await self.maintenance.stop()
            except Exception as e:
                logger.warning("Failed to stop maintenance", extra={"error": str(e)})

        if self._owns_client and self._engine is not None:
            close_docker_client()
            self._engine = None
        logger.debug("Agent reactor stopped")

    def prepare_config(
        self,
        project_path: str,
        variant: Optional[str] = None,
        account: Optional[str] = None,
        mount_paths: Sequence[str] = (),
        no_mounts: bool = False,
        ssh_agent_socket: Optional[str] = None,
        host_docker: bool = False,
        command: Optional[List[str]] = None,
        environment: Optional[Dict[str, str]] = None,
        run_upgrade: bool = False,
    ) -> ContainerConfig:
        """
        Assemble and validate the container configuration for a request.

        Args:
            project_path: Project directory
            variant: Image variant (defaults to the configured default)
            account: Account name, ``None`` for the default account
            mount_paths: Extra host paths mounted under the user mount root
            no_mounts: Start with no mounts at all
            ssh_agent_socket: Host SSH agent socket to forward
            host_docker: Mount the host Docker socket
            command: Container command
            environment: Container environment
            run_upgrade: Start the upgrade command after a fresh start

        Returns:
            Validated ContainerConfig

        Raises:
            InvalidVariantError: If the variant is unknown
            InvalidAccountError: If the account name is unusable
            UnsupportedArchitectureError: If the host architecture is unsupported
            MountValidationError: If any mount source is unusable
        """
        variant = variant or self.settings.default_variant
        get_variant_manager().validate_variant(variant)

        resolver = IdentityResolver(project_path, detector=self.detector)
        identity = resolver.resolve_identity(variant, account)

        mounts: List[Mount] = []
        if no_mounts:
            logger.info("Mounts disabled", extra={"container_name": identity.name})
        else:
            mount_manager = MountManager(resolver.project_path, home=self.home)
            mounts = mount_manager.build_default_mounts(identity.account)
            mounts = mount_manager.append_user_mounts(mounts, list(mount_paths))
            if ssh_agent_socket:
                mounts.extend(mount_manager.build_ssh_mounts(ssh_agent_socket))
            if host_docker:
                mounts.append(mount_manager.build_host_docker_mount())
            mount_manager.validate(mounts)

        return ContainerConfig(
            identity=identity,
            image=identity.image_name,
            project_path=resolver.project_path,
            command=list(command or []),
            environment=dict(environment or {}),
            mounts=mounts,
            run_upgrade=run_upgrade,
            host_docker=host_docker,
        )

    async def ensure_image(self, config: ContainerConfig) -> bool:
        """
        Build the variant image when it is not present locally.

        Returns:
            True if an image was built
        """
        if await self.engine.image_exists(config.image):
            return False
        await self.recovery.build_with_recovery(
            config.image, config.identity.variant, self.detector.docker_platform()
        )
        return True

    async def start_or_recover(
        self, config: ContainerConfig, persistent: bool = True, build_missing: bool = True
    ) -> StartOutcome:
        """
        Obtain a running container, building its image first if needed.

        Args:
            config: Container configuration
            persistent: Whether to recover and record the session
            build_missing: Build the image when it is missing

        Returns:
            StartOutcome
        """
        if build_missing:
            await self.ensure_image(config)
        return await self.sessions.start_or_recover(config, persistent=persistent)

    async def attach(self, container_id: str, command: Optional[List[str]] = None) -> int:
        """
        Attach the local terminal to a command in the container.

        Returns:
            Exit code of the remote command
        """
        return await self.engine.exec_interactive(
            container_id, command or self.settings.attach_command_list
        )

    async def stop(self, container_id: str) -> None:
        """Stop a container, treating an already stopped one as success."""
        await self.recovery.stop_with_recovery(container_id)

    async def cleanup(
        self,
        project_path: str,
        variant: Optional[str] = None,
        account: Optional[str] = None,
        remove_container: bool = True,
    ) -> bool:
        """
        Forget the session for a project and remove its container.

        Returns:
            True if a session record was deleted
        """
        variant = variant or self.settings.default_variant
        resolver = IdentityResolver(project_path, detector=self.detector)
        return await self.sessions.cleanup(
            account,
            resolver.project_path,
            remove_container=remove_container,
            container_name=resolver.resolve_container_name(variant, account),
        )

    async def clean_all(self) -> int:
        """Remove every container this tool manages."""
        return await self.sessions.clean_all()
