"""Session persistence and the recover / restart / recreate decision."""

import asyncio
import posixpath
import time
from typing import List, Optional

from agent_reactor.config import get_settings
from agent_reactor.managers.container_manager import ContainerEngine, short_id
from agent_reactor.managers.recovery_manager import RecoveryManager
from agent_reactor.models.containers import DEFAULT_ACCOUNT, ContainerConfig, StartOutcome
from agent_reactor.models.sessions import SessionRecord, generate_session_token
from agent_reactor.repositories.sessions import SessionRepository
from agent_reactor.utils import get_logger
from agent_reactor.utils.audit_logger import AuditEventType, get_audit_logger
from agent_reactor.utils.exceptions import SessionStoreError
from agent_reactor.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

STRATEGY_SESSION = "session"
STRATEGY_NAME_RUNNING = "name_running"
STRATEGY_NAME_RESTARTED = "name_restarted"
STRATEGY_CREATED = "created"
STRATEGY_EPHEMERAL = "ephemeral"

LIVENESS_COMMAND = ["echo", "health-check"]
STATE_DIR_NAME = ".claude-reactor"


class SessionManager:
    """
    Reattaches to the container of a previous invocation when possible.

    Strategies are tried in order: the recorded container, then a container
    found by its deterministic name, then a fresh start through the recovery
    manager. Only the fresh start may fail the call; every earlier step
    degrades to the next one.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        recovery: RecoveryManager,
        repository: Optional[SessionRepository] = None,
    ) -> None:
        """
        Initialize session manager.

        Args:
            engine: Container engine
            recovery: Recovery manager used for fresh starts
            repository: Session record store (defaults to the configured state dir)
        """
        self.settings = get_settings()
        self.engine = engine
        self.recovery = recovery
        self.repository = repository or SessionRepository(self.settings.state_path)
        self.metrics = get_metrics_collector()
        self.audit = get_audit_logger()

    async def start_or_recover(
        self, config: ContainerConfig, persistent: bool = True
    ) -> StartOutcome:
        """
        Obtain a running container for a configuration, reusing state when possible.

        Args:
            config: Container configuration
            persistent: Whether to consult and update the session record

        Returns:
            StartOutcome describing the container and the strategy that produced it

        Raises:
            RecoveryError: If a fresh start was needed and failed
        """
        started = time.monotonic()

        if not persistent:
            container_id = await self.recovery.start_with_recovery(config)
            await self._provision(container_id, config)
            outcome = StartOutcome(
                container_id=container_id,
                container_name=config.name,
                strategy=STRATEGY_EPHEMERAL,
            )
            self._record_outcome(outcome, started)
            return outcome

        record = await self._load_record(config.account, config.project_path)

        outcome = None
        if record is not None:
            outcome = await self._recover_from_record(record, config)
        if outcome is None:
            outcome = await self._recover_by_name(config, record)
        if outcome is None:
            container_id = await self.recovery.start_with_recovery(config)
            await self._provision(container_id, config)
            outcome = StartOutcome(
                container_id=container_id,
                container_name=config.name,
                strategy=STRATEGY_CREATED,
                session_token=generate_session_token(),
            )

        await self._save_record(config, outcome, record)
        self._record_outcome(outcome, started)
        return outcome

    async def _load_record(self, account: str, project_path: str) -> Optional[SessionRecord]:
        try:
            return await self.repository.get(account, project_path)
        except SessionStoreError as e:
            logger.warning("Ignoring unreadable session record", extra={"error": str(e)})
            return None

    async def _recover_from_record(
        self, record: SessionRecord, config: ContainerConfig
    ) -> Optional[StartOutcome]:
        if record.container_name != config.name:
            logger.info(
                "Session record belongs to a different container, skipping",
                extra={"recorded": record.container_name, "container_name": config.name},
            )
            return None

        try:
            alive = await asyncio.wait_for(
                self._probe(record.container_id),
                timeout=self.settings.liveness_probe_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Liveness probe timed out",
                extra={"container_name": record.container_name},
            )
            alive = False
        except Exception as e:
            logger.warning(
                "Liveness probe failed",
                extra={"container_name": record.container_name, "error": str(e)},
            )
            alive = False

        if not alive:
            logger.info(
                "Recorded session container is not usable",
                extra={
                    "container_name": record.container_name,
                    "docker_id": short_id(record.container_id),
                },
            )
            return None

        logger.info(
            "Recovered session container",
            extra={
                "container_name": record.container_name,
                "session": record.display_token,
            },
        )
        return StartOutcome(
            container_id=record.container_id,
            container_name=record.container_name,
            strategy=STRATEGY_SESSION,
            session_token=record.session_token,
        )

    async def _probe(self, container_id: str) -> bool:
        """Whether a container is running and answers a trivial exec."""
        info = await self.engine.inspect(container_id)
        if not info or not (info.get("State") or {}).get("Running"):
            return False
        result = await self.engine.exec_once(container_id, LIVENESS_COMMAND)
        return result.ok

    async def _recover_by_name(
        self, config: ContainerConfig, record: Optional[SessionRecord]
    ) -> Optional[StartOutcome]:
        name = config.name
        token = record.session_token if record is not None else generate_session_token()

        try:
            status = await self.engine.status(name)
        except Exception as e:
            logger.warning(
                "Container lookup by name failed", extra={"container_name": name, "error": str(e)}
            )
            return None

        if not status.exists:
            return None

        if status.running:
            logger.info(
                "Found running container by name",
                extra={"container_name": name, "docker_id": short_id(status.id)},
            )
            return StartOutcome(
                container_id=status.id,
                container_name=name,
                strategy=STRATEGY_NAME_RUNNING,
                session_token=token,
            )

        logger.info(
            "Restarting stopped container",
            extra={"container_name": name, "docker_id": short_id(status.id)},
        )
        try:
            await self.engine.start(status.id)
            if await self.recovery.health_check(name):
                return StartOutcome(
                    container_id=status.id,
                    container_name=name,
                    strategy=STRATEGY_NAME_RESTARTED,
                    session_token=token,
                )
            logger.warning(
                "Restarted container never became healthy", extra={"container_name": name}
            )
        except asyncio.CancelledError:
            logger.warning(
                "Cancelled while restarting container, discarding it",
                extra={"container_name": name, "docker_id": short_id(status.id)},
            )
            await asyncio.shield(self._remove_unusable(name, status.id))
            raise
        except Exception as e:
            logger.warning(
                "Failed to restart stopped container",
                extra={"container_name": name, "error": str(e)},
            )

        await self._remove_unusable(name, status.id)
        return None

    async def _remove_unusable(self, name: str, container_id: str) -> None:
        try:
            await self.engine.remove(container_id, force=True)
        except Exception as e:
            logger.warning(
                "Failed to remove unusable container",
                extra={"container_name": name, "error": str(e)},
            )

    async def _provision(self, container_id: str, config: ContainerConfig) -> None:
        """Best-effort setup of a freshly started container."""
        state_dir = posixpath.join(self.settings.container_home, STATE_DIR_NAME)
        try:
            result = await self.engine.exec_once(
                container_id,
                ["mkdir", "-p", state_dir],
                timeout_s=self.settings.liveness_probe_timeout_s,
            )
            if not result.ok:
                logger.warning(
                    "Failed to create in-container state directory",
                    extra={"container_name": config.name, "exit_code": result.exit_code},
                )
        except Exception as e:
            logger.warning(
                "Failed to create in-container state directory",
                extra={"container_name": config.name, "error": str(e)},
            )

        if not config.run_upgrade:
            return

        try:
            await self.engine.exec_detached(container_id, self.settings.upgrade_command_list)
            logger.debug("Started background upgrade", extra={"container_name": config.name})
        except Exception as e:
            logger.warning(
                "Failed to start background upgrade",
                extra={"container_name": config.name, "error": str(e)},
            )

    async def _save_record(
        self,
        config: ContainerConfig,
        outcome: StartOutcome,
        previous: Optional[SessionRecord],
    ) -> None:
        if (
            previous is not None
            and previous.container_id == outcome.container_id
            and previous.session_token == outcome.session_token
        ):
            record = previous.touch()
        else:
            record = SessionRecord(
                account=config.account,
                project_path=config.project_path,
                project_hash=config.identity.project_hash,
                container_name=outcome.container_name,
                container_id=outcome.container_id,
                session_token=outcome.session_token or generate_session_token(),
            )

        try:
            await self.repository.save(record)
        except SessionStoreError as e:
            # Container is already running
            logger.warning("Failed to save session record", extra={"error": str(e)})
            return

        event = (
            AuditEventType.SESSION_CREATE
            if outcome.strategy == STRATEGY_CREATED
            else AuditEventType.SESSION_RECOVER
        )
        self.audit.log_event(
            event,
            container_id=outcome.container_id,
            container_name=outcome.container_name,
            account=config.account,
            details={"strategy": outcome.strategy, "session_token": record.session_token},
        )

    def _record_outcome(self, outcome: StartOutcome, started: float) -> None:
        self.metrics.record_session_outcome(outcome.strategy)
        self.metrics.record_start_duration(time.monotonic() - started)
        logger.info(
            "Container ready",
            extra={
                "container_name": outcome.container_name,
                "docker_id": short_id(outcome.container_id),
                "strategy": outcome.strategy,
            },
        )

    async def cleanup(
        self,
        account: Optional[str],
        project_path: str,
        remove_container: bool = True,
        container_name: Optional[str] = None,
    ) -> bool:
        """
        Forget a session and optionally tear down its container.

        Args:
            account: Account name, ``None`` for the default account
            project_path: Project directory of the session
            remove_container: Whether to stop and remove the container
            container_name: Container to remove when no record names one

        Returns:
            True if a session record was deleted
        """
        account = account or DEFAULT_ACCOUNT
        record = await self._load_record(account, project_path)

        if remove_container:
            targets: List[str] = []
            if record is not None:
                targets.append(record.container_id)
            if container_name:
                status = await self.engine.status(container_name)
                if status.exists and status.id not in targets:
                    targets.append(status.id)
            for container_id in targets:
                await self._teardown(container_id, account)

        deleted = await self.repository.delete(account, project_path)
        self.audit.log_event(
            AuditEventType.SESSION_CLEANUP,
            container_name=record.container_name if record else container_name,
            account=account,
            details={"record_deleted": deleted, "container_removed": remove_container},
        )
        return deleted

    async def clean_all(self) -> int:
        """
        Stop and remove every container carrying the tool prefix.

        Returns:
            Number of containers removed
        """
        prefix = f"{self.settings.container_prefix}-"
        containers = await self.engine.list_by_prefix(prefix)

        removed = 0
        for status in containers:
            if not status.name.startswith(prefix):
                continue
            try:
                await self._teardown(status.id, None)
                removed += 1
            except Exception as e:
                logger.error(
                    "Failed to remove container",
                    extra={"container_name": status.name, "error": str(e)},
                )

        logger.info("Removed all tool containers", extra={"count": removed})
        return removed

    async def _teardown(self, container_id: str, account: Optional[str]) -> None:
        await self.recovery.stop_with_recovery(container_id)
        await self.engine.remove(container_id, force=True)
        self.audit.log_event(
            AuditEventType.CONTAINER_REMOVE, container_id=container_id, account=account
        )
