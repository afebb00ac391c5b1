"""Background maintenance manager that reaps idle containers."""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional

from agent_reactor.config import get_settings
from agent_reactor.managers.container_manager import ContainerEngine, short_id
from agent_reactor.managers.recovery_manager import RecoveryManager
from agent_reactor.models.containers import ContainerStatus
from agent_reactor.repositories.sessions import SessionRepository
from agent_reactor.utils import get_logger
from agent_reactor.utils.audit_logger import AuditEventType, get_audit_logger
from agent_reactor.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

# Delay before the loop resumes after a failed pass (in seconds)
MAINTENANCE_ERROR_RETRY_SECONDS = 60


def parse_docker_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Docker RFC 3339 timestamp.

    Docker reports nanosecond precision and uses a zero year for containers
    that never started; both are handled.

    Returns:
        Timezone-aware datetime, or ``None`` if absent or unparseable
    """
    if not value or value.startswith("0001-"):
        return None

    text = value.rstrip("Z")
    offset = "+00:00"
    for sign in ("+", "-"):
        index = text.rfind(sign)
        if index > 10:
            text, offset = text[:index], text[index:]
            break

    if "." in text:
        head, fraction = text.split(".", 1)
        text = f"{head}.{fraction[:6]}"

    try:
        return datetime.fromisoformat(text + offset)
    except ValueError:
        return None


class MaintenanceManager:
    """Periodically stops and removes tool containers that have been idle too long."""

    def __init__(
        self,
        engine: ContainerEngine,
        recovery: RecoveryManager,
        repository: Optional[SessionRepository] = None,
    ) -> None:
        """
        Initialize maintenance manager.

        Args:
            engine: Container engine
            recovery: Recovery manager used to stop containers
            repository: Session record store consulted for last activity
        """
        self.settings = get_settings()
        self.engine = engine
        self.recovery = recovery
        self.repository = repository or SessionRepository(self.settings.state_path)
        self.metrics = get_metrics_collector()
        self.audit = get_audit_logger()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        """Whether the background loop is active."""
        return self._running

    async def start(self) -> None:
        """Start the background reaper loop."""
        if self._running:
            logger.warning("Maintenance manager already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_maintenance_loop())
        logger.info(
            "Maintenance manager started",
            extra={
                "interval_s": self.settings.cleanup_interval_s,
                "idle_timeout_s": self.settings.idle_timeout_s,
            },
        )

    async def stop(self) -> None:
        """Stop the background reaper loop."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Maintenance manager stopped")

    async def _run_maintenance_loop(self) -> None:
        """Run reaper passes until stopped."""
        while self._running:
            try:
                await self.run_maintenance()
                await asyncio.sleep(self.settings.cleanup_interval_s)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Maintenance task failed", extra={"error": str(e)})
                await asyncio.sleep(MAINTENANCE_ERROR_RETRY_SECONDS)

    async def run_maintenance(self) -> dict:
        """
        Run one reaper pass.

        Returns:
            Dictionary with maintenance statistics
        """
        logger.debug("Running maintenance tasks")

        stats = {"scanned": 0, "reaped": 0, "errors": 0}

        try:
            reaped, scanned, errors = await self.reap_idle()
            stats.update(reaped=reaped, scanned=scanned, errors=errors)
        except Exception as e:
            logger.error("Maintenance failed", extra={"error": str(e)})
            stats["errors"] += 1

        if stats["reaped"] or stats["errors"]:
            logger.info("Maintenance tasks completed", extra=stats)
        return stats

    async def reap_idle(self, now: Optional[datetime] = None) -> tuple[int, int, int]:
        """
        Stop and remove running tool containers idle beyond the timeout.

        A container's last activity is the later of its start time and the
        ``last_seen`` of the session record that points at it.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            Tuple of (reaped, scanned, errors)
        """
        now = now or datetime.now(timezone.utc)
        prefix = f"{self.settings.container_prefix}-"
        containers = await self.engine.list_by_prefix(prefix)
        last_seen = await self._last_seen_by_container()

        reaped = scanned = errors = 0
        for status in containers:
            if not status.name.startswith(prefix) or not status.running:
                continue
            scanned += 1

            idle_s = self._idle_seconds(status, last_seen, now)
            if idle_s is None or idle_s < self.settings.idle_timeout_s:
                continue

            logger.info(
                "Reaping idle container",
                extra={
                    "container_name": status.name,
                    "docker_id": short_id(status.id),
                    "idle_s": int(idle_s),
                },
            )
            try:
                await self.recovery.stop_with_recovery(status.id)
                await self.engine.remove(status.id, force=True)
            except Exception as e:
                errors += 1
                logger.error(
                    "Failed to reap idle container",
                    extra={"container_name": status.name, "error": str(e)},
                )
                continue

            reaped += 1
            self.metrics.record_reaped()
            self.audit.log_event(
                AuditEventType.CONTAINER_REAP,
                container_id=status.id,
                container_name=status.name,
                details={"idle_s": int(idle_s)},
            )

        return reaped, scanned, errors

    async def _last_seen_by_container(self) -> Dict[str, datetime]:
        records = await self.repository.list_all()
        return {record.container_name: record.last_seen for record in records}

    def _idle_seconds(
        self, status: ContainerStatus, last_seen: Dict[str, datetime], now: datetime
    ) -> Optional[float]:
        candidates = []
        started_at = parse_docker_timestamp(status.started_at)
        if started_at is not None:
            candidates.append(started_at)
        seen = last_seen.get(status.name)
        if seen is not None:
            if seen.tzinfo is None:
                seen = seen.replace(tzinfo=timezone.utc)
            candidates.append(seen)

        if not candidates:
            return None
        return (now - max(candidates)).total_seconds()
