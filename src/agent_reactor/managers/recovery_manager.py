"""Retry, backoff and health verification around container engine operations."""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from agent_reactor.managers.container_manager import ContainerEngine, short_id
from agent_reactor.models.containers import ContainerConfig
from agent_reactor.models.recovery import RecoveryPolicy
from agent_reactor.utils import get_logger
from agent_reactor.utils.audit_logger import AuditEventType, get_audit_logger
from agent_reactor.utils.exceptions import (
    ConfigurationError,
    ContainerNameConflictError,
    ContainerNotFoundError,
    HealthCheckFailedError,
    ImageNotFoundError,
    NonRetryableError,
    RetryExhaustedError,
)
from agent_reactor.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

T = TypeVar("T")

# Docker prefixes almost every failure with "Error response from daemon", so
# the fatal patterns are checked before the transient ones.
START_FATAL_PATTERNS = (
    "bind source path does not exist",
    "invalid",
    "not found",
    "no such image",
)
START_TRANSIENT_PATTERNS = (
    "connection refused",
    "network",
    "timeout",
    "timed out",
    "temporary failure",
    "daemon",
    "server error",
    "no space left",
    "insufficient",
)

BUILD_FATAL_PATTERNS = (
    "dockerfile",
    "syntax",
    "unknown instruction",
)
BUILD_TRANSIENT_PATTERNS = (
    "connection",
    "network",
    "timeout",
    "pull",
    "download",
)

STOP_ACCEPTABLE_PATTERNS = (
    "already stopped",
    "not running",
    "no such container",
)


def is_retryable_start_error(error: BaseException) -> bool:
    """
    Decide whether a failed container start is worth another attempt.

    Configuration problems, missing images and missing bind sources fail
    fast. Connectivity, daemon and resource-exhaustion errors are retried,
    and so is anything unrecognized.
    """
    if isinstance(error, (ConfigurationError, ImageNotFoundError)):
        return False
    if isinstance(error, TimeoutError):
        return True

    message = str(error).lower()
    if any(pattern in message for pattern in START_FATAL_PATTERNS):
        return False
    if any(pattern in message for pattern in START_TRANSIENT_PATTERNS):
        return True
    # Unrecognized errors are retried
    return True


def is_retryable_build_error(error: BaseException) -> bool:
    """Decide whether a failed image build is worth another attempt."""
    if isinstance(error, ConfigurationError):
        return False

    message = str(error).lower()
    if any(pattern in message for pattern in BUILD_FATAL_PATTERNS):
        return False
    if any(pattern in message for pattern in BUILD_TRANSIENT_PATTERNS):
        return True
    return True


def is_acceptable_stop_error(error: BaseException) -> bool:
    """Whether a stop failure still leaves the container not running."""
    if isinstance(error, ContainerNotFoundError):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in STOP_ACCEPTABLE_PATTERNS)


class RecoveryManager:
    """Drives engine operations with bounded retries and health checks."""

    def __init__(
        self,
        engine: ContainerEngine,
        policy: Optional[RecoveryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize recovery manager.

        Args:
            engine: Container engine to drive
            policy: Retry/backoff tuning (defaults to ``RecoveryPolicy()``)
            sleep: Awaitable used for every wait
        """
        self.engine = engine
        self.policy = policy or RecoveryPolicy()
        self._sleep = sleep
        self.metrics = get_metrics_collector()
        self.audit = get_audit_logger()

    def backoff_delay(self, attempt: int) -> float:
        """Delay after the given failed attempt."""
        return self.policy.backoff_delay(attempt)

    async def _retry(
        self,
        operation: str,
        identity: str,
        call: Callable[[], Awaitable[T]],
        is_retryable: Callable[[BaseException], bool],
    ) -> T:
        last_error: Optional[Exception] = None
        max_attempts = self.policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            self.metrics.record_attempt(operation)
            logger.debug(
                "Operation attempt",
                extra={
                    "operation": operation,
                    "identity": identity,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                },
            )
            try:
                return await call()
            except Exception as e:
                last_error = e

                if not is_retryable(e):
                    logger.error(
                        "Operation failed with non-retryable error",
                        extra={"operation": operation, "identity": identity, "error": str(e)},
                    )
                    self._record_final_failure(operation, identity, "non_retryable", e)
                    raise NonRetryableError(operation, identity, e) from e

                if attempt < max_attempts:
                    delay = self.backoff_delay(attempt)
                    logger.warning(
                        "Operation attempt failed, retrying",
                        extra={
                            "operation": operation,
                            "identity": identity,
                            "attempt": attempt,
                            "delay_s": delay,
                            "error": str(e),
                        },
                    )
                    self.metrics.record_retry(operation)
                    await self._sleep(delay)

        logger.error(
            "Operation failed after all attempts",
            extra={
                "operation": operation,
                "identity": identity,
                "attempts": max_attempts,
                "error": str(last_error),
            },
        )
        self._record_final_failure(operation, identity, "exhausted", last_error)
        raise RetryExhaustedError(operation, identity, max_attempts, last_error) from last_error

    def _record_final_failure(
        self, operation: str, identity: str, reason: str, error: Optional[BaseException]
    ) -> None:
        self.metrics.record_failure(operation, reason)
        self.audit.log_event(
            AuditEventType.OPERATION_FAILED,
            details={"operation": operation, "identity": identity, "reason": reason},
            error=str(error),
        )

    async def start_with_recovery(self, config: ContainerConfig) -> str:
        """
        Obtain a running, health-checked container for a configuration.

        A running container that already carries the name is reused as is; a
        stopped one is removed first. Fresh starts are retried with backoff
        and verified by polling before they are reported.

        Args:
            config: Container configuration

        Returns:
            Container ID

        Raises:
            NonRetryableError: If a start attempt failed fatally
            RetryExhaustedError: If every attempt failed
            HealthCheckFailedError: If the started container never proved running
        """
        name = config.name

        existing_id = await self.handle_existing_container(name)
        if existing_id:
            return existing_id

        adopted = False

        async def attempt() -> str:
            nonlocal adopted
            try:
                return await self.engine.create_and_start(config)
            except ContainerNameConflictError:
                # Another invocation won the create race
                winner_id = await self._resolve_conflict(name)
                if winner_id is None:
                    raise
                adopted = True
                return winner_id

        container_id = await self._retry("start", name, attempt, is_retryable_start_error)

        if not adopted:
            await self._verify_started(name, container_id)
            self.audit.log_event(
                AuditEventType.CONTAINER_START,
                container_id=container_id,
                container_name=name,
                account=config.account,
            )

        logger.info(
            "Container started successfully",
            extra={"container_name": name, "docker_id": short_id(container_id)},
        )
        return container_id

    async def handle_existing_container(self, name: str) -> Optional[str]:
        """
        Reuse a running container with this name or clear away a stopped one.

        Returns:
            ID of a running container to reuse, or ``None`` to start fresh
        """
        status = await self.engine.status(name)
        if not status.exists:
            return None

        if status.running:
            logger.info(
                "Reusing existing running container",
                extra={"container_name": name, "docker_id": short_id(status.id)},
            )
            self.audit.log_event(
                AuditEventType.CONTAINER_REUSE, container_id=status.id, container_name=name
            )
            return status.id

        logger.debug(
            "Found stopped container, removing",
            extra={"container_name": name, "docker_id": short_id(status.id)},
        )
        try:
            await self.engine.remove(status.id, force=True)
        except Exception as e:
            logger.warning(
                "Failed to remove stopped container",
                extra={"container_name": name, "error": str(e)},
            )
        return None

    async def _resolve_conflict(self, name: str) -> Optional[str]:
        if await self.health_check(name):
            status = await self.engine.status(name)
            if status.running:
                logger.info(
                    "Adopted container started by a concurrent invocation",
                    extra={"container_name": name, "docker_id": short_id(status.id)},
                )
                return status.id

        status = await self.engine.status(name)
        if status.exists:
            try:
                await self.engine.remove(status.id, force=True)
            except Exception as e:
                logger.warning(
                    "Failed to remove conflicting container",
                    extra={"container_name": name, "error": str(e)},
                )
        return None

    async def _verify_started(self, name: str, container_id: str) -> None:
        try:
            healthy = await self.health_check(name)
        except asyncio.CancelledError:
            logger.warning(
                "Cancelled during health check, discarding container",
                extra={"container_name": name, "docker_id": short_id(container_id)},
            )
            await asyncio.shield(self._discard(container_id))
            raise

        if healthy:
            return

        logger.error(
            "Container health check failed, cleaning up",
            extra={"container_name": name, "docker_id": short_id(container_id)},
        )
        self.metrics.record_health_check_failure()
        self.metrics.record_failure("start", "unhealthy")
        self.audit.log_event(
            AuditEventType.CONTAINER_UNHEALTHY,
            container_id=container_id,
            container_name=name,
            error=f"not running after {self.policy.health_check_attempts} checks",
        )
        await self._discard(container_id)
        raise HealthCheckFailedError(name, self.policy.health_check_attempts)

    async def _discard(self, container_id: str) -> None:
        """Best-effort stop and remove of a container that must not survive."""
        try:
            await self.engine.stop(container_id)
        except Exception as e:
            logger.warning(
                "Failed to stop container during cleanup",
                extra={"docker_id": short_id(container_id), "error": str(e)},
            )
        try:
            await self.engine.remove(container_id, force=True)
        except Exception as e:
            logger.warning(
                "Failed to remove container during cleanup",
                extra={"docker_id": short_id(container_id), "error": str(e)},
            )

    async def health_check(self, name: str) -> bool:
        """
        Poll until the named container reports running.

        Returns:
            True once a poll sees it running, False after the last attempt
        """
        attempts = self.policy.health_check_attempts
        for attempt in range(1, attempts + 1):
            try:
                if await self.engine.is_running(name):
                    logger.debug("Container health check passed", extra={"container_name": name})
                    return True
            except Exception as e:
                logger.debug(
                    "Health check attempt errored",
                    extra={"container_name": name, "attempt": attempt, "error": str(e)},
                )

            if attempt < attempts:
                await self._sleep(self.policy.health_check_delay_s)

        return False

    async def build_with_recovery(self, image: str, variant: str, platform: str) -> None:
        """
        Build a variant image, retrying transient failures.

        Raises:
            NonRetryableError: If the build failed fatally
            RetryExhaustedError: If every attempt failed
        """

        async def attempt() -> None:
            await self.engine.build_image(image, variant, platform)

        await self._retry("build", image, attempt, is_retryable_build_error)
        self.audit.log_event(
            AuditEventType.IMAGE_BUILD, details={"image": image, "platform": platform}
        )
        logger.info("Image built successfully", extra={"image": image})

    async def stop_with_recovery(self, container_id: str) -> None:
        """
        Stop a container; "already stopped" and "not found" count as success.

        Raises:
            RetryExhaustedError: If every attempt failed
        """

        async def attempt() -> None:
            try:
                await self.engine.stop(container_id)
            except Exception as e:
                if not is_acceptable_stop_error(e):
                    raise
                logger.debug(
                    "Container stop completed with acceptable error",
                    extra={"docker_id": short_id(container_id), "error": str(e)},
                )

        await self._retry("stop", short_id(container_id), attempt, lambda e: True)
        self.audit.log_event(AuditEventType.CONTAINER_STOP, container_id=container_id)
