"""Prometheus metrics collection for Agent Reactor."""

from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """Collects Prometheus metrics for container orchestration."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics collector with all metrics.

        Args:
            registry: Registry to register metrics on (a private one by default)
        """
        self.registry = registry or CollectorRegistry()

        self.operation_attempts_total = Counter(
            "agent_reactor_operation_attempts_total",
            "Total number of engine operation attempts",
            ["operation"],
            registry=self.registry,
        )

        self.operation_retries_total = Counter(
            "agent_reactor_operation_retries_total",
            "Total number of retries after a retryable failure",
            ["operation"],
            registry=self.registry,
        )

        self.operation_failures_total = Counter(
            "agent_reactor_operation_failures_total",
            "Total number of operations that failed after recovery",
            ["operation", "reason"],
            registry=self.registry,
        )

        self.health_check_failures_total = Counter(
            "agent_reactor_health_check_failures_total",
            "Total number of started containers that failed the health check",
            registry=self.registry,
        )

        self.session_outcomes_total = Counter(
            "agent_reactor_session_outcomes_total",
            "Total number of start_or_recover outcomes by strategy",
            ["strategy"],
            registry=self.registry,
        )

        self.containers_reaped_total = Counter(
            "agent_reactor_containers_reaped_total",
            "Total number of idle containers removed by the reaper",
            registry=self.registry,
        )

        self.start_duration_seconds = Histogram(
            "agent_reactor_start_duration_seconds",
            "Time to obtain a running container in seconds",
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=self.registry,
        )

    def record_attempt(self, operation: str) -> None:
        """
        Record an engine operation attempt.

        Args:
            operation: Operation class (start, build, stop)
        """
        self.operation_attempts_total.labels(operation=operation).inc()

    def record_retry(self, operation: str) -> None:
        """
        Record a retry.

        Args:
            operation: Operation class (start, build, stop)
        """
        self.operation_retries_total.labels(operation=operation).inc()

    def record_failure(self, operation: str, reason: str) -> None:
        """
        Record a final operation failure.

        Args:
            operation: Operation class (start, build, stop)
            reason: Failure class (non_retryable, exhausted, unhealthy)
        """
        self.operation_failures_total.labels(operation=operation, reason=reason).inc()

    def record_health_check_failure(self) -> None:
        """Record a container that failed its post-start health check."""
        self.health_check_failures_total.inc()

    def record_session_outcome(self, strategy: str) -> None:
        """
        Record how start_or_recover obtained its container.

        Args:
            strategy: Recovery strategy that succeeded
        """
        self.session_outcomes_total.labels(strategy=strategy).inc()

    def record_reaped(self, count: int = 1) -> None:
        """
        Record reaped idle containers.

        Args:
            count: Number of containers removed
        """
        self.containers_reaped_total.inc(count)

    def record_start_duration(self, duration_seconds: float) -> None:
        """
        Record how long it took to obtain a running container.

        Args:
            duration_seconds: Duration in seconds
        """
        self.start_duration_seconds.observe(duration_seconds)

    def get_metrics(self) -> bytes:
        """
        Get current metrics in Prometheus format.

        Returns:
            Metrics data in bytes
        """
        return generate_latest(self.registry)


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
