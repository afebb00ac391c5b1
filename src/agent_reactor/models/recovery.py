"""Retry and health-check policy for the recovery engine."""

from pydantic import BaseModel, Field

from agent_reactor.config import Settings


class RecoveryPolicy(BaseModel):
    """Retry/backoff tuning for engine operations."""

    model_config = {"frozen": True}

    max_attempts: int = Field(default=3, ge=1)
    initial_delay_s: float = Field(default=1.0, gt=0)
    max_delay_s: float = Field(default=10.0, gt=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    health_check_attempts: int = Field(default=5, ge=1)
    health_check_delay_s: float = Field(default=1.0, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecoveryPolicy":
        """Build a policy from application settings."""
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay_s=settings.initial_delay_s,
            max_delay_s=settings.max_delay_s,
            backoff_multiplier=settings.backoff_multiplier,
            health_check_attempts=settings.health_check_attempts,
            health_check_delay_s=settings.health_check_delay_s,
        )

    def backoff_delay(self, attempt: int) -> float:
        """
        Delay to wait after a failed attempt before the next one.

        Args:
            attempt: 1-based number of the attempt that just failed

        Returns:
            ``min(initial * multiplier ** (attempt - 1), max_delay)`` in seconds
        """
        delay = self.initial_delay_s
        # Stops growing at the cap
        for _ in range(attempt - 1):
            if delay >= self.max_delay_s:
                break
            delay *= self.backoff_multiplier
        return min(delay, self.max_delay_s)
