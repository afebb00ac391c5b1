"""Property-based tests for retry backoff and error classification."""

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from agent_reactor.managers.recovery_manager import (
    START_FATAL_PATTERNS,
    START_TRANSIENT_PATTERNS,
    is_retryable_start_error,
)
from agent_reactor.models.recovery import RecoveryPolicy
from agent_reactor.utils.exceptions import EngineError

policies = st.builds(
    RecoveryPolicy,
    initial_delay_s=st.floats(min_value=0.01, max_value=30.0),
    max_delay_s=st.floats(min_value=0.01, max_value=120.0),
    backoff_multiplier=st.floats(min_value=1.0, max_value=5.0),
)


@pytest.mark.property
@given(policies)
@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_backoff_is_monotonic_and_capped(policy: RecoveryPolicy):
    """Property: delays never shrink and never exceed the cap."""
    delays = [policy.backoff_delay(attempt) for attempt in range(1, 12)]

    assert delays[0] == min(policy.initial_delay_s, policy.max_delay_s)
    assert all(delay <= policy.max_delay_s for delay in delays)
    assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))


@pytest.mark.property
@given(policies, st.integers(min_value=1, max_value=5000))
@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_backoff_never_overflows(policy: RecoveryPolicy, attempt: int):
    """Property: any attempt number yields a finite delay within the cap."""
    delay = policy.backoff_delay(attempt)

    assert 0 < delay <= policy.max_delay_s
    assert delay >= policy.backoff_delay(max(attempt - 1, 1))


@pytest.mark.property
@given(
    st.sampled_from(START_FATAL_PATTERNS),
    st.sampled_from(START_TRANSIENT_PATTERNS),
    st.text(alphabet="abcdefghijklmnopqrstuvwxyz :/", max_size=30),
)
@settings(suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_fatal_pattern_wins_over_transient(fatal: str, transient: str, noise: str):
    """Property: a message with any fatal pattern is never retried."""
    message = f"Error response from daemon: {transient} {noise} {fatal.upper()}"

    assert is_retryable_start_error(EngineError(message)) is False
