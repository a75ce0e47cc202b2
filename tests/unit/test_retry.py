"""
Unit tests for retry_with_backoff and the retry policies.

Tests cover:
- Immediate return on success
- Exponential and fixed delays between attempts
- Re-raising the last error with a note after exhaustion
- Errors outside the policy not being retried
"""

import pytest

from edu_migration.client.exceptions import (
    NameConflictError,
    ServerError,
    ServiceUnavailableError,
)
from edu_migration.utils.retry import (
    RetryPolicy,
    generic_policy,
    retry_with_backoff,
    service_unavailable_policy,
)


class Flaky:
    """Operation that fails a fixed number of times before succeeding."""

    def __init__(self, failures: list[Exception], result: str = "done") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


class TestRetryWithBackoff:
    """Tests for the retry loop."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleeps):
        """A successful first attempt never sleeps."""
        operation = Flaky([])

        assert await retry_with_backoff(operation, RetryPolicy(), sleep=sleeps) == "done"
        assert operation.calls == 1
        assert sleeps.calls == []

    @pytest.mark.asyncio
    async def test_exponential_delays(self, sleeps):
        """Delays double from the initial delay."""
        operation = Flaky([ServerError("boom"), ServerError("boom")])
        policy = RetryPolicy(max_attempts=3, initial_delay=0.5, multiplier=2.0)

        assert await retry_with_backoff(operation, policy, sleep=sleeps) == "done"
        assert operation.calls == 3
        assert sleeps.calls == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error_with_note(self, sleeps):
        """After the last attempt the final error surfaces, annotated."""
        last = ServerError("third")
        operation = Flaky([ServerError("first"), ServerError("second"), last])

        with pytest.raises(ServerError) as exc_info:
            await retry_with_backoff(
                operation, RetryPolicy(max_attempts=3), context="lookup", sleep=sleeps
            )

        assert exc_info.value is last
        assert "lookup failed after 3 attempts" in exc_info.value.__notes__
        assert len(sleeps.calls) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_raises_immediately(self, sleeps):
        """Errors outside retry_on are not retried."""
        operation = Flaky([NameConflictError("USER_NAME_EXIST")])

        with pytest.raises(NameConflictError):
            await retry_with_backoff(operation, RetryPolicy(max_attempts=5), sleep=sleeps)

        assert operation.calls == 1
        assert sleeps.calls == []


class TestPolicies:
    """Tests for the policy factories."""

    @pytest.mark.asyncio
    async def test_service_unavailable_policy_waits_fixed_interval(self, sleeps):
        """503s are waited out at a constant interval."""
        operation = Flaky([ServiceUnavailableError("busy", status_code=503)] * 4)

        result = await retry_with_backoff(
            operation, service_unavailable_policy(max_attempts=10, delay=0.5), sleep=sleeps
        )

        assert result == "done"
        assert sleeps.calls == [0.5, 0.5, 0.5, 0.5]

    @pytest.mark.asyncio
    async def test_service_unavailable_policy_ignores_other_server_errors(self, sleeps):
        """Only 503 is retried by the overload policy."""
        operation = Flaky([ServerError("boom", status_code=500)])

        with pytest.raises(ServerError):
            await retry_with_backoff(operation, service_unavailable_policy(), sleep=sleeps)

        assert operation.calls == 1

    def test_generic_policy_defaults(self):
        policy = generic_policy()
        assert policy.max_attempts == 3
        assert policy.multiplier == 2.0
        assert ServerError in policy.retry_on
