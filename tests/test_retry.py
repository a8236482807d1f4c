"""
Tests for the retry policy.
"""

from typing import List, Optional
from unittest.mock import AsyncMock, patch

import pytest

from manta_mpu.core.exceptions import (
    AuthenticationError, ExhaustedRetriesError, MultipartUploadError,
    ServiceUnavailableError, TransportError
)
from manta_mpu.core.services.retry import RetryPolicy


class Flaky:
    """Operation that fails a given number of times before succeeding."""

    def __init__(self, failures: int, error: type = ServiceUnavailableError):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return "done"


class TestRetryPolicyConfig:
    """Test cases for policy construction."""

    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 5
        assert policy.jitter is True

    @pytest.mark.parametrize("kwargs", [
        {"max_attempts": 0},
        {"base_delay": -1},
        {"max_delay": -0.5},
        {"multiplier": 0.5},
        {"max_elapsed": 0},
    ])
    def test_invalid_values(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_no_retry(self) -> None:
        assert RetryPolicy.no_retry().max_attempts == 1

    def test_compute_delay_exponential_capped(self) -> None:
        policy = RetryPolicy(base_delay=0.5, multiplier=2.0, max_delay=3.0, jitter=False)
        assert [policy.compute_delay(a) for a in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_compute_delay_full_jitter(self) -> None:
        policy = RetryPolicy(base_delay=1.0, multiplier=2.0, max_delay=10.0, jitter=True)
        with patch("manta_mpu.core.services.retry.random.uniform", return_value=0.25) as uniform:
            assert policy.compute_delay(3) == 0.25
        uniform.assert_called_once_with(0, 4.0)


class TestRetryPolicyRun:
    """Test cases for RetryPolicy.run."""

    @pytest.fixture
    def sleep(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=4, base_delay=0.1, multiplier=2.0, jitter=False)

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, policy: RetryPolicy, sleep: AsyncMock) -> None:
        operation = Flaky(0)
        assert await policy.run(operation, sleep=sleep) == "done"
        assert operation.calls == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, policy: RetryPolicy, sleep: AsyncMock) -> None:
        operation = Flaky(2, TransportError)
        assert await policy.run(operation, sleep=sleep) == "done"
        assert operation.calls == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_unchanged(
        self, policy: RetryPolicy, sleep: AsyncMock
    ) -> None:
        operation = Flaky(1, AuthenticationError)
        with pytest.raises(AuthenticationError) as exc_info:
            await policy.run(operation, context={"session_id": "s1"}, sleep=sleep)
        assert operation.calls == 1
        assert exc_info.value.context["session_id"] == "s1"
        assert exc_info.value.context["attempt"] == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_exhausted_attempts(self, policy: RetryPolicy, sleep: AsyncMock) -> None:
        operation = Flaky(10)
        with pytest.raises(ExhaustedRetriesError) as exc_info:
            await policy.run(operation, context={"session_id": "s1", "part_number": 2}, sleep=sleep)

        error = exc_info.value
        assert operation.calls == 4
        assert error.attempts == 4
        assert isinstance(error.last_error, ServiceUnavailableError)
        assert error.__cause__ is error.last_error
        assert error.session_id == "s1"
        assert error.part_number == 2
        assert sleep.await_count == 3

    @pytest.mark.asyncio
    async def test_elapsed_ceiling_stops_retries(self, sleep: AsyncMock) -> None:
        policy = RetryPolicy(max_attempts=10, base_delay=5.0, jitter=False, max_elapsed=1.0)
        operation = Flaky(10)
        with pytest.raises(ExhaustedRetriesError) as exc_info:
            await policy.run(operation, sleep=sleep)
        assert operation.calls == 1
        assert exc_info.value.attempts == 1
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_before_retry_result_ends_loop(self, policy: RetryPolicy, sleep: AsyncMock) -> None:
        operation = Flaky(10)
        seen: List[int] = []

        async def resolve(attempt: int, error: MultipartUploadError) -> Optional[str]:
            seen.append(attempt)
            return "resolved" if attempt == 2 else None

        assert await policy.run(operation, before_retry=resolve, sleep=sleep) == "resolved"
        assert seen == [1, 2]
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_unrelated_exceptions_are_not_caught(self, policy: RetryPolicy, sleep: AsyncMock) -> None:
        async def broken() -> None:
            raise KeyError("bug")

        with pytest.raises(KeyError):
            await policy.run(broken, sleep=sleep)
