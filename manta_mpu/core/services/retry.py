"""
Retry policy: exponential backoff with full jitter.

Only errors flagged retryable by the taxonomy are retried (transient,
transport and integrity failures). Authentication, validation and state
conflict errors propagate on the first occurrence.

The budget is bounded twice: by a number of attempts and by a ceiling on the
total elapsed time.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from loguru import logger

from ..exceptions import ExhaustedRetriesError, MultipartUploadError

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]
BeforeRetry = Callable[[int, MultipartUploadError], Awaitable[Optional[T]]]


@dataclass
class RetryPolicy:
    """Retry configuration."""

    max_attempts: int = 5
    base_delay: float = 0.1
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    max_elapsed: float = 120.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.max_elapsed <= 0:
            raise ValueError("max_elapsed must be positive")

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        """Single attempt policy."""
        return cls(max_attempts=1)

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        """Build a policy from a RetryConfig."""
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            multiplier=config.multiplier,
            jitter=config.jitter,
            max_elapsed=config.max_elapsed,
        )

    def compute_delay(self, attempt: int) -> float:
        """
        Delay before the retry that follows the given (1-based) attempt.

        Full jitter: random(0, min(max_delay, base * multiplier ** (attempt - 1)))
        """
        delay = min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))
        if self.jitter:
            delay = random.uniform(0, delay)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        context: Optional[Dict[str, Any]] = None,
        before_retry: Optional[BeforeRetry[T]] = None,
        sleep: Sleep = asyncio.sleep,
        description: str = "operation"
    ) -> T:
        """
        Run an async operation under this policy.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            context: Session id, part number etc. attached to raised errors
            before_retry: Hook awaited after a retryable failure and before the
                backoff; a non-None return value ends the loop as the result
            sleep: Sleep function, injectable for tests
            description: Name used in log lines

        Returns:
            The operation result

        Raises:
            ExhaustedRetriesError: If the attempt or time budget ran out
            MultipartUploadError: Any non-retryable error, unchanged
        """
        context = dict(context or {})
        deadline = time.monotonic() + self.max_elapsed
        last_error: Optional[MultipartUploadError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except MultipartUploadError as e:
                e.with_context(**context)
                e.context["attempt"] = attempt
                if not e.retryable:
                    raise
                last_error = e

            logger.warning(
                f"{description} failed (attempt {attempt}/{self.max_attempts}): {last_error}"
            )

            if before_retry is not None:
                resolved = await before_retry(attempt, last_error)
                if resolved is not None:
                    return resolved

            if attempt == self.max_attempts:
                break

            delay = self.compute_delay(attempt)
            if time.monotonic() + delay >= deadline:
                logger.warning(f"{description}: retry time budget of {self.max_elapsed}s exhausted")
                break

            logger.debug(f"Retrying {description} in {delay:.3f}s")
            await sleep(delay)

        raise ExhaustedRetriesError(
            f"{description} failed after {attempt} attempt(s): {last_error.message if last_error else 'unknown error'}",
            last_error=last_error,
            attempts=attempt,
            **context
        ) from last_error
