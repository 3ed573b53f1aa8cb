"""
RetryExecutor - Retries transient failures with exponential backoff.

Failures are classified before every retry decision:
- Non-retryable kinds (not_found, validation, payment_required) fail fast
- Retryable kinds wait base_delay, base_delay * multiplier, ... (capped)
- The optional per-attempt timeout turns a hung call into a timeout error,
  which is itself retryable
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from loguru import logger

from profile_service.services.classifier import (
    RETRYABLE_KINDS,
    ErrorKind,
    classify_error,
)
from profile_service.services.errors import RequestTimeoutError

T = TypeVar("T")
ItemT = TypeVar("ItemT")

JITTER_RATIO = 0.1


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for a single operation."""

    max_attempts: int = 3
    base_delay_ms: float = 1000
    backoff_multiplier: float = 2.0
    max_delay_ms: float = 10000
    retryable_kinds: frozenset[ErrorKind] = field(default=RETRYABLE_KINDS)
    jitter: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must not be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be at least 1")

    def delay_for(self, retry_number: int) -> float:
        """Delay in ms before retry ``retry_number`` (1-based), without jitter."""
        delay = self.base_delay_ms * self.backoff_multiplier ** (retry_number - 1)
        return min(delay, self.max_delay_ms)


@dataclass
class BatchResult(Generic[ItemT]):
    """Outcome of one item in a batch run."""

    item: ItemT
    result: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RetryExecutor:
    """
    Runs async operations with retry, backoff and timeouts.

    Usage:
        executor = RetryExecutor()
        policy = RetryPolicy(max_attempts=3, base_delay_ms=200)

        record = await executor.with_retry_and_timeout(
            lambda: repository.get_user_record_by_id(user_id),
            policy,
            timeout_ms=5000,
        )
    """

    def __init__(
        self,
        default_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        debug: bool = False,
    ):
        self.default_policy = default_policy or RetryPolicy()
        self._sleep = sleep
        self._debug = debug

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """
        Execute ``operation`` until it succeeds or a stop condition is hit.

        Raises the last exception unchanged.
        """
        policy = policy or self.default_policy

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                classified = classify_error(e)

                if (
                    not classified.retryable
                    or classified.kind not in policy.retryable_kinds
                    or attempt == policy.max_attempts
                ):
                    self._log(
                        f"GIVE UP: attempt {attempt}/{policy.max_attempts} "
                        f"({classified.kind.value})"
                    )
                    raise

                delay_ms = self._with_jitter(policy.delay_for(attempt), policy)
                logger.warning(
                    f"Retry attempt {attempt}/{policy.max_attempts} after "
                    f"{delay_ms:.0f}ms for error: {classified.kind.value}"
                )
                if on_retry:
                    on_retry(attempt, e)

                await self._sleep(delay_ms / 1000)

        # Unreachable: the loop either returns or raises
        raise RuntimeError("retry loop exited without a result")

    async def with_timeout(
        self,
        operation: Callable[[], Awaitable[T]],
        timeout_ms: float,
        message: str = "Operation timed out",
    ) -> T:
        """
        Run ``operation`` with a deadline.

        On timeout the operation is cancelled and RequestTimeoutError raised.
        """
        try:
            return await asyncio.wait_for(operation(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(timeout_ms, message) from e

    async def with_retry_and_timeout(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
        timeout_ms: float = 30000,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Timeout applies to each attempt; retry governs attempts."""
        return await self.with_retry(
            lambda: self.with_timeout(operation, timeout_ms),
            policy,
            on_retry=on_retry,
        )

    async def batch_with_retry(
        self,
        items: Iterable[ItemT],
        fn: Callable[[ItemT], Awaitable[Any]],
        policy: RetryPolicy | None = None,
        concurrency: int = 3,
    ) -> list[BatchResult[ItemT]]:
        """
        Apply ``fn`` to every item under retry, at most ``concurrency`` at a
        time. Results come back in input order; failures are captured, not
        raised.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        semaphore = asyncio.Semaphore(concurrency)

        async def run(item: ItemT) -> BatchResult[ItemT]:
            async with semaphore:
                try:
                    result = await self.with_retry(lambda: fn(item), policy)
                    return BatchResult(item=item, result=result)
                except Exception as e:
                    return BatchResult(item=item, error=e)

        return list(await asyncio.gather(*(run(item) for item in items)))

    @staticmethod
    def _with_jitter(delay_ms: float, policy: RetryPolicy) -> float:
        if not policy.jitter or delay_ms <= 0:
            return delay_ms
        return delay_ms + random.uniform(0, delay_ms * JITTER_RATIO)

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[RetryExecutor] {message}")
