"""
tributary/retry.py

Bounded retry with exponential backoff and a per-attempt timeout.

All network operations in discovery and distribution go through one
RetryController so backoff, jitter and timeout behave the same everywhere.

Usage:
    retry = RetryController.from_config(config, metrics)

    balance = await retry.run(lambda: gateway.get_token_balance(account), "get_token_balance")
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from .errors import NetworkError, RetryExhaustedError, RpcTimeoutError
from .metrics import DistributionMetrics

logger = logging.getLogger("tributary.retry")

T = TypeVar("T")


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = False,
        attempt_timeout: Optional[float] = 30.0,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.attempt_timeout = attempt_timeout

    def get_delay(self, attempt: int) -> float:
        """Delay after the given (0-based) failed attempt."""
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay,
        )
        if self.jitter:
            delay *= (0.5 + random.random())
        return delay


class RetryController:
    """
    Runs an async operation with retries.

    Only NetworkError (including RpcTimeoutError) and asyncio timeouts are
    retried. Anything else propagates on the first occurrence: a
    ValidationError will not get better by asking again.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        metrics: Optional[DistributionMetrics] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self.metrics = metrics
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config,
        metrics: Optional[DistributionMetrics] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> "RetryController":
        """Build from a TributaryConfig."""
        return cls(
            RetryConfig(
                max_attempts=config.max_attempts,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
                jitter=config.retry_jitter,
                attempt_timeout=config.request_timeout,
            ),
            metrics=metrics,
            sleep=sleep,
        )

    async def run(self, operation: Callable[[], Awaitable[T]], name: str = "operation") -> T:
        """
        Run an operation until it succeeds or attempts run out.

        Args:
            operation: Zero-argument callable returning a fresh awaitable
            name: Operation name for logs and metrics

        Returns:
            The operation's result

        Raises:
            RetryExhaustedError: if every attempt failed with a retryable error
        """
        result, _ = await self.run_with_attempts(operation, name)
        return result

    async def run_with_attempts(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str = "operation",
    ) -> Tuple[T, int]:
        """Like run(), also returning how many attempts were made."""
        start_time = time.time()
        last_error: Optional[BaseException] = None

        for attempt in range(self.config.max_attempts):
            try:
                result = await self._attempt(operation, name)
                self._record(name, True, start_time, attempt + 1)
                return result, attempt + 1

            except NetworkError as e:
                last_error = e
                logger.warning(f"{name} attempt {attempt + 1}/{self.config.max_attempts} failed: {e}")

            if attempt < self.config.max_attempts - 1:
                await self._sleep(self.config.get_delay(attempt))

        self._record(name, False, start_time, self.config.max_attempts, str(last_error))
        raise RetryExhaustedError(name, self.config.max_attempts, last_error)

    async def _attempt(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        timeout = self.config.attempt_timeout
        if timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout)
        except asyncio.TimeoutError as e:
            raise RpcTimeoutError(
                f"{name} timed out after {timeout}s",
                {"operation": name, "timeout": timeout},
            ) from e

    def _record(
        self,
        name: str,
        success: bool,
        start_time: float,
        attempts: int,
        error: Optional[str] = None,
    ) -> None:
        if self.metrics is None:
            return
        self.metrics.record_operation(
            name,
            success,
            (time.time() - start_time) * 1000,
            attempts=attempts,
            error=error,
        )
