"""
Resilience utilities for calls against the Azure DevOps API.

This module provides:
- RateLimiter, a lazily refilled token bucket bounding outbound request rate
- RetryExecutor, exponential backoff with jitter around a single remote call
- is_retryable_error, the one place where retry classification lives
- with_timeout, a wall-clock guard raising OperationTimeoutError
"""

import asyncio
import random
import re
import time
from typing import Awaitable, Callable, Optional, TypeVar

from azure.devops.exceptions import AzureDevOpsServiceError
from msrest.exceptions import AuthenticationError, ClientRequestError

from doraflow.exceptions import OperationTimeoutError
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

RETRYABLE_STATUS_CODES = {429}
FATAL_STATUS_CODES = {400, 401, 403, 404}

_NETWORK_ERROR_MARKERS = (
    "econnreset",
    "etimedout",
    "enotfound",
    "econnrefused",
    "connection reset",
    "connection refused",
    "connection aborted",
    "timed out",
    "name or service not known",
    "temporary failure in name resolution",
)


class RateLimiter:
    """
    Token bucket rate limiter for Azure DevOps API calls.

    The bucket holds at most ``requests_per_minute`` tokens and refills
    continuously at ``requests_per_minute / 60000`` tokens per millisecond.
    Refill is computed on each ``acquire()`` from the elapsed time; there is
    no background timer. Waiters are served in call order.

    Args:
        requests_per_minute: Maximum sustained request rate
        clock: Monotonic clock in seconds (injectable for tests)
        sleep: Async sleep function (injectable for tests)
    """

    def __init__(
        self,
        requests_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")

        self.max_tokens = float(requests_per_minute)
        self.refill_rate = requests_per_minute / 60000  # tokens per millisecond
        self.tokens = self.max_tokens
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_refill) * 1000
        self.tokens = min(self.max_tokens, self.tokens + elapsed_ms * self.refill_rate)
        self._last_refill = now

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            self._refill()

            if self.tokens < 1:
                wait_ms = (1 - self.tokens) / self.refill_rate
                logger.debug(f"Rate limit reached, waiting {wait_ms:.0f}ms for a token")
                await self._sleep(wait_ms / 1000)
                self._refill()

            self.tokens -= 1

    def reset(self) -> None:
        """Refill the bucket completely."""
        self.tokens = self.max_tokens
        self._last_refill = self._clock()


def _status_code(error: BaseException) -> Optional[int]:
    """Best-effort HTTP status extraction from SDK and msrest errors."""
    for candidate in (error, getattr(error, "response", None), getattr(error, "inner_exception", None)):
        if candidate is None:
            continue
        code = getattr(candidate, "status_code", None)
        if isinstance(code, int):
            return code

    match = re.search(r"\b(4\d{2}|5\d{2})\b", str(error))
    if match:
        return int(match.group(1))
    return None


def is_retryable_error(error: BaseException) -> bool:
    """
    Determine if an error should be retried.

    Retryable: network-class errors (reset, timeout, refused, DNS failure),
    HTTP 429 and HTTP 5xx. Fatal: HTTP 400/401/403/404, authentication
    failures, service errors reported without a status and anything not
    recognised.

    The SDK raises ``AzureDevOpsClientRequestError`` (a msrest
    ``ClientRequestError``) for every non-2xx response, so the HTTP status is
    classified before the exception type. A ``ClientRequestError`` without a
    status is retried only when it wraps a transport-level error.
    """
    if isinstance(error, (OperationTimeoutError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    if isinstance(error, AuthenticationError):
        return False

    status = _status_code(error)
    if status is not None:
        if status in FATAL_STATUS_CODES:
            return False
        if status in RETRYABLE_STATUS_CODES or 500 <= status <= 599:
            return True

    if isinstance(error, AzureDevOpsServiceError):
        return False

    if isinstance(error, ClientRequestError) and error.inner_exception is not None:
        return True

    message = str(error).lower()
    if "rate limit" in message:
        return True
    return any(marker in message for marker in _NETWORK_ERROR_MARKERS)


class RetryExecutor:
    """
    Executes a remote operation with rate limiting and exponential backoff.

    Every attempt first acquires a rate limit token. Fatal errors propagate
    immediately; retryable errors are retried up to ``max_retries`` times with
    a delay of ``min(max_timeout, min_timeout * 2**attempt * jitter)`` where
    jitter is drawn from [1, 2). The original error propagates once retries
    are exhausted.

    Args:
        rate_limiter: Shared token bucket
        max_retries: Default number of retries after the first attempt
        min_timeout: Base delay in seconds
        max_timeout: Delay cap in seconds
        sleep: Async sleep function (injectable for tests)
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        max_retries: int = 3,
        min_timeout: float = 1.0,
        max_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.min_timeout = min_timeout
        self.max_timeout = max_timeout
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before retrying after the given 0-based attempt."""
        jitter = random.uniform(1.0, 2.0)
        return min(self.max_timeout, self.min_timeout * (2 ** attempt) * jitter)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        operation_name: str = "operation",
    ) -> T:
        """
        Run ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            max_retries: Override for the executor's default retry count
            operation_name: Name used in log messages

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The operation's own error, when fatal or after retries run out
        """
        retries = self.max_retries if max_retries is None else max_retries
        total_attempts = retries + 1

        for attempt in range(total_attempts):
            await self.rate_limiter.acquire()
            try:
                result = await operation()
            except Exception as e:
                if not is_retryable_error(e):
                    logger.error(
                        f"{operation_name} failed with non-retryable error: {e}",
                        extra={"operation": operation_name, "error_type": type(e).__name__},
                    )
                    raise

                if attempt == total_attempts - 1:
                    logger.error(
                        f"{operation_name} failed after {total_attempts} attempts: {e}",
                        extra={"operation": operation_name, "error_type": type(e).__name__},
                    )
                    raise

                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"{operation_name} failed (attempt {attempt + 1}/{total_attempts}): {e}. "
                    f"Retrying in {delay:.1f}s...",
                    extra={"operation": operation_name, "attempt": attempt + 1},
                )
                await self._sleep(delay)
                continue

            if attempt > 0:
                logger.info(f"{operation_name} succeeded on attempt {attempt + 1}/{total_attempts}")
            return result

        # range() above always returns or raises
        raise RuntimeError(f"{operation_name} exited retry loop unexpectedly")


async def with_timeout(
    operation: Awaitable[T],
    timeout_seconds: Optional[float],
    operation_name: str = "operation",
) -> T:
    """
    Await ``operation`` under a wall-clock budget.

    Raises:
        OperationTimeoutError: If the budget is exceeded
    """
    if timeout_seconds is None:
        return await operation
    try:
        return await asyncio.wait_for(operation, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(operation_name, timeout_seconds) from e
