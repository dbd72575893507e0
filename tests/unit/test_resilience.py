"""Unit tests for rate limiting, retry classification and timeouts."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import pytest
from azure.devops.exceptions import (
    AzureDevOpsAuthenticationError,
    AzureDevOpsClientRequestError,
    AzureDevOpsServiceError,
)
from msrest.exceptions import ClientRequestError

from doraflow.exceptions import OperationTimeoutError
from doraflow.utils.resilience import RateLimiter, RetryExecutor, is_retryable_error, with_timeout


class FakeClock:
    """Monotonic clock advanced by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class HTTPError(Exception):
    def __init__(self, status_code, message="request failed"):
        super().__init__(message)
        self.status_code = status_code


def service_exception(message):
    """Deserialized service error payload as the SDK hands it to AzureDevOpsServiceError."""
    return SimpleNamespace(
        message=message,
        inner_exception=None,
        exception_id=None,
        type_name="GitRepositoryNotFoundException",
        type_key="GitRepositoryNotFoundException",
        error_code=0,
        event_id=3000,
        custom_properties=None,
    )


class TestRateLimiter:

    @pytest.mark.asyncio
    async def test_acquire_consumes_tokens_without_waiting(self):
        clock = FakeClock()
        limiter = RateLimiter(60, clock=clock, sleep=clock.sleep)

        for _ in range(60):
            await limiter.acquire()

        assert clock.sleeps == []
        assert limiter.tokens == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_acquire_waits_when_bucket_is_empty(self):
        clock = FakeClock()
        limiter = RateLimiter(60, clock=clock, sleep=clock.sleep)
        for _ in range(60):
            await limiter.acquire()

        await limiter.acquire()

        # 60/min refills one token per second
        assert clock.sleeps == [pytest.approx(1.0)]
        assert limiter.tokens == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_refill_is_lazy_and_capped(self):
        clock = FakeClock()
        limiter = RateLimiter(60, clock=clock, sleep=clock.sleep)
        for _ in range(10):
            await limiter.acquire()

        clock.now += 5.0
        await limiter.acquire()
        assert limiter.tokens == pytest.approx(54.0)

        clock.now += 3600.0
        await limiter.acquire()
        assert limiter.tokens == pytest.approx(59.0)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_the_bucket(self):
        clock = FakeClock()
        limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)

        await asyncio.gather(*(limiter.acquire() for _ in range(4)))

        # Two tokens up front, then one every 30s for the other two callers
        assert clock.sleeps == [pytest.approx(30.0), pytest.approx(30.0)]

    def test_reset_refills(self):
        limiter = RateLimiter(10)
        limiter.tokens = 0
        limiter.reset()
        assert limiter.tokens == 10

    def test_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            RateLimiter(0)


class TestIsRetryableError:

    @pytest.mark.parametrize("error", [
        HTTPError(429),
        HTTPError(500),
        HTTPError(503),
        ConnectionError("reset"),
        asyncio.TimeoutError(),
        OperationTimeoutError("get_builds", 30),
        ClientRequestError("Error occurred in request.", inner_exception=OSError("Connection aborted")),
        Exception("ECONNRESET while reading"),
        Exception("Rate limit exceeded, retry later"),
        Exception("Request failed with status 502"),
    ])
    def test_retryable(self, error):
        assert is_retryable_error(error) is True

    @pytest.mark.parametrize("error", [
        HTTPError(400),
        HTTPError(401),
        HTTPError(403),
        HTTPError(404),
        Exception("TF401019: The Git repository does not exist (404)"),
        ValueError("malformed build"),
        ClientRequestError("Error occurred in request."),
    ])
    def test_fatal(self, error):
        assert is_retryable_error(error) is False

    @pytest.mark.parametrize("status_code, retryable", [
        (400, False),
        (403, False),
        (404, False),
        (429, True),
        (500, True),
        (503, True),
    ])
    def test_sdk_request_errors_are_classified_by_status(self, status_code, retryable):
        error = AzureDevOpsClientRequestError(f"Operation returned a {status_code} status code.")

        assert is_retryable_error(error) is retryable

    def test_sdk_service_error_without_status_is_fatal(self):
        error = AzureDevOpsServiceError(service_exception(
            "TF401019: The Git repository with name or identifier api does not exist."
        ))

        assert is_retryable_error(error) is False

    def test_sdk_service_error_with_status_is_classified(self):
        error = AzureDevOpsServiceError(service_exception("VS402490: Service returned 503, try again later."))

        assert is_retryable_error(error) is True

    def test_sdk_authentication_error_is_fatal(self):
        error = AzureDevOpsAuthenticationError(
            "The requested resource requires user authentication: https://dev.azure.com/contoso"
        )

        assert is_retryable_error(error) is False

    def test_status_from_wrapped_response(self):
        error = Exception("service unavailable")
        error.response = Mock(status_code=503)
        assert is_retryable_error(error) is True


class TestRetryExecutor:

    @pytest.fixture
    def limiter(self):
        limiter = Mock(spec=RateLimiter)
        limiter.acquire = AsyncMock()
        return limiter

    @pytest.mark.asyncio
    async def test_returns_first_success(self, limiter):
        sleep = AsyncMock()
        executor = RetryExecutor(limiter, max_retries=3, sleep=sleep)
        operation = AsyncMock(side_effect=[HTTPError(503), HTTPError(429), "ok"])

        result = await executor.execute(operation, operation_name="get_builds")

        assert result == "ok"
        assert operation.await_count == 3
        assert limiter.acquire.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self, limiter):
        sleep = AsyncMock()
        executor = RetryExecutor(limiter, max_retries=3, sleep=sleep)
        error = HTTPError(404)
        operation = AsyncMock(side_effect=error)

        with pytest.raises(HTTPError) as exc_info:
            await executor.execute(operation)

        assert exc_info.value is error
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_original_error_after_retries_exhausted(self, limiter):
        executor = RetryExecutor(limiter, max_retries=2, sleep=AsyncMock())
        operation = AsyncMock(side_effect=HTTPError(500, "boom"))

        with pytest.raises(HTTPError, match="boom"):
            await executor.execute(operation)

        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_per_call_retry_override(self, limiter):
        executor = RetryExecutor(limiter, max_retries=3, sleep=AsyncMock())
        operation = AsyncMock(side_effect=HTTPError(503))

        with pytest.raises(HTTPError):
            await executor.execute(operation, max_retries=0)

        assert operation.await_count == 1

    def test_backoff_delay_grows_and_is_capped(self, limiter):
        executor = RetryExecutor(limiter, min_timeout=1.0, max_timeout=30.0)

        with patch("doraflow.utils.resilience.random.uniform", return_value=1.5):
            assert executor.backoff_delay(0) == 1.5
            assert executor.backoff_delay(2) == 6.0
            assert executor.backoff_delay(10) == 30.0


class TestWithTimeout:

    @pytest.mark.asyncio
    async def test_returns_result_within_budget(self):
        async def quick():
            return 42

        assert await with_timeout(quick(), 1.0, "quick") == 42

    @pytest.mark.asyncio
    async def test_raises_distinct_timeout_error(self):
        with pytest.raises(OperationTimeoutError) as exc_info:
            await with_timeout(asyncio.sleep(1), 0.01, "get_threads")

        assert exc_info.value.timed_out is True
        assert exc_info.value.operation_name == "get_threads"
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_budget_means_no_limit(self):
        async def quick():
            return "done"

        assert await with_timeout(quick(), None) == "done"
