"""
Step-level timing and status tracking for ingestion runs.

This module provides:
- StepMetric, the structured timing/status record of one instrumented step
- run_step, a helper that runs an operation under an optional timeout and
  returns both its result and its StepMetric without raising
- StepTracker, which collects StepMetrics for a whole run
"""

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

from doraflow.exceptions import OperationTimeoutError
from doraflow.utils.logging import get_logger, log_step
from doraflow.utils.resilience import with_timeout

logger = get_logger(__name__)

T = TypeVar('T')


class StepStatus(str, Enum):
    """Outcome of an instrumented step."""

    SUCCESS = "success"
    ERROR = "error"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class StepMetric(BaseModel):
    """Timing and status record of one instrumented step."""

    step_name: str
    start_time: datetime
    duration_ms: float
    status: StepStatus
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StepOutcome(Generic[T]):
    """Result of run_step: the value (if any), the metric and the error (if any)."""

    __slots__ = ("result", "metric", "error")

    def __init__(self, result: Optional[T], metric: StepMetric, error: Optional[BaseException] = None):
        self.result = result
        self.metric = metric
        self.error = error

    @property
    def ok(self) -> bool:
        return self.metric.status == StepStatus.SUCCESS


async def run_step(
    step_name: str,
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: Optional[float] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> StepOutcome[T]:
    """
    Run an operation as a named, timed step.

    The operation's failure is captured rather than raised: a timeout yields
    status ``timeout`` with an OperationTimeoutError, any other exception
    yields status ``error``.

    Args:
        step_name: Step name used in logs and the metric
        operation: Zero-argument coroutine factory
        timeout_seconds: Wall-clock budget, or None for no limit
        metadata: Extra fields attached to the metric

    Returns:
        StepOutcome carrying result, metric and error
    """
    started_at = datetime.now(timezone.utc)
    start = time.perf_counter()
    result: Optional[T] = None
    error: Optional[BaseException] = None
    status = StepStatus.SUCCESS

    try:
        result = await with_timeout(operation(), timeout_seconds, step_name)
    except OperationTimeoutError as e:
        error = e
        status = StepStatus.TIMEOUT
    except Exception as e:
        error = e
        status = StepStatus.ERROR

    duration_ms = (time.perf_counter() - start) * 1000
    metric = StepMetric(
        step_name=step_name,
        start_time=started_at,
        duration_ms=round(duration_ms, 2),
        status=status,
        error=str(error) if error is not None else None,
        metadata=dict(metadata or {}),
    )
    log_step(logger, step_name, status.value, duration_ms, metric.error)

    return StepOutcome(result, metric, error)


class StepTracker:
    """
    Collects StepMetrics across a run.

    Usage:
        tracker = StepTracker()
        builds = await tracker.track("fetch-builds", fetch, timeout_seconds=60)
        result.metrics = tracker.metrics
    """

    def __init__(self):
        self.metrics: List[StepMetric] = []

    async def track(
        self,
        step_name: str,
        operation: Callable[[], Awaitable[T]],
        timeout_seconds: Optional[float] = None,
        **metadata: Any,
    ) -> T:
        """
        Run an instrumented step and record its metric.

        Raises:
            OperationTimeoutError: If the step exceeded its budget
            Exception: The operation's own error
        """
        outcome = await run_step(step_name, operation, timeout_seconds, metadata)
        self.metrics.append(outcome.metric)
        if outcome.error is not None:
            raise outcome.error
        return outcome.result

    def skip(self, step_name: str, **metadata: Any) -> None:
        """Record a step that was not executed."""
        self.metrics.append(StepMetric(
            step_name=step_name,
            start_time=datetime.now(timezone.utc),
            duration_ms=0.0,
            status=StepStatus.SKIPPED,
            metadata=metadata,
        ))

    def summary(self) -> Dict[str, Any]:
        """Aggregate counts and total duration per status."""
        by_status: Dict[str, int] = {}
        for metric in self.metrics:
            by_status[metric.status.value] = by_status.get(metric.status.value, 0) + 1
        return {
            "steps": len(self.metrics),
            "by_status": by_status,
            "total_duration_ms": round(sum(m.duration_ms for m in self.metrics), 2),
        }
