"""
Utility modules for doraflow.
"""

from doraflow.utils.logging import (
    get_logger,
    setup_logging,
    log_api_call,
    log_step,
    log_error_with_context,
)
from doraflow.utils.resilience import (
    RateLimiter,
    RetryExecutor,
    is_retryable_error,
    with_timeout,
)
from doraflow.utils.metrics import (
    StepMetric,
    StepStatus,
    StepTracker,
    run_step,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_api_call",
    "log_step",
    "log_error_with_context",
    "RateLimiter",
    "RetryExecutor",
    "is_retryable_error",
    "with_timeout",
    "StepMetric",
    "StepStatus",
    "StepTracker",
    "run_step",
]
