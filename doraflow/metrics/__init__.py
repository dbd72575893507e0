"""Windowed DORA, pull request and CI metrics."""

from .ci import CIMetrics
from .dora import DoraMetrics
from .engine import MetricsEngine
from .percentile import percentile_cont, percentile_metric
from .pull_requests import PullRequestMetrics

__all__ = [
    "MetricsEngine",
    "DoraMetrics",
    "PullRequestMetrics",
    "CIMetrics",
    "percentile_cont",
    "percentile_metric",
]
