"""Continuous percentiles over duration samples."""

import math
from datetime import datetime
from typing import Iterable, Optional, Sequence

from doraflow.models.metrics import PercentileMetric

SECONDS_PER_HOUR = 3600.0


def percentile_cont(samples: Iterable[float], fraction: float) -> Optional[float]:
    """
    Continuous percentile with linear interpolation between closest ranks.

    Same semantics as SQL ``percentile_cont(fraction) WITHIN GROUP (ORDER BY x)``.
    Returns None for no samples.
    """
    if not 0.0 <= fraction <= 1.0:
        raise ValueError("fraction must be between 0 and 1")

    ordered = sorted(samples)
    if not ordered:
        return None

    position = (len(ordered) - 1) * fraction
    lower = math.floor(position)
    upper = math.ceil(position)
    if lower == upper:
        return float(ordered[lower])
    return ordered[lower] + (ordered[upper] - ordered[lower]) * (position - lower)


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / SECONDS_PER_HOUR


def percentile_metric(samples_hours: Sequence[float]) -> PercentileMetric:
    """p50/p90 summary of samples in hours."""
    return PercentileMetric(
        p50_hours=percentile_cont(samples_hours, 0.5),
        p90_hours=percentile_cont(samples_hours, 0.9),
        count=len(samples_hours),
    )
