"""Metric result models."""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class DeploymentFrequency(BaseModel):
    count: int = 0


class ChangeFailureRate(BaseModel):
    percentage: float = 0.0
    failed_count: int = 0
    total_count: int = 0


class PercentileMetric(BaseModel):
    """p50/p90 in hours over ``count`` samples; percentiles are None with no samples."""

    p50_hours: Optional[float] = None
    p90_hours: Optional[float] = None
    count: int = 0


class PRSizeDistribution(BaseModel):
    """Merged PR counts per size bucket (additions + deletions)."""

    xs: int = 0
    s: int = 0
    m: int = 0
    l: int = 0  # noqa: E741
    xl: int = 0
    total: int = 0
    percentages: Dict[str, float] = Field(
        default_factory=lambda: {"xs": 0.0, "s": 0.0, "m": 0.0, "l": 0.0, "xl": 0.0}
    )


class DoraSummary(BaseModel):
    """All four DORA metrics for one window and scope."""

    deployment_frequency: DeploymentFrequency = Field(default_factory=DeploymentFrequency)
    lead_time: PercentileMetric = Field(default_factory=PercentileMetric)
    change_failure_rate: ChangeFailureRate = Field(default_factory=ChangeFailureRate)
    mttr: PercentileMetric = Field(default_factory=PercentileMetric)
