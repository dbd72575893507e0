"""Data models for doraflow."""

from .ci_run import CIRunConclusion, CIRunData, CIRunStatus
from .deployment import (
    DeploymentCreate,
    DeploymentData,
    DeploymentEnvironment,
    DeploymentStatus,
)
from .ingestion import (
    CIIngestionResult,
    FlakyDetectionResult,
    IngestionError,
    IngestionResult,
    ProjectRef,
    UpsertAction,
)
from .metrics import (
    ChangeFailureRate,
    DeploymentFrequency,
    DoraSummary,
    PercentileMetric,
    PRSizeDistribution,
)
from .pull_request import PullRequestData, PullRequestState, ReviewTimestamps
from .upstream import BuildResult, BuildStatus, PullRequestStatus

__all__ = [
    # Pull request models
    "PullRequestState",
    "PullRequestData",
    "ReviewTimestamps",
    # CI run models
    "CIRunStatus",
    "CIRunConclusion",
    "CIRunData",
    # Deployment models
    "DeploymentEnvironment",
    "DeploymentStatus",
    "DeploymentData",
    "DeploymentCreate",
    # Upstream enums
    "PullRequestStatus",
    "BuildStatus",
    "BuildResult",
    # Ingestion models
    "ProjectRef",
    "UpsertAction",
    "IngestionError",
    "IngestionResult",
    "CIIngestionResult",
    "FlakyDetectionResult",
    # Metric models
    "DeploymentFrequency",
    "ChangeFailureRate",
    "PercentileMetric",
    "PRSizeDistribution",
    "DoraSummary",
]
