"""CI pipeline run data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class CIRunStatus(str, Enum):
    """Execution status of a CI run."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLING = "cancelling"
    UNKNOWN = "unknown"


class CIRunConclusion(str, Enum):
    """Outcome of a completed CI run."""

    SUCCESS = "success"
    PARTIALLY_SUCCEEDED = "partially_succeeded"
    FAILURE = "failure"
    CANCELLED = "cancelled"


class CIRunData(BaseModel):
    """
    Persisted shape of a CI run.

    ``run_id`` is "<project>-<build id>". ``is_flaky`` and
    ``flaky_test_count`` are written only by the flaky detector.
    """

    run_id: str
    workflow_name: str
    repo_name: str
    org_name: str
    project_name: str
    branch: Optional[str] = None
    commit_sha: Optional[str] = None
    pr_number: Optional[int] = None
    status: CIRunStatus
    conclusion: Optional[CIRunConclusion] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    is_flaky: bool = False
    flaky_test_count: int = 0
    failure_reason: Optional[str] = None
    jobs_count: int = 0
    failed_jobs_count: int = 0
