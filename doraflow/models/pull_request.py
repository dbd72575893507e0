"""Pull request data models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PullRequestState(str, Enum):
    """Lifecycle state of a pull request."""

    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class PullRequestData(BaseModel):
    """
    Persisted shape of a pull request.

    Identity is (pr_number, repo_name, project_name); PR numbers restart per
    repository. ``updated_at`` is the source system's last-modification time.
    """

    pr_number: int
    repo_name: str
    org_name: str
    project_name: str
    title: str
    author: str
    state: PullRequestState
    created_at: datetime
    updated_at: datetime
    closed_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    first_review_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    labels: List[str] = Field(default_factory=list)
    is_draft: bool = False
    base_branch: str = "main"
    head_branch: Optional[str] = None

    @property
    def natural_key(self) -> tuple:
        return (self.pr_number, self.repo_name, self.project_name)


class ReviewTimestamps(BaseModel):
    """Derived review timestamps; ``error`` is set when enrichment failed."""

    first_review_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None
