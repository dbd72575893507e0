"""Ingestion run data models."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from doraflow.utils.metrics import StepMetric


class ProjectRef(BaseModel):
    """An Azure DevOps project selected for ingestion."""

    id: Optional[str] = None
    name: str


class UpsertAction(str, Enum):
    """Outcome of a smart-merge upsert."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


class IngestionError(BaseModel):
    """A failure recorded during an ingestion run without aborting it."""

    project: Optional[str] = None
    message: str
    error_type: str
    item: Optional[str] = None
    timed_out: bool = False

    @classmethod
    def from_exception(
        cls,
        project: Optional[str],
        error: BaseException,
        item: Optional[str] = None,
        message: Optional[str] = None,
    ) -> "IngestionError":
        return cls(
            project=project,
            message=f"{message}: {error}" if message else (str(error) or type(error).__name__),
            error_type=type(error).__name__,
            item=item,
            timed_out=bool(getattr(error, "timed_out", False)),
        )


class IngestionResult(BaseModel):
    """Summary of a pull request ingestion run."""

    success: bool = True
    projects_processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    enriched: int = 0
    with_reviews: int = 0
    with_approvals: int = 0
    enrichment_errors: int = 0
    errors: List[IngestionError] = Field(default_factory=list)
    duration_seconds: float = 0.0


class CIIngestionResult(BaseModel):
    """Summary of a CI run ingestion run."""

    success: bool = True
    projects_processed: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    flaky_runs_detected: int = 0
    errors: List[IngestionError] = Field(default_factory=list)
    metrics: List[StepMetric] = Field(default_factory=list)
    duration_seconds: float = 0.0


class FlakyDetectionResult(BaseModel):
    """Summary of one flaky detection pass."""

    runs_examined: int = 0
    runs_flagged: int = 0
    batches: int = 0
    timed_out: bool = False
    duration_seconds: float = 0.0
