"""Database tables for pull requests, CI runs and deployments.

Uses SQLAlchemy 2.0 declarative mappings. Backend-agnostic: SQLite through
aiosqlite for local runs and tests, MySQL through aiomysql in production.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from doraflow.models.ci_run import CIRunConclusion, CIRunStatus
from doraflow.models.deployment import DeploymentEnvironment, DeploymentStatus
from doraflow.models.pull_request import PullRequestState


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns timezone-aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls):
    return Enum(
        enum_cls,
        native_enum=False,
        length=50,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Base(DeclarativeBase):
    """Base class for all tables."""
    pass


class PullRequestRow(Base):
    __tablename__ = "pull_requests"
    __table_args__ = (
        UniqueConstraint("pr_number", "repo_name", "project_name", name="uq_pull_request_identity"),
        Index("ix_pull_requests_project_created", "project_name", "created_at"),
        Index("ix_pull_requests_merged_at", "merged_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pr_number: Mapped[int] = mapped_column(Integer, nullable=False)
    repo_name: Mapped[str] = mapped_column(String(255), nullable=False)
    org_name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)

    title: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str] = mapped_column(String(255), nullable=False)
    state: Mapped[PullRequestState] = mapped_column(_enum_column(PullRequestState), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    closed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    merged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    first_review_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    additions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deletions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    changed_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    labels: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    is_draft: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    base_branch: Mapped[str] = mapped_column(String(255), nullable=False, default="main")
    head_branch: Mapped[Optional[str]] = mapped_column(String(255))

    ingested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<PullRequest {self.project_name}/{self.repo_name}#{self.pr_number} {self.state}>"


class CIRunRow(Base):
    __tablename__ = "ci_runs"
    __table_args__ = (
        UniqueConstraint("run_id", name="uq_ci_run_id"),
        Index("ix_ci_runs_flaky_started", "is_flaky", "started_at"),
        Index("ix_ci_runs_project_started", "project_name", "started_at"),
        Index("ix_ci_runs_commit_sha", "commit_sha"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(255), nullable=False)
    workflow_name: Mapped[str] = mapped_column(String(255), nullable=False)

    repo_name: Mapped[str] = mapped_column(String(255), nullable=False)
    org_name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    branch: Mapped[Optional[str]] = mapped_column(String(255))
    commit_sha: Mapped[Optional[str]] = mapped_column(String(64))
    pr_number: Mapped[Optional[int]] = mapped_column(Integer)

    status: Mapped[CIRunStatus] = mapped_column(_enum_column(CIRunStatus), nullable=False)
    conclusion: Mapped[Optional[CIRunConclusion]] = mapped_column(_enum_column(CIRunConclusion))

    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    is_flaky: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    flaky_test_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)

    jobs_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_jobs_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    ingested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<CIRun {self.run_id} {self.status} {self.conclusion}>"


class DeploymentRow(Base):
    __tablename__ = "deployments"
    __table_args__ = (
        UniqueConstraint("deployment_id", name="uq_deployment_id"),
        Index("ix_deployments_env_started", "environment", "started_at"),
        Index("ix_deployments_project", "project_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    deployment_id: Mapped[str] = mapped_column(String(255), nullable=False)
    environment: Mapped[DeploymentEnvironment] = mapped_column(
        _enum_column(DeploymentEnvironment), nullable=False
    )

    repo_name: Mapped[str] = mapped_column(String(255), nullable=False)
    org_name: Mapped[str] = mapped_column(String(255), nullable=False)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)

    commit_sha: Mapped[str] = mapped_column(String(40), nullable=False)
    deployed_by: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[DeploymentStatus] = mapped_column(_enum_column(DeploymentStatus), nullable=False)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    is_failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)

    is_rollback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rollback_of: Mapped[Optional[int]] = mapped_column(Integer)  # deployments.id, informational
    recovered_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    related_prs: Mapped[List[int]] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    ingested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Deployment {self.deployment_id} {self.environment} {self.status}>"
