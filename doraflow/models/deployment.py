"""Deployment data models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class DeploymentEnvironment(str, Enum):
    """Target environment of a deployment."""

    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


class DeploymentStatus(str, Enum):
    """Deployment status."""

    SUCCESS = "success"
    FAILURE = "failure"
    IN_PROGRESS = "in_progress"
    ROLLED_BACK = "rolled_back"


class DeploymentData(BaseModel):
    """Persisted shape of a deployment."""

    id: Optional[int] = None
    deployment_id: str
    environment: DeploymentEnvironment
    repo_name: str
    org_name: str
    project_name: str
    commit_sha: str
    deployed_by: Optional[str] = None
    status: DeploymentStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    is_failed: bool = False
    failure_reason: Optional[str] = None
    is_rollback: bool = False
    rollback_of: Optional[int] = None
    recovered_at: Optional[datetime] = None
    related_prs: List[int] = Field(default_factory=list)
    notes: Optional[str] = None


class DeploymentCreate(BaseModel):
    """Manual deployment recording request."""

    environment: DeploymentEnvironment
    commit_sha: str = Field(min_length=40, max_length=40, pattern=r"^[0-9a-fA-F]+$")
    deployed_at: datetime
    project_name: str = Field(min_length=1, max_length=255)
    org_name: str = Field(min_length=1, max_length=255)
    status: DeploymentStatus = DeploymentStatus.SUCCESS
    deployed_by: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None
    repo_name: str = Field(default="unknown", max_length=255)
    related_prs: List[int] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    is_rollback: bool = False
    rollback_of: Optional[int] = None

    @field_validator("status")
    @classmethod
    def _manual_status(cls, value: DeploymentStatus) -> DeploymentStatus:
        if value not in (DeploymentStatus.SUCCESS, DeploymentStatus.FAILURE):
            raise ValueError("status must be either: success, failure")
        return value

    @model_validator(mode="after")
    def _default_completed_at(self) -> "DeploymentCreate":
        # Manually recorded deployments start and complete at the same instant
        if self.completed_at is None:
            self.completed_at = self.deployed_at
        return self
