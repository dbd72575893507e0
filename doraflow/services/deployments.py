"""Manual deployment recording."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from doraflow.db.database import Database
from doraflow.db.tables import DeploymentRow
from doraflow.exceptions import DuplicateDeploymentError
from doraflow.models.deployment import DeploymentCreate, DeploymentData, DeploymentStatus
from doraflow.services.transformers import to_utc
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)


def generate_deployment_id(commit_sha: str, deployed_at: datetime) -> str:
    """``deploy_<epoch milliseconds>_<short sha>``."""
    timestamp = int(to_utc(deployed_at).timestamp() * 1000)
    return f"deploy_{timestamp}_{commit_sha[:8].lower()}"


class DeploymentRecorder:
    """Records deployment events that happen outside automated pipelines."""

    def __init__(self, database: Database):
        self.database = database

    async def record(self, request: DeploymentCreate) -> DeploymentData:
        """
        Persist a deployment.

        Raises:
            DuplicateDeploymentError: If the generated deployment id already exists
        """
        deployed_at = to_utc(request.deployed_at)
        is_failed = request.status == DeploymentStatus.FAILURE

        row = DeploymentRow(
            deployment_id=generate_deployment_id(request.commit_sha, deployed_at),
            environment=request.environment,
            repo_name=request.repo_name or "unknown",
            org_name=request.org_name,
            project_name=request.project_name,
            commit_sha=request.commit_sha.lower(),
            deployed_by=request.deployed_by,
            status=request.status,
            started_at=deployed_at,
            completed_at=to_utc(request.completed_at),
            is_failed=is_failed,
            failure_reason=request.notes if is_failed else None,
            is_rollback=request.is_rollback,
            rollback_of=request.rollback_of,
            recovered_at=None,
            related_prs=list(request.related_prs),
            notes=request.notes,
        )

        try:
            async with self.database.session() as session:
                session.add(row)
                await session.flush()
                deployment = DeploymentData.model_validate(row, from_attributes=True)
        except IntegrityError as e:
            raise DuplicateDeploymentError(f"Deployment {row.deployment_id} already exists") from e

        logger.info(
            f"Deployment recorded: {deployment.deployment_id} "
            f"({deployment.environment.value}, {deployment.project_name}, {deployment.status.value})",
            extra={"project": deployment.project_name},
        )
        return deployment

    async def mark_recovered(self, deployment_id: str, recovered_at: datetime) -> Optional[DeploymentData]:
        """
        Set the recovery time of a failed deployment.

        Returns:
            The updated deployment, or None if no deployment has that id
        """
        async with self.database.session() as session:
            result = await session.execute(
                select(DeploymentRow).where(DeploymentRow.deployment_id == deployment_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                logger.warning(f"Deployment {deployment_id} not found, recovery not recorded")
                return None
            row.recovered_at = to_utc(recovered_at)
            await session.flush()
            deployment = DeploymentData.model_validate(row, from_attributes=True)

        logger.info(f"Deployment {deployment_id} marked recovered", extra={"project": deployment.project_name})
        return deployment
