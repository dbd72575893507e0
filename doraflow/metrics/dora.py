"""
DORA metrics over production deployments.

- Deployment frequency: successful production deployments
- Change failure rate: failed or rolled-back share of production deployments
- Lead time for changes: related PR creation to deployment completion
- MTTR: failed deployment completion to recorded recovery

Windows filter on the deployment's ``started_at``, inclusive on both ends.
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select

from doraflow.db.tables import DeploymentRow, PullRequestRow
from doraflow.metrics.base import MetricsQuery, count_where, group_by_project, percentage, scope_label
from doraflow.metrics.percentile import hours_between, percentile_metric
from doraflow.models.deployment import DeploymentEnvironment, DeploymentStatus
from doraflow.models.metrics import ChangeFailureRate, DeploymentFrequency, PercentileMetric
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)


class DoraMetrics(MetricsQuery):
    """The four DORA metrics, each with a per-project variant."""

    def _production(self, start_date: datetime, end_date: datetime) -> list:
        return [
            *self.window(DeploymentRow.started_at, start_date, end_date),
            DeploymentRow.environment == DeploymentEnvironment.PRODUCTION,
        ]

    # Deployment frequency

    async def _deployment_counts(self, start_date, end_date, project_name=None, by_project=False):
        return await self.aggregate(
            [func.count(DeploymentRow.id).label("deployments")],
            [*self._production(start_date, end_date), DeploymentRow.status == DeploymentStatus.SUCCESS],
            DeploymentRow.project_name,
            project_name,
            by_project,
        )

    async def deployment_frequency(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> DeploymentFrequency:
        rows = await self._deployment_counts(start_date, end_date, project_name)
        frequency = DeploymentFrequency(count=int(rows[0].deployments or 0))
        logger.info(
            f"Deployment frequency {scope_label(project_name)} ({start_date.isoformat()} to "
            f"{end_date.isoformat()}): count={frequency.count}"
        )
        return frequency

    async def deployment_frequency_by_project(
        self, start_date: datetime, end_date: datetime
    ) -> Dict[str, DeploymentFrequency]:
        rows = await self._deployment_counts(start_date, end_date, by_project=True)
        return {row.project_name: DeploymentFrequency(count=int(row.deployments or 0)) for row in rows}

    # Change failure rate

    async def _failure_counts(self, start_date, end_date, project_name=None, by_project=False):
        failed = or_(DeploymentRow.is_failed.is_(True), DeploymentRow.is_rollback.is_(True))
        return await self.aggregate(
            [
                count_where(failed).label("failed_count"),
                func.count(DeploymentRow.id).label("total_count"),
            ],
            self._production(start_date, end_date),
            DeploymentRow.project_name,
            project_name,
            by_project,
        )

    @staticmethod
    def _change_failure_rate(row) -> ChangeFailureRate:
        failed_count = int(row.failed_count or 0)
        total_count = int(row.total_count or 0)
        return ChangeFailureRate(
            percentage=percentage(failed_count, total_count),
            failed_count=failed_count,
            total_count=total_count,
        )

    async def change_failure_rate(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> ChangeFailureRate:
        rows = await self._failure_counts(start_date, end_date, project_name)
        rate = self._change_failure_rate(rows[0])
        logger.info(
            f"Change failure rate {scope_label(project_name)} ({start_date.isoformat()} to "
            f"{end_date.isoformat()}): {rate.percentage:.2f}% ({rate.failed_count}/{rate.total_count})"
        )
        return rate

    async def change_failure_rate_by_project(
        self, start_date: datetime, end_date: datetime
    ) -> Dict[str, ChangeFailureRate]:
        rows = await self._failure_counts(start_date, end_date, by_project=True)
        return {row.project_name: self._change_failure_rate(row) for row in rows}

    # Lead time for changes

    async def _lead_time_samples(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> List[Tuple[str, float]]:
        """
        One (project, hours) sample per deployment and related PR.

        Related PRs are matched on PR number within the deployment's project;
        deployments without ``completed_at`` contribute nothing.
        """
        conditions = [
            *self._production(start_date, end_date),
            DeploymentRow.status == DeploymentStatus.SUCCESS,
            DeploymentRow.completed_at.is_not(None),
        ]
        if project_name is not None:
            conditions.append(DeploymentRow.project_name == project_name)

        deployments = await self.fetch(
            select(DeploymentRow.project_name, DeploymentRow.completed_at, DeploymentRow.related_prs)
            .where(*conditions)
        )
        deployments = [d for d in deployments if d.related_prs]
        if not deployments:
            return []

        # Narrowed on both columns separately; exact pairs are matched below.
        projects = sorted({d.project_name for d in deployments})
        pr_numbers = sorted({int(pr) for d in deployments for pr in d.related_prs})
        pull_requests = await self.fetch(
            select(PullRequestRow.project_name, PullRequestRow.pr_number, PullRequestRow.created_at)
            .where(
                PullRequestRow.project_name.in_(projects),
                PullRequestRow.pr_number.in_(pr_numbers),
            )
        )

        created: Dict[Tuple[str, int], List[datetime]] = {}
        for pr in pull_requests:
            created.setdefault((pr.project_name, pr.pr_number), []).append(pr.created_at)

        samples: List[Tuple[str, float]] = []
        for deployment in deployments:
            for pr_number in deployment.related_prs:
                for created_at in created.get((deployment.project_name, int(pr_number)), []):
                    samples.append((deployment.project_name, hours_between(created_at, deployment.completed_at)))
        return samples

    async def lead_time_for_changes(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> PercentileMetric:
        samples = await self._lead_time_samples(start_date, end_date, project_name)
        metric = percentile_metric([hours for _, hours in samples])
        logger.info(
            f"Lead time for changes {scope_label(project_name)} ({start_date.isoformat()} to "
            f"{end_date.isoformat()}): p50={metric.p50_hours}h, p90={metric.p90_hours}h, count={metric.count}"
        )
        return metric

    async def lead_time_for_changes_by_project(
        self, start_date: datetime, end_date: datetime
    ) -> Dict[str, PercentileMetric]:
        samples = await self._lead_time_samples(start_date, end_date)
        per_project: Dict[str, List[float]] = {}
        for project, hours in samples:
            per_project.setdefault(project, []).append(hours)
        return {project: percentile_metric(hours) for project, hours in per_project.items()}

    # Mean time to recovery

    async def _recovery_rows(self, start_date, end_date, project_name=None):
        conditions = [
            *self._production(start_date, end_date),
            DeploymentRow.is_failed.is_(True),
            DeploymentRow.completed_at.is_not(None),
            DeploymentRow.recovered_at.is_not(None),
        ]
        if project_name is not None:
            conditions.append(DeploymentRow.project_name == project_name)
        return await self.fetch(
            select(DeploymentRow.project_name, DeploymentRow.completed_at, DeploymentRow.recovered_at)
            .where(*conditions)
        )

    async def mttr(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> PercentileMetric:
        rows = await self._recovery_rows(start_date, end_date, project_name)
        metric = percentile_metric([hours_between(r.completed_at, r.recovered_at) for r in rows])
        logger.info(
            f"MTTR {scope_label(project_name)} ({start_date.isoformat()} to {end_date.isoformat()}): "
            f"p50={metric.p50_hours}h, p90={metric.p90_hours}h, count={metric.count}"
        )
        return metric

    async def mttr_by_project(self, start_date: datetime, end_date: datetime) -> Dict[str, PercentileMetric]:
        rows = await self._recovery_rows(start_date, end_date)
        grouped = group_by_project(rows, lambda r: hours_between(r.completed_at, r.recovered_at))
        return {project: percentile_metric(hours) for project, hours in grouped.items()}
