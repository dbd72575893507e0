"""Pull request flow metrics: cycle time, review wait time and size distribution."""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import and_, func, select

from doraflow.db.tables import PullRequestRow
from doraflow.metrics.base import MetricsQuery, count_where, group_by_project, percentage, scope_label
from doraflow.metrics.percentile import hours_between, percentile_metric
from doraflow.models.metrics import PercentileMetric, PRSizeDistribution
from doraflow.models.pull_request import PullRequestState
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)

# Inclusive upper bounds on additions + deletions; anything larger is "xl".
SIZE_BUCKETS = (("xs", 50), ("s", 200), ("m", 500), ("l", 1000))


class PullRequestMetrics(MetricsQuery):
    """Windowed on ``pull_requests.created_at``; drafts are always excluded."""

    def _base_conditions(self, start_date: datetime, end_date: datetime) -> list:
        return [
            *self.window(PullRequestRow.created_at, start_date, end_date),
            PullRequestRow.is_draft.is_(False),
        ]

    async def _durations(self, end_column, start_date, end_date, project_name=None):
        conditions = [*self._base_conditions(start_date, end_date), end_column.is_not(None)]
        if project_name is not None:
            conditions.append(PullRequestRow.project_name == project_name)
        rows = await self.fetch(
            select(
                PullRequestRow.project_name,
                PullRequestRow.created_at,
                end_column.label("ended_at"),
            ).where(*conditions)
        )
        return group_by_project(rows, lambda r: hours_between(r.created_at, r.ended_at))

    @staticmethod
    def _flatten(grouped: Dict[str, List[float]]) -> List[float]:
        return [hours for samples in grouped.values() for hours in samples]

    async def cycle_time(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> PercentileMetric:
        """Creation to merge for merged, non-draft PRs."""
        grouped = await self._durations(PullRequestRow.merged_at, start_date, end_date, project_name)
        metric = percentile_metric(self._flatten(grouped))
        logger.info(
            f"PR cycle time {scope_label(project_name)}: "
            f"p50={metric.p50_hours}h, p90={metric.p90_hours}h, count={metric.count}"
        )
        return metric

    async def cycle_time_by_project(
        self, start_date: datetime, end_date: datetime
    ) -> Dict[str, PercentileMetric]:
        grouped = await self._durations(PullRequestRow.merged_at, start_date, end_date)
        return {project: percentile_metric(samples) for project, samples in grouped.items()}

    async def review_wait_time(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> PercentileMetric:
        """Creation to first review for reviewed, non-draft PRs."""
        grouped = await self._durations(PullRequestRow.first_review_at, start_date, end_date, project_name)
        metric = percentile_metric(self._flatten(grouped))
        logger.info(
            f"PR review wait time {scope_label(project_name)}: "
            f"p50={metric.p50_hours}h, p90={metric.p90_hours}h, count={metric.count}"
        )
        return metric

    async def review_wait_time_by_project(
        self, start_date: datetime, end_date: datetime
    ) -> Dict[str, PercentileMetric]:
        grouped = await self._durations(PullRequestRow.first_review_at, start_date, end_date)
        return {project: percentile_metric(samples) for project, samples in grouped.items()}

    async def _size_counts(self, start_date, end_date, project_name=None, by_project=False):
        total_lines = PullRequestRow.additions + PullRequestRow.deletions
        columns = []
        lower = None
        for name, upper in SIZE_BUCKETS:
            condition = total_lines <= upper if lower is None else and_(total_lines > lower, total_lines <= upper)
            columns.append(count_where(condition).label(name))
            lower = upper
        columns.append(count_where(total_lines > lower).label("xl"))
        columns.append(func.count(PullRequestRow.id).label("total"))

        return await self.aggregate(
            columns,
            [
                *self._base_conditions(start_date, end_date),
                PullRequestRow.state == PullRequestState.MERGED,
            ],
            PullRequestRow.project_name,
            project_name,
            by_project,
        )

    @staticmethod
    def _size_distribution(row) -> PRSizeDistribution:
        counts = {name: int(getattr(row, name) or 0) for name in ("xs", "s", "m", "l", "xl")}
        total = int(row.total or 0)
        return PRSizeDistribution(
            **counts,
            total=total,
            percentages={name: round(percentage(count, total), 2) for name, count in counts.items()},
        )

    async def size_distribution(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> PRSizeDistribution:
        rows = await self._size_counts(start_date, end_date, project_name)
        distribution = self._size_distribution(rows[0])
        logger.info(
            f"PR size distribution {scope_label(project_name)}: xs={distribution.xs}, s={distribution.s}, "
            f"m={distribution.m}, l={distribution.l}, xl={distribution.xl}, total={distribution.total}"
        )
        return distribution

    async def size_distribution_by_project(
        self, start_date: datetime, end_date: datetime
    ) -> Dict[str, PRSizeDistribution]:
        rows = await self._size_counts(start_date, end_date, by_project=True)
        return {row.project_name: self._size_distribution(row) for row in rows}
