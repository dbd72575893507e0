"""CI run health metrics."""

from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import func

from doraflow.db.tables import CIRunRow
from doraflow.metrics.base import MetricsQuery, count_where, percentage, scope_label
from doraflow.models.ci_run import CIRunConclusion
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)


class CIMetrics(MetricsQuery):
    """Windowed on ``ci_runs.started_at``."""

    async def _counts(self, start_date, end_date, project_name=None, by_project=False):
        return await self.aggregate(
            [
                count_where(CIRunRow.is_flaky.is_(True)).label("flaky_runs"),
                count_where(CIRunRow.conclusion == CIRunConclusion.SUCCESS).label("successful_runs"),
                func.count(CIRunRow.id).label("total_runs"),
            ],
            self.window(CIRunRow.started_at, start_date, end_date),
            CIRunRow.project_name,
            project_name,
            by_project,
        )

    @staticmethod
    def _flaky_rate(row) -> float:
        return round(percentage(int(row.flaky_runs or 0), int(row.total_runs or 0)), 2)

    @staticmethod
    def _success_rate(row) -> float:
        return round(percentage(int(row.successful_runs or 0), int(row.total_runs or 0)), 2)

    async def flaky_test_rate(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> float:
        """Percentage of runs flagged flaky, 0 when there are no runs."""
        rows = await self._counts(start_date, end_date, project_name)
        rate = self._flaky_rate(rows[0])
        logger.info(
            f"Flaky test rate {scope_label(project_name)}: {rate}% "
            f"({rows[0].flaky_runs}/{rows[0].total_runs})"
        )
        return rate

    async def flaky_test_rate_by_project(self, start_date: datetime, end_date: datetime) -> Dict[str, float]:
        rows = await self._counts(start_date, end_date, by_project=True)
        return {row.project_name: self._flaky_rate(row) for row in rows}

    async def flaky_run_count(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> int:
        rows = await self._counts(start_date, end_date, project_name)
        return int(rows[0].flaky_runs or 0)

    async def flaky_run_count_by_project(self, start_date: datetime, end_date: datetime) -> Dict[str, int]:
        rows = await self._counts(start_date, end_date, by_project=True)
        return {row.project_name: int(row.flaky_runs or 0) for row in rows}

    async def success_rate(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> float:
        """Percentage of runs concluding in success, 0 when there are no runs."""
        rows = await self._counts(start_date, end_date, project_name)
        rate = self._success_rate(rows[0])
        logger.info(f"CI success rate {scope_label(project_name)}: {rate}%")
        return rate

    async def success_rate_by_project(self, start_date: datetime, end_date: datetime) -> Dict[str, float]:
        rows = await self._counts(start_date, end_date, by_project=True)
        return {row.project_name: self._success_rate(row) for row in rows}
