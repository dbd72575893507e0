"""Entry point bundling every metric calculator over one database."""

from datetime import datetime
from typing import Dict, Optional

from doraflow.db.database import Database
from doraflow.metrics.ci import CIMetrics
from doraflow.metrics.dora import DoraMetrics
from doraflow.metrics.pull_requests import PullRequestMetrics
from doraflow.models.metrics import DoraSummary


class MetricsEngine:
    """
    Read-only metrics over persisted pull requests, CI runs and deployments.

    Example:
        engine = MetricsEngine(database)
        cfr = await engine.dora.change_failure_rate(start, end, "Payments")
        sizes = await engine.pull_requests.size_distribution_by_project(start, end)
    """

    def __init__(self, database: Database):
        self.database = database
        self.dora = DoraMetrics(database)
        self.pull_requests = PullRequestMetrics(database)
        self.ci = CIMetrics(database)

    async def dora_summary(
        self, start_date: datetime, end_date: datetime, project_name: Optional[str] = None
    ) -> DoraSummary:
        return DoraSummary(
            deployment_frequency=await self.dora.deployment_frequency(start_date, end_date, project_name),
            lead_time=await self.dora.lead_time_for_changes(start_date, end_date, project_name),
            change_failure_rate=await self.dora.change_failure_rate(start_date, end_date, project_name),
            mttr=await self.dora.mttr(start_date, end_date, project_name),
        )

    async def dora_summary_by_project(
        self, start_date: datetime, end_date: datetime
    ) -> Dict[str, DoraSummary]:
        """One grouped query per metric; projects missing from a metric get its empty result."""
        frequency = await self.dora.deployment_frequency_by_project(start_date, end_date)
        lead_time = await self.dora.lead_time_for_changes_by_project(start_date, end_date)
        failure_rate = await self.dora.change_failure_rate_by_project(start_date, end_date)
        mttr = await self.dora.mttr_by_project(start_date, end_date)
        projects = set(frequency) | set(lead_time) | set(failure_rate) | set(mttr)

        summaries = {}
        for project in sorted(projects):
            summary = DoraSummary()
            if project in frequency:
                summary.deployment_frequency = frequency[project]
            if project in lead_time:
                summary.lead_time = lead_time[project]
            if project in failure_rate:
                summary.change_failure_rate = failure_rate[project]
            if project in mttr:
                summary.mttr = mttr[project]
            summaries[project] = summary
        return summaries
