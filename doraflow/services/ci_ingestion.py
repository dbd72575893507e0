"""
CI run ingestion.

Discovers projects, fetches each project's recent builds page by page,
transforms and upserts them one at a time, then runs a flaky detection pass
over everything persisted. Every page fetch and every project is an
instrumented step; the collected StepMetrics are returned with the result.
"""

import time
from typing import Iterable, Optional

from doraflow.config import Settings
from doraflow.db.database import Database
from doraflow.models.ingestion import CIIngestionResult, IngestionError, ProjectRef, UpsertAction
from doraflow.services.azure_devops import AzureDevOpsClient
from doraflow.services.discovery import ProjectDiscovery
from doraflow.services.fetchers import CIRunFetcher
from doraflow.services.flaky_detector import FlakyDetector
from doraflow.services.project_runner import ProjectBatchRunner
from doraflow.services.transformers import transform_ci_run
from doraflow.services.upsert import UpsertEngine
from doraflow.utils.logging import get_logger, log_error_with_context
from doraflow.utils.metrics import StepTracker

logger = get_logger(__name__)


class CIRunIngestion:
    """
    Orchestrates one CI run ingestion run followed by flaky detection.

    Args:
        client: Azure DevOps client
        upsert_engine: Smart-merge writer
        flaky_detector: Detection pass run after ingestion
        org_name: Organization name stored on every record
        exclude_projects: Project names to skip
        discovery, fetcher, runner: Collaborators (defaults built from ``client``)
    """

    def __init__(
        self,
        client: AzureDevOpsClient,
        upsert_engine: UpsertEngine,
        flaky_detector: FlakyDetector,
        org_name: str,
        exclude_projects: Iterable[str] = (),
        discovery: Optional[ProjectDiscovery] = None,
        fetcher: Optional[CIRunFetcher] = None,
        runner: Optional[ProjectBatchRunner] = None,
    ):
        self.client = client
        self.upsert_engine = upsert_engine
        self.flaky_detector = flaky_detector
        self.org_name = org_name
        self.exclude_projects = list(exclude_projects)
        self.discovery = discovery or ProjectDiscovery(client)
        self.fetcher = fetcher or CIRunFetcher(client)
        self.runner = runner or ProjectBatchRunner()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        database: Database,
        client: Optional[AzureDevOpsClient] = None,
    ) -> "CIRunIngestion":
        return cls(
            client=client or AzureDevOpsClient.from_settings(settings),
            upsert_engine=UpsertEngine(database),
            flaky_detector=FlakyDetector(database),
            org_name=settings.azure_devops_org,
            exclude_projects=settings.exclude_projects,
        )

    async def run(self) -> CIIngestionResult:
        """
        Run CI ingestion across all discovered projects, then detect flaky runs.

        Raises:
            DiscoveryError: If the project list cannot be retrieved
        """
        start = time.perf_counter()
        result = CIIngestionResult()
        tracker = StepTracker()

        logger.info(
            f"Starting CI run ingestion for organization {self.org_name} "
            f"(excluded projects: {', '.join(self.exclude_projects) or 'none'})"
        )

        projects = await self.discovery.discover(self.exclude_projects)

        async def ingest(project: ProjectRef) -> CIIngestionResult:
            return await self.ingest_project(project, tracker)

        for outcome in await self.runner.run(projects, ingest):
            if outcome.metric is not None:
                tracker.metrics.append(outcome.metric)
            if outcome.error is not None:
                result.errors.append(outcome.error)
                continue
            project_result: CIIngestionResult = outcome.result
            result.projects_processed += 1
            result.inserted += project_result.inserted
            result.updated += project_result.updated
            result.skipped += project_result.skipped
            result.errors.extend(project_result.errors)

        logger.info("CI run ingestion complete, starting flaky detection")
        try:
            detection = await tracker.track("detect-flaky-runs", self.flaky_detector.detect)
            result.flaky_runs_detected = detection.runs_flagged
            if detection.timed_out:
                logger.warning("Flaky detection stopped early; remaining runs are checked on the next pass")
        except Exception as e:
            log_error_with_context(logger, "Flaky detection failed", e)
            result.errors.append(IngestionError.from_exception(None, e, message="Flaky detection failed"))

        result.metrics = tracker.metrics
        result.success = not result.errors
        result.duration_seconds = round(time.perf_counter() - start, 2)

        logger.info(
            f"CI ingestion completed in {result.duration_seconds:.2f}s: "
            f"{result.projects_processed} projects, {result.inserted} inserted, {result.updated} updated, "
            f"{result.flaky_runs_detected} flaky runs detected, {len(result.errors)} errors",
            extra={"steps": tracker.summary()},
        )
        return result

    async def ingest_project(self, project: ProjectRef, tracker: Optional[StepTracker] = None) -> CIIngestionResult:
        """Ingest one project's builds, serially. Per-build failures are recorded."""
        project_logger = logger.with_context(project=project.name)
        result = CIIngestionResult()

        builds = await self.fetcher.fetch_all(project.name, tracker)
        project_logger.info(f"Processing {len(builds)} CI runs")

        for build in builds:
            build_id = getattr(build, "id", None)
            try:
                data = transform_ci_run(build, project.name, self.org_name)
                action = await self.upsert_engine.upsert_ci_run(data)
                if action == UpsertAction.INSERTED:
                    result.inserted += 1
                elif action == UpsertAction.UPDATED:
                    result.updated += 1
                else:
                    result.skipped += 1
            except Exception as e:
                log_error_with_context(
                    project_logger, f"Failed to process build {build_id}", e, item=f"build:{build_id}",
                )
                result.errors.append(IngestionError.from_exception(
                    project.name, e, item=f"build:{build_id}", message=f"Failed to process build {build_id}",
                ))

        project_logger.info(
            f"Completed: {result.inserted} inserted, {result.updated} updated, "
            f"{result.skipped} skipped, {len(result.errors)} errors"
        )
        return result
