"""
Pull request ingestion.

Discovers projects, then for each project fetches recent PRs, transforms,
enriches and upserts them one at a time. Up to three projects run
concurrently; a failing project is recorded and never aborts the run.
"""

import time
from typing import Iterable, Optional

from doraflow.config import Settings
from doraflow.db.database import Database
from doraflow.models.ingestion import IngestionError, IngestionResult, ProjectRef, UpsertAction
from doraflow.services.azure_devops import AzureDevOpsClient
from doraflow.services.discovery import ProjectDiscovery
from doraflow.services.enrichment import ReviewEnricher
from doraflow.services.fetchers import PullRequestFetcher
from doraflow.services.project_runner import ProjectBatchRunner
from doraflow.services.transformers import transform_pull_request
from doraflow.services.upsert import UpsertEngine
from doraflow.utils.logging import get_logger, log_error_with_context

logger = get_logger(__name__)


class PullRequestIngestion:
    """
    Orchestrates one pull request ingestion run.

    Args:
        client: Azure DevOps client
        upsert_engine: Smart-merge writer
        org_name: Organization name stored on every record
        exclude_projects: Project names to skip
        discovery, fetcher, enricher, runner: Collaborators (defaults built from ``client``)
    """

    def __init__(
        self,
        client: AzureDevOpsClient,
        upsert_engine: UpsertEngine,
        org_name: str,
        exclude_projects: Iterable[str] = (),
        discovery: Optional[ProjectDiscovery] = None,
        fetcher: Optional[PullRequestFetcher] = None,
        enricher: Optional[ReviewEnricher] = None,
        runner: Optional[ProjectBatchRunner] = None,
    ):
        self.client = client
        self.upsert_engine = upsert_engine
        self.org_name = org_name
        self.exclude_projects = list(exclude_projects)
        self.discovery = discovery or ProjectDiscovery(client)
        self.fetcher = fetcher or PullRequestFetcher(client)
        self.enricher = enricher or ReviewEnricher(client)
        self.runner = runner or ProjectBatchRunner()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        database: Database,
        client: Optional[AzureDevOpsClient] = None,
    ) -> "PullRequestIngestion":
        return cls(
            client=client or AzureDevOpsClient.from_settings(settings),
            upsert_engine=UpsertEngine(database),
            org_name=settings.azure_devops_org,
            exclude_projects=settings.exclude_projects,
        )

    async def run(self) -> IngestionResult:
        """
        Run ingestion across all discovered projects.

        Raises:
            DiscoveryError: If the project list cannot be retrieved
        """
        start = time.perf_counter()
        result = IngestionResult()

        logger.info(
            f"Starting PR ingestion for organization {self.org_name} "
            f"(excluded projects: {', '.join(self.exclude_projects) or 'none'})"
        )

        projects = await self.discovery.discover(self.exclude_projects)

        for outcome in await self.runner.run(projects, self.ingest_project):
            if outcome.error is not None:
                result.errors.append(outcome.error)
                continue
            project_result: IngestionResult = outcome.result
            result.projects_processed += 1
            result.inserted += project_result.inserted
            result.updated += project_result.updated
            result.skipped += project_result.skipped
            result.enriched += project_result.enriched
            result.with_reviews += project_result.with_reviews
            result.with_approvals += project_result.with_approvals
            result.enrichment_errors += project_result.enrichment_errors
            result.errors.extend(project_result.errors)

        result.success = not result.errors
        result.duration_seconds = round(time.perf_counter() - start, 2)

        written = result.inserted + result.updated
        enrichment_rate = (result.enriched / written * 100) if written else 0.0
        logger.info(
            f"PR ingestion completed in {result.duration_seconds:.2f}s: "
            f"{result.projects_processed} projects, {result.inserted} inserted, {result.updated} updated, "
            f"{result.enriched} enriched ({enrichment_rate:.1f}%), "
            f"{result.enrichment_errors} enrichment errors, {len(result.errors)} errors",
            extra={"result": result.model_dump(exclude={"errors"})},
        )
        return result

    async def ingest_project(self, project: ProjectRef) -> IngestionResult:
        """
        Ingest one project's pull requests, serially.

        Per-PR failures are recorded in the returned result. A failure listing
        the project's repositories propagates.
        """
        project_logger = logger.with_context(project=project.name)
        result = IngestionResult()

        raw_prs = await self.fetcher.fetch_all(project.name)
        project_logger.info(f"Processing {len(raw_prs)} PRs")

        for raw in raw_prs:
            pr_id = getattr(raw, "pull_request_id", None)
            try:
                data = transform_pull_request(raw, project.name, self.org_name)

                review = await self.enricher.enrich(raw, project.name)
                if review.failed:
                    result.enrichment_errors += 1
                else:
                    data = data.model_copy(update={
                        "first_review_at": review.first_review_at,
                        "approved_at": review.approved_at,
                    })
                    if review.first_review_at is not None or review.approved_at is not None:
                        result.enriched += 1
                    if review.first_review_at is not None:
                        result.with_reviews += 1
                    if review.approved_at is not None:
                        result.with_approvals += 1

                action = await self.upsert_engine.upsert_pull_request(data)
                if action == UpsertAction.INSERTED:
                    result.inserted += 1
                elif action == UpsertAction.UPDATED:
                    result.updated += 1
                else:
                    result.skipped += 1
            except Exception as e:
                log_error_with_context(project_logger, f"Failed to process PR {pr_id}", e, item=f"pr:{pr_id}")
                result.errors.append(IngestionError.from_exception(
                    project.name, e, item=f"pr:{pr_id}", message=f"Failed to process PR {pr_id}",
                ))

        project_logger.info(
            f"Completed: {result.inserted} inserted, {result.updated} updated, {result.skipped} skipped, "
            f"{result.enriched} enriched ({result.with_reviews} with reviews, "
            f"{result.with_approvals} with approvals), {result.enrichment_errors} enrichment errors, "
            f"{len(result.errors)} errors"
        )
        return result
