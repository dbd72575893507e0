"""Ingestion services: Azure DevOps access, orchestration, upsert and flaky detection."""

from .azure_devops import AzureDevOpsClient, BuildPage
from .ci_ingestion import CIRunIngestion
from .deployments import DeploymentRecorder, generate_deployment_id
from .discovery import ProjectDiscovery
from .enrichment import ReviewEnricher
from .fetchers import CIRunFetcher, PullRequestFetcher
from .flaky_detector import CIRunBatchCursor, FlakyDetector, find_flaky_run_ids
from .pr_ingestion import PullRequestIngestion
from .project_runner import ProjectBatchRunner, ProjectOutcome
from .transformers import transform_ci_run, transform_pull_request
from .upsert import UpsertEngine

__all__ = [
    "AzureDevOpsClient",
    "BuildPage",
    "ProjectDiscovery",
    "PullRequestFetcher",
    "CIRunFetcher",
    "transform_pull_request",
    "transform_ci_run",
    "ReviewEnricher",
    "UpsertEngine",
    "ProjectBatchRunner",
    "ProjectOutcome",
    "PullRequestIngestion",
    "CIRunIngestion",
    "FlakyDetector",
    "CIRunBatchCursor",
    "find_flaky_run_ids",
    "DeploymentRecorder",
    "generate_deployment_id",
]
