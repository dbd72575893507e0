"""Batched, failure-isolated execution of per-project ingestion."""

import asyncio
from typing import Any, Awaitable, Callable, List, NamedTuple, Optional, Sequence, TypeVar

from doraflow.models.ingestion import IngestionError, ProjectRef
from doraflow.utils.logging import get_logger
from doraflow.utils.metrics import StepMetric, StepStatus, run_step

logger = get_logger(__name__)

R = TypeVar('R')

PROJECT_CONCURRENCY = 3
PROJECT_TIMEOUT_SECONDS = 300.0


class ProjectOutcome(NamedTuple):
    project: ProjectRef
    result: Any
    error: Optional[IngestionError]
    metric: Optional[StepMetric]


class ProjectBatchRunner:
    """
    Runs an ingestion coroutine for each project.

    Projects run ``concurrency`` at a time; a batch completes before the next
    one starts. Each project is an instrumented step with its own timeout, and
    a failing or timed-out project never affects its siblings.
    """

    def __init__(self, concurrency: int = PROJECT_CONCURRENCY, timeout_seconds: Optional[float] = PROJECT_TIMEOUT_SECONDS):
        self.concurrency = concurrency
        self.timeout_seconds = timeout_seconds

    async def run(
        self,
        projects: Sequence[ProjectRef],
        ingest_project: Callable[[ProjectRef], Awaitable[R]],
    ) -> List[ProjectOutcome]:
        outcomes: List[ProjectOutcome] = []

        for i in range(0, len(projects), self.concurrency):
            batch = projects[i:i + self.concurrency]
            results = await asyncio.gather(
                *(self._run_project(project, ingest_project) for project in batch),
                return_exceptions=True,
            )
            for project, outcome in zip(batch, results):
                if isinstance(outcome, BaseException):
                    logger.error(
                        f"Unexpected failure ingesting project: {outcome}",
                        extra={"project": project.name, "error_type": type(outcome).__name__},
                    )
                    error = IngestionError.from_exception(project.name, outcome, message="Failed to ingest project")
                    outcomes.append(ProjectOutcome(project, None, error, None))
                else:
                    outcomes.append(outcome)

        return outcomes

    async def _run_project(
        self,
        project: ProjectRef,
        ingest_project: Callable[[ProjectRef], Awaitable[R]],
    ) -> ProjectOutcome:
        step = await run_step(
            f"ingest-project-{project.name}",
            lambda: ingest_project(project),
            self.timeout_seconds,
            metadata={"project": project.name},
        )
        if step.error is None:
            return ProjectOutcome(project, step.result, None, step.metric)

        if step.metric.status == StepStatus.TIMEOUT:
            message = f"Project ingestion timed out after {self.timeout_seconds:g}s"
        else:
            message = "Failed to ingest project"
        logger.warning(
            f"{message}, continuing with other projects",
            extra={"project": project.name},
        )
        error = IngestionError.from_exception(project.name, step.error, message=message)
        return ProjectOutcome(project, None, error, step.metric)
