"""
Paginated fetchers for pull requests and builds.

Both fetchers bound the data volume to a recency window (90 days by default)
and page through the API 100 records at a time until a short page arrives.
Pull request pages come newest first and also stop at the first PR created
before the window.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Set

from doraflow.exceptions import TransformError
from doraflow.services.azure_devops import AzureDevOpsClient
from doraflow.services.transformers import to_utc
from doraflow.utils.logging import get_logger
from doraflow.utils.metrics import StepTracker

logger = get_logger(__name__)

DEFAULT_LOOKBACK_DAYS = 90
PAGE_SIZE = 100
REPOSITORY_CONCURRENCY = 10
BUILD_PAGE_TIMEOUT_SECONDS = 60.0
BUILD_PAGE_PAUSE_SECONDS = 0.1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(raw: Any, attribute: str) -> Optional[datetime]:
    try:
        return to_utc(getattr(raw, attribute, None))
    except TransformError:
        return None


def _created_before(pull_request: Any, min_time: datetime) -> bool:
    """True when the PR's creation date is known and older than ``min_time``."""
    created_at = _timestamp(pull_request, "creation_date")
    return created_at is not None and created_at < min_time


def _oldest_queue_time(builds: List[Any]) -> Optional[datetime]:
    queue_times = [t for t in (_timestamp(build, "queue_time") for build in builds) if t is not None]
    return min(queue_times) if queue_times else None


class PullRequestFetcher:
    """
    Fetches every recent pull request of a project.

    Repositories are fetched concurrently, ``repository_concurrency`` at a
    time. A repository that fails is logged and skipped (pages fetched before
    the failure are kept); a failure listing the repositories propagates.
    """

    def __init__(
        self,
        client: AzureDevOpsClient,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        page_size: int = PAGE_SIZE,
        repository_concurrency: int = REPOSITORY_CONCURRENCY,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.lookback_days = lookback_days
        self.page_size = page_size
        self.repository_concurrency = repository_concurrency
        self._clock = clock

    async def fetch_all(self, project_name: str) -> List[Any]:
        """
        Fetch all pull requests created in the lookback window.

        Args:
            project_name: Project to fetch from

        Returns:
            Raw SDK pull request objects across all repositories
        """
        project_logger = logger.with_context(project=project_name)
        min_time = self._clock() - timedelta(days=self.lookback_days)

        repositories = await self.client.get_repositories(project_name)
        project_logger.info(
            f"Found {len(repositories)} repositories, fetching PRs created since {min_time.date().isoformat()}"
        )

        pull_requests: List[Any] = []
        for i in range(0, len(repositories), self.repository_concurrency):
            batch = repositories[i:i + self.repository_concurrency]
            results = await asyncio.gather(
                *(self._fetch_repository(project_name, repo, min_time) for repo in batch)
            )
            for repo_pull_requests in results:
                pull_requests.extend(repo_pull_requests)

        project_logger.info(f"Fetched {len(pull_requests)} PRs")
        return pull_requests

    async def _fetch_repository(self, project_name: str, repository: Any, min_time: datetime) -> List[Any]:
        repo_id = getattr(repository, "id", None)
        repo_name = getattr(repository, "name", None)
        if not repo_id or not repo_name:
            return []

        repo_logger = logger.with_context(project=project_name, repository=repo_name)
        fetched: List[Any] = []
        skip = 0

        try:
            while True:
                page = await self.client.get_pull_requests(
                    project_name,
                    repo_id,
                    skip=skip,
                    top=self.page_size,
                )
                recent = [pr for pr in page if not _created_before(pr, min_time)]
                fetched.extend(recent)
                # Pages come newest first, so one old PR means the rest are older
                if len(page) < self.page_size or len(recent) < len(page):
                    break
                skip += self.page_size
        except Exception as e:
            repo_logger.error(
                f"Error fetching PRs, skipping repository after {len(fetched)} PRs: {e}",
                extra={"error_type": type(e).__name__},
            )
            return fetched

        repo_logger.debug(f"Fetched {len(fetched)} PRs")
        return fetched


class CIRunFetcher:
    """
    Fetches every recent build of a project.

    Pages are fetched serially, each as an instrumented step with its own
    timeout, until a short page arrives. The SDK's continuation token is
    forwarded when present; a full page without one continues from the oldest
    queue time seen, skipping builds already fetched. A page failure ends
    pagination and returns the builds gathered so far.
    """

    def __init__(
        self,
        client: AzureDevOpsClient,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        page_size: int = PAGE_SIZE,
        page_timeout: float = BUILD_PAGE_TIMEOUT_SECONDS,
        page_pause: float = BUILD_PAGE_PAUSE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.lookback_days = lookback_days
        self.page_size = page_size
        self.page_timeout = page_timeout
        self.page_pause = page_pause
        self._clock = clock

    async def fetch_all(self, project_name: str, tracker: Optional[StepTracker] = None) -> List[Any]:
        """
        Fetch all builds queued in the lookback window.

        Args:
            project_name: Project to fetch from
            tracker: Collects one StepMetric per page

        Returns:
            Raw SDK build objects
        """
        tracker = tracker or StepTracker()
        project_logger = logger.with_context(project=project_name)
        min_time = self._clock() - timedelta(days=self.lookback_days)

        builds: List[Any] = []
        seen_ids: Set[Any] = set()
        token: Optional[str] = None
        max_time: Optional[datetime] = None
        batch_number = 1

        project_logger.info(f"Fetching builds since {min_time.date().isoformat()}")

        while True:
            page_token, page_max_time = token, max_time
            try:
                page = await tracker.track(
                    f"fetch-builds-{project_name}-batch-{batch_number}",
                    lambda: self.client.get_builds(
                        project_name,
                        min_time=min_time,
                        top=self.page_size,
                        continuation_token=page_token,
                        max_time=page_max_time,
                    ),
                    timeout_seconds=self.page_timeout,
                    project=project_name,
                    batch=batch_number,
                )
            except Exception as e:
                project_logger.error(
                    f"Error fetching builds (batch {batch_number}), keeping {len(builds)} builds: {e}",
                    extra={"error_type": type(e).__name__},
                )
                break

            new_builds = [build for build in page.builds if getattr(build, "id", None) not in seen_ids]
            if not new_builds:
                break

            builds.extend(new_builds)
            seen_ids.update(getattr(build, "id", None) for build in new_builds)
            project_logger.info(
                f"Fetched {len(builds)} builds so far (batch {batch_number}: +{len(new_builds)})"
            )

            if len(page.builds) < self.page_size:
                break

            if page.continuation_token:
                token, max_time = page.continuation_token, page_max_time
            else:
                oldest = _oldest_queue_time(page.builds)
                if oldest is None:
                    project_logger.warning(
                        f"Full page of builds without continuation token or queue times, "
                        f"stopping at {len(builds)} builds"
                    )
                    break
                token, max_time = None, oldest

            batch_number += 1
            await asyncio.sleep(self.page_pause)

        project_logger.info(f"Fetched {len(builds)} CI runs total")
        return builds
