"""
Azure DevOps API client.

This module wraps the synchronous Azure DevOps Python SDK. Every call runs in
the default thread pool, is bounded by the configured request timeout and
goes through the shared RetryExecutor (which also applies rate limiting).
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, List, NamedTuple, Optional, Tuple

from azure.devops.connection import Connection
from azure.devops.v7_1.git.models import GitPullRequestSearchCriteria
from msrest.authentication import BasicAuthentication

from doraflow.config import Settings
from doraflow.utils.logging import get_logger, log_api_call
from doraflow.utils.resilience import RateLimiter, RetryExecutor, with_timeout

logger = get_logger(__name__)

SERVICE_NAME = "azure_devops"
BUILD_QUERY_ORDER = "queueTimeDescending"


class BuildPage(NamedTuple):
    """One page of builds and the continuation token for the next, if any."""

    builds: List[Any]
    continuation_token: Optional[str]


def _unwrap(response: Any) -> Tuple[List[Any], Optional[str]]:
    """
    Normalise an SDK list response.

    Depending on the SDK version list endpoints return either a plain list or
    a response object carrying ``value`` and ``continuation_token``.
    """
    if response is None:
        return [], None
    if isinstance(response, list):
        return response, None
    value = getattr(response, "value", None)
    token = getattr(response, "continuation_token", None) or None
    return list(value or []), token


class AzureDevOpsClient:
    """
    Async facade over the Azure DevOps core, git and build clients.

    Args:
        organization_url: Azure DevOps organization URL
        personal_access_token: PAT for authentication
        retry_executor: Shared retry/rate-limit executor
        request_timeout: Per-call timeout in seconds
        connection: Pre-built SDK connection (tests inject a mock)
    """

    def __init__(
        self,
        organization_url: str,
        personal_access_token: str,
        retry_executor: RetryExecutor,
        request_timeout: float = 30.0,
        connection: Optional[Connection] = None,
    ):
        self.organization_url = organization_url
        self.retry_executor = retry_executor
        self.request_timeout = request_timeout

        if connection is None:
            credentials = BasicAuthentication('', personal_access_token)
            connection = Connection(base_url=organization_url, creds=credentials)
        self.connection = connection

        self._core_client = None
        self._git_client = None
        self._build_client = None

        logger.info(f"AzureDevOpsClient initialized for organization: {organization_url}")

    @classmethod
    def from_settings(cls, settings: Settings, rate_limiter: Optional[RateLimiter] = None) -> "AzureDevOpsClient":
        """Build a client, rate limiter and retry executor from settings."""
        limiter = rate_limiter or RateLimiter(settings.azure_devops_rate_limit_per_min)
        executor = RetryExecutor(limiter, max_retries=settings.azure_devops_max_retries)
        return cls(
            organization_url=settings.organization_url,
            personal_access_token=settings.azure_devops_pat,
            retry_executor=executor,
            request_timeout=settings.request_timeout_seconds,
        )

    # SDK client construction resolves resource areas over the network, so the
    # clients are created lazily inside the worker thread.

    def _core(self):
        if self._core_client is None:
            self._core_client = self.connection.clients.get_core_client()
        return self._core_client

    def _git(self):
        if self._git_client is None:
            self._git_client = self.connection.clients.get_git_client()
        return self._git_client

    def _build(self):
        if self._build_client is None:
            self._build_client = self.connection.clients.get_build_client()
        return self._build_client

    async def _call(self, endpoint: str, func: Callable[[], Any], retry: bool = True) -> Any:
        """
        Run a synchronous SDK call in the thread pool.

        Args:
            endpoint: SDK operation name for logs
            func: Zero-argument callable performing the SDK call
            retry: When False the call is attempted once (still rate limited)
        """
        async def _attempt():
            loop = asyncio.get_running_loop()
            start = time.perf_counter()
            try:
                result = await with_timeout(
                    loop.run_in_executor(None, func),
                    self.request_timeout,
                    endpoint,
                )
            except Exception as e:
                log_api_call(
                    logger, SERVICE_NAME, endpoint,
                    duration_ms=(time.perf_counter() - start) * 1000,
                    error=str(e),
                )
                raise
            log_api_call(logger, SERVICE_NAME, endpoint, duration_ms=(time.perf_counter() - start) * 1000)
            return result

        return await self.retry_executor.execute(
            _attempt,
            max_retries=None if retry else 0,
            operation_name=endpoint,
        )

    async def get_projects(self) -> List[Any]:
        """List every project in the organization, following continuation tokens."""
        projects: List[Any] = []
        token: Optional[str] = None
        while True:
            response = await self._call(
                "get_projects",
                lambda: self._core().get_projects(continuation_token=token),
            )
            page, next_token = _unwrap(response)
            projects.extend(page)
            if not next_token or next_token == token:
                break
            token = next_token
        return projects

    async def get_repositories(self, project: str) -> List[Any]:
        response = await self._call(
            "get_repositories",
            lambda: self._git().get_repositories(project),
        )
        repositories, _ = _unwrap(response)
        return repositories

    async def get_pull_requests(
        self,
        project: str,
        repository_id: str,
        skip: int,
        top: int,
    ) -> List[Any]:
        """
        One page of pull requests in any status, newest first.

        The search criteria carry no time range, so callers apply their own
        recency window.
        """
        criteria = GitPullRequestSearchCriteria(status='all')
        response = await self._call(
            "get_pull_requests",
            lambda: self._git().get_pull_requests(
                repository_id,
                criteria,
                project=project,
                skip=skip,
                top=top,
            ),
        )
        pull_requests, _ = _unwrap(response)
        return pull_requests

    async def get_threads(self, project: str, repository_id: str, pull_request_id: int) -> List[Any]:
        """Comment threads of a pull request. Not retried."""
        response = await self._call(
            "get_threads",
            lambda: self._git().get_threads(repository_id, pull_request_id, project=project),
            retry=False,
        )
        threads, _ = _unwrap(response)
        return threads

    async def get_pull_request_reviewers(self, project: str, repository_id: str, pull_request_id: int) -> List[Any]:
        """Reviewers (with votes) of a pull request. Not retried."""
        response = await self._call(
            "get_pull_request_reviewers",
            lambda: self._git().get_pull_request_reviewers(repository_id, pull_request_id, project=project),
            retry=False,
        )
        reviewers, _ = _unwrap(response)
        return reviewers

    async def get_builds(
        self,
        project: str,
        min_time: datetime,
        top: int,
        continuation_token: Optional[str] = None,
        max_time: Optional[datetime] = None,
    ) -> BuildPage:
        """
        One page of builds queued between ``min_time`` and ``max_time``.

        Builds come newest first by queue time, which is also the time the
        ``min_time``/``max_time`` bounds apply to.
        """
        response = await self._call(
            "get_builds",
            lambda: self._build().get_builds(
                project,
                min_time=min_time,
                max_time=max_time,
                top=top,
                continuation_token=continuation_token,
                query_order=BUILD_QUERY_ORDER,
            ),
        )
        builds, token = _unwrap(response)
        return BuildPage(builds, token)
