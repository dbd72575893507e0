"""
Review timestamp enrichment for pull requests.

Azure DevOps does not expose vote timestamps, so approval time is inferred
from the earliest comment thread in which an approving reviewer took part.
"""

import asyncio
from datetime import datetime
from typing import Any, Iterable, List, Optional

from doraflow.models.pull_request import ReviewTimestamps
from doraflow.services.azure_devops import AzureDevOpsClient
from doraflow.services.transformers import to_utc
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)

APPROVED_VOTE = 10


def _live_threads(threads: Iterable[Any]) -> List[Any]:
    """Threads that are not deleted, have at least one comment and a publish date."""
    return [
        thread for thread in threads or []
        if not getattr(thread, "is_deleted", False)
        and getattr(thread, "comments", None)
        and getattr(thread, "published_date", None)
    ]


def calculate_first_review_at(threads: Iterable[Any]) -> Optional[datetime]:
    """Earliest publish date among live comment threads, or None."""
    dates = [to_utc(thread.published_date) for thread in _live_threads(threads)]
    return min(dates) if dates else None


def _same_identity(author: Any, reviewer: Any) -> bool:
    if author is None:
        return False
    for field in ("display_name", "unique_name", "id"):
        value = getattr(author, field, None)
        if value and value == getattr(reviewer, field, None):
            return True
    return False


def calculate_approved_at(reviewers: Iterable[Any], threads: Iterable[Any]) -> Optional[datetime]:
    """
    Earliest publish date among live threads with a comment by an approver.

    An approver is a reviewer whose vote is 10; comment authors are matched
    by display name, unique name or identity id.
    """
    approvers = [r for r in reviewers or [] if getattr(r, "vote", None) == APPROVED_VOTE]
    if not approvers:
        return None

    dates = []
    for thread in _live_threads(threads):
        if any(
            _same_identity(getattr(comment, "author", None), approver)
            for comment in thread.comments
            for approver in approvers
        ):
            dates.append(to_utc(thread.published_date))

    return min(dates) if dates else None


class ReviewEnricher:
    """
    Best-effort enrichment of PRs with first-review and approval timestamps.

    ``enrich`` never raises: any failure yields null timestamps with
    ``error`` set so the caller can count it.
    """

    def __init__(self, client: AzureDevOpsClient):
        self.client = client

    async def enrich(self, raw_pr: Any, project_name: str) -> ReviewTimestamps:
        pr_id = getattr(raw_pr, "pull_request_id", None)
        repository = getattr(raw_pr, "repository", None)
        repo_id = getattr(repository, "id", None)

        if not repo_id or not pr_id:
            logger.warning(
                f"Missing repository ID or PR ID for PR {pr_id}, skipping enrichment",
                extra={"project": project_name},
            )
            return ReviewTimestamps(error="missing repository or pull request id")

        try:
            threads, reviewers = await asyncio.gather(
                self.client.get_threads(project_name, repo_id, pr_id),
                self.client.get_pull_request_reviewers(project_name, repo_id, pr_id),
            )
            return ReviewTimestamps(
                first_review_at=calculate_first_review_at(threads),
                approved_at=calculate_approved_at(reviewers, threads),
            )
        except Exception as e:
            logger.warning(
                f"Failed to enrich PR {pr_id}: {e}",
                extra={
                    "project": project_name,
                    "repository": getattr(repository, "name", None),
                    "error_type": type(e).__name__,
                },
            )
            return ReviewTimestamps(error=str(e) or type(e).__name__)
