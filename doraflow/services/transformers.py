"""
Transformers from Azure DevOps SDK objects to persisted records.

Pure functions: no I/O, deterministic for a given input. Upstream integer
codes are mapped to closed enums here and never travel further.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from doraflow.exceptions import TransformError
from doraflow.models.ci_run import CIRunConclusion, CIRunData, CIRunStatus
from doraflow.models.pull_request import PullRequestData, PullRequestState
from doraflow.models.upstream import BuildResult, BuildStatus, PullRequestStatus
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)

BRANCH_PREFIX = "refs/heads/"

_BUILD_STATUS_MAP = {
    BuildStatus.IN_PROGRESS: CIRunStatus.IN_PROGRESS,
    BuildStatus.COMPLETED: CIRunStatus.COMPLETED,
    BuildStatus.CANCELLING: CIRunStatus.CANCELLING,
}

_BUILD_RESULT_MAP = {
    BuildResult.SUCCEEDED: CIRunConclusion.SUCCESS,
    BuildResult.PARTIALLY_SUCCEEDED: CIRunConclusion.PARTIALLY_SUCCEEDED,
    BuildResult.FAILED: CIRunConclusion.FAILURE,
    BuildResult.CANCELED: CIRunConclusion.CANCELLED,
}


def to_utc(value: Any) -> Optional[datetime]:
    """
    Normalise a timestamp to timezone-aware UTC.

    Naive datetimes are assumed to be UTC; ISO-8601 strings are parsed.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise TransformError(f"Invalid timestamp: {value!r}") from e
    if not isinstance(value, datetime):
        raise TransformError(f"Invalid timestamp type: {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def strip_branch_prefix(ref_name: Optional[str]) -> Optional[str]:
    """Strip a leading ``refs/heads/``; empty results become None."""
    if not ref_name:
        return None
    if ref_name.startswith(BRANCH_PREFIX):
        ref_name = ref_name[len(BRANCH_PREFIX):]
    return ref_name or None


def map_pull_request_state(status: Any) -> PullRequestState:
    parsed = PullRequestStatus.parse(status)
    if parsed == PullRequestStatus.COMPLETED:
        return PullRequestState.MERGED
    if parsed == PullRequestStatus.ABANDONED:
        return PullRequestState.CLOSED
    return PullRequestState.OPEN


def map_build_status(status: Any) -> CIRunStatus:
    return _BUILD_STATUS_MAP.get(BuildStatus.parse(status), CIRunStatus.UNKNOWN)


def map_build_result(result: Any) -> Optional[CIRunConclusion]:
    return _BUILD_RESULT_MAP.get(BuildResult.parse(result))


def transform_pull_request(raw: Any, project_name: str, org_name: str) -> PullRequestData:
    """
    Transform an SDK ``GitPullRequest`` into a PullRequestData.

    Review timestamps are always None here; they come from enrichment.
    Size metrics are always 0 since the list API does not report them.

    Raises:
        TransformError: If the PR id or creation date is missing or invalid
    """
    pr_number = getattr(raw, "pull_request_id", None)
    if not pr_number:
        raise TransformError("Pull request has no pull_request_id")

    created_at = to_utc(getattr(raw, "creation_date", None))
    if created_at is None:
        raise TransformError(f"Pull request {pr_number} has no creation_date")

    closed_date = to_utc(getattr(raw, "closed_date", None))
    state = map_pull_request_state(getattr(raw, "status", None))

    if state == PullRequestState.MERGED:
        closed_at = closed_date
        merged_at = closed_date
    elif state == PullRequestState.CLOSED:
        closed_at = closed_date
        merged_at = None
    else:
        closed_at = None
        merged_at = None

    repository = getattr(raw, "repository", None)
    created_by = getattr(raw, "created_by", None)
    labels = [
        label.name for label in (getattr(raw, "labels", None) or [])
        if getattr(label, "name", None)
    ]

    return PullRequestData(
        pr_number=pr_number,
        repo_name=getattr(repository, "name", None) or "unknown",
        org_name=org_name,
        project_name=project_name,
        title=getattr(raw, "title", None) or "Untitled PR",
        author=getattr(created_by, "display_name", None) or "Unknown",
        state=state,
        created_at=created_at,
        # The source system's own timestamps, never the wall clock
        updated_at=closed_date or created_at,
        closed_at=closed_at,
        merged_at=merged_at,
        first_review_at=None,
        approved_at=None,
        additions=0,
        deletions=0,
        changed_files=0,
        labels=labels,
        is_draft=bool(getattr(raw, "is_draft", False)),
        base_branch=strip_branch_prefix(getattr(raw, "target_ref_name", None)) or "main",
        head_branch=strip_branch_prefix(getattr(raw, "source_ref_name", None)),
    )


def transform_ci_run(raw: Any, project_name: str, org_name: str) -> CIRunData:
    """
    Transform an SDK ``Build`` into a CIRunData.

    ``is_flaky`` and ``flaky_test_count`` always start at False/0.

    Raises:
        TransformError: If the build id or both start and queue times are missing
    """
    build_id = getattr(raw, "id", None)
    if build_id is None:
        raise TransformError("Build has no id")

    started_at = to_utc(getattr(raw, "start_time", None)) or to_utc(getattr(raw, "queue_time", None))
    if started_at is None:
        raise TransformError(f"Build {build_id} has no start_time")

    status = map_build_status(getattr(raw, "status", None))
    conclusion = map_build_result(getattr(raw, "result", None))

    definition = getattr(raw, "definition", None)
    repository = getattr(raw, "repository", None)

    return CIRunData(
        run_id=f"{project_name}-{build_id}",
        workflow_name=getattr(definition, "name", None) or "unknown-pipeline",
        repo_name=getattr(repository, "name", None) or "unknown",
        org_name=org_name,
        project_name=project_name,
        branch=strip_branch_prefix(getattr(raw, "source_branch", None)),
        commit_sha=getattr(raw, "source_version", None) or None,
        pr_number=None,
        status=status,
        conclusion=conclusion,
        started_at=started_at,
        completed_at=to_utc(getattr(raw, "finish_time", None)),
        is_flaky=False,
        flaky_test_count=0,
        failure_reason=None,
        jobs_count=0,
        failed_jobs_count=0,
    )
