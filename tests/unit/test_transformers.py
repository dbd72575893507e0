"""Unit tests for SDK-to-record transformers and upstream enum mapping."""

from datetime import datetime, timedelta, timezone

import pytest
from azure.devops.v7_1.build.models import Build, BuildRepository, DefinitionReference
from azure.devops.v7_1.git.models import (
    GitPullRequest,
    GitRepository,
    IdentityRef,
    WebApiTagDefinition,
)

from doraflow.exceptions import TransformError
from doraflow.models import (
    BuildResult,
    BuildStatus,
    CIRunConclusion,
    CIRunStatus,
    PullRequestState,
    PullRequestStatus,
)
from doraflow.services.transformers import (
    map_build_result,
    map_build_status,
    map_pull_request_state,
    strip_branch_prefix,
    to_utc,
    transform_ci_run,
    transform_pull_request,
)

CREATED = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
CLOSED = datetime(2024, 5, 2, 17, 30, tzinfo=timezone.utc)


@pytest.fixture
def raw_pr():
    return GitPullRequest(
        pull_request_id=42,
        title="Add ledger export",
        status="completed",
        creation_date=CREATED,
        closed_date=CLOSED,
        created_by=IdentityRef(display_name="Ada Lovelace"),
        repository=GitRepository(id="repo-1", name="api"),
        labels=[WebApiTagDefinition(name="feature"), WebApiTagDefinition(name=None)],
        is_draft=False,
        source_ref_name="refs/heads/feature/ledger",
        target_ref_name="refs/heads/main",
    )


@pytest.fixture
def raw_build():
    return Build(
        id=901,
        status="completed",
        result="partiallySucceeded",
        start_time=CREATED,
        finish_time=CREATED + timedelta(minutes=12),
        queue_time=CREATED - timedelta(minutes=1),
        definition=DefinitionReference(name="api-ci"),
        repository=BuildRepository(name="api"),
        source_branch="refs/heads/main",
        source_version="abc123" * 6 + "abcd",
    )


class TestUpstreamEnums:

    @pytest.mark.parametrize("value,expected", [
        (3, PullRequestStatus.COMPLETED),
        ("3", PullRequestStatus.COMPLETED),
        ("completed", PullRequestStatus.COMPLETED),
        ("abandoned", PullRequestStatus.ABANDONED),
        ("active", PullRequestStatus.ACTIVE),
        (99, PullRequestStatus.NOT_SET),
        ("weird", PullRequestStatus.NOT_SET),
        (None, PullRequestStatus.NOT_SET),
    ])
    def test_pull_request_status_parse(self, value, expected):
        assert PullRequestStatus.parse(value) is expected

    def test_camel_case_names(self):
        assert BuildStatus.parse("inProgress") is BuildStatus.IN_PROGRESS
        assert BuildStatus.parse("notStarted") is BuildStatus.NOT_STARTED
        assert BuildResult.parse("partiallySucceeded") is BuildResult.PARTIALLY_SUCCEEDED
        assert BuildResult.parse(8) is BuildResult.FAILED


class TestStateMapping:

    @pytest.mark.parametrize("status,expected", [
        ("completed", PullRequestState.MERGED),
        ("abandoned", PullRequestState.CLOSED),
        ("active", PullRequestState.OPEN),
        (0, PullRequestState.OPEN),
    ])
    def test_pull_request_state(self, status, expected):
        assert map_pull_request_state(status) == expected

    @pytest.mark.parametrize("status,expected", [
        (1, CIRunStatus.IN_PROGRESS),
        (2, CIRunStatus.COMPLETED),
        (4, CIRunStatus.CANCELLING),
        (8, CIRunStatus.UNKNOWN),
        (32, CIRunStatus.UNKNOWN),
        (None, CIRunStatus.UNKNOWN),
    ])
    def test_build_status(self, status, expected):
        assert map_build_status(status) == expected

    @pytest.mark.parametrize("result,expected", [
        ("succeeded", CIRunConclusion.SUCCESS),
        ("partiallySucceeded", CIRunConclusion.PARTIALLY_SUCCEEDED),
        ("failed", CIRunConclusion.FAILURE),
        ("canceled", CIRunConclusion.CANCELLED),
        ("none", None),
        (None, None),
    ])
    def test_build_result(self, result, expected):
        assert map_build_result(result) == expected


class TestHelpers:

    def test_strip_branch_prefix(self):
        assert strip_branch_prefix("refs/heads/feature/x") == "feature/x"
        assert strip_branch_prefix("refs/tags/v1") == "refs/tags/v1"
        assert strip_branch_prefix("refs/heads/") is None
        assert strip_branch_prefix(None) is None

    def test_to_utc(self):
        naive = datetime(2024, 5, 1, 9, 0)
        offset = datetime(2024, 5, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))

        assert to_utc(naive) == CREATED
        assert to_utc(offset) == CREATED
        assert to_utc(offset).tzinfo == timezone.utc
        assert to_utc("2024-05-01T09:00:00Z") == CREATED
        assert to_utc(None) is None

    def test_to_utc_rejects_garbage(self):
        with pytest.raises(TransformError):
            to_utc("yesterday")


class TestTransformPullRequest:

    def test_merged_pull_request(self, raw_pr):
        data = transform_pull_request(raw_pr, "Payments", "contoso")

        assert data.pr_number == 42
        assert data.repo_name == "api"
        assert data.project_name == "Payments"
        assert data.org_name == "contoso"
        assert data.author == "Ada Lovelace"
        assert data.state == PullRequestState.MERGED
        assert data.created_at == CREATED
        assert data.updated_at == CLOSED
        assert data.closed_at == CLOSED
        assert data.merged_at == CLOSED
        assert data.labels == ["feature"]
        assert data.base_branch == "main"
        assert data.head_branch == "feature/ledger"
        assert (data.additions, data.deletions, data.changed_files) == (0, 0, 0)
        assert data.first_review_at is None
        assert data.approved_at is None

    def test_abandoned_pull_request_is_closed_not_merged(self, raw_pr):
        raw_pr.status = "abandoned"

        data = transform_pull_request(raw_pr, "Payments", "contoso")

        assert data.state == PullRequestState.CLOSED
        assert data.closed_at == CLOSED
        assert data.merged_at is None

    def test_open_pull_request_uses_creation_date_as_updated_at(self, raw_pr):
        raw_pr.status = "active"
        raw_pr.closed_date = None

        data = transform_pull_request(raw_pr, "Payments", "contoso")

        assert data.state == PullRequestState.OPEN
        assert data.updated_at == CREATED
        assert data.closed_at is None
        assert data.merged_at is None

    def test_defaults_for_missing_fields(self):
        raw = GitPullRequest(pull_request_id=7, creation_date=CREATED, status="active")

        data = transform_pull_request(raw, "Payments", "contoso")

        assert data.title == "Untitled PR"
        assert data.author == "Unknown"
        assert data.repo_name == "unknown"
        assert data.base_branch == "main"
        assert data.head_branch is None
        assert data.labels == []
        assert data.is_draft is False

    def test_missing_id_or_creation_date_is_rejected(self):
        with pytest.raises(TransformError):
            transform_pull_request(GitPullRequest(creation_date=CREATED), "Payments", "contoso")
        with pytest.raises(TransformError):
            transform_pull_request(GitPullRequest(pull_request_id=1), "Payments", "contoso")


class TestTransformCIRun:

    def test_completed_build(self, raw_build):
        data = transform_ci_run(raw_build, "Payments", "contoso")

        assert data.run_id == "Payments-901"
        assert data.workflow_name == "api-ci"
        assert data.repo_name == "api"
        assert data.branch == "main"
        assert data.commit_sha == raw_build.source_version
        assert data.status == CIRunStatus.COMPLETED
        assert data.conclusion == CIRunConclusion.PARTIALLY_SUCCEEDED
        assert data.started_at == CREATED
        assert data.completed_at == CREATED + timedelta(minutes=12)
        assert data.is_flaky is False
        assert data.flaky_test_count == 0
        assert data.pr_number is None

    def test_defaults_for_missing_fields(self):
        raw = Build(id=5, status="inProgress", start_time=CREATED)

        data = transform_ci_run(raw, "Payments", "contoso")

        assert data.workflow_name == "unknown-pipeline"
        assert data.repo_name == "unknown"
        assert data.branch is None
        assert data.commit_sha is None
        assert data.status == CIRunStatus.IN_PROGRESS
        assert data.conclusion is None
        assert data.completed_at is None

    def test_queue_time_stands_in_for_missing_start_time(self):
        queued = CREATED - timedelta(minutes=3)
        raw = Build(id=6, status="notStarted", queue_time=queued)

        data = transform_ci_run(raw, "Payments", "contoso")

        assert data.started_at == queued
        assert data.status == CIRunStatus.UNKNOWN

    def test_build_without_any_time_is_rejected(self):
        with pytest.raises(TransformError):
            transform_ci_run(Build(id=7, status="completed"), "Payments", "contoso")
