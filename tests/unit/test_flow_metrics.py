"""Unit tests for pull request and CI metrics."""

from datetime import datetime, timedelta, timezone

import pytest

from doraflow.metrics import CIMetrics, PullRequestMetrics
from doraflow.models import CIRunConclusion, CIRunStatus, PullRequestState
from doraflow.services.upsert import UpsertEngine
from factories import make_ci_run, make_pull_request

START = datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)
END = datetime(2024, 5, 31, 23, 59, 59, tzinfo=timezone.utc)
CREATED = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)

_numbers = iter(range(1, 10_000))


def merged_pr(size=10, hours_to_merge=24.0, project="Payments", is_draft=False, created_at=CREATED, **overrides):
    merged_at = created_at + timedelta(hours=hours_to_merge)
    values = dict(
        pr_number=next(_numbers),
        project_name=project,
        created_at=created_at,
        updated_at=merged_at,
        closed_at=merged_at,
        merged_at=merged_at,
        state=PullRequestState.MERGED,
        additions=size,
        deletions=0,
        is_draft=is_draft,
    )
    values.update(overrides)
    return make_pull_request(**values)


async def store(database, *records):
    engine = UpsertEngine(database)
    for record in records:
        if hasattr(record, "run_id"):
            await engine.upsert_ci_run(record)
        else:
            await engine.upsert_pull_request(record)


class TestCycleTime:

    @pytest.mark.asyncio
    async def test_merged_non_draft_prs_only(self, database):
        await store(
            database,
            merged_pr(hours_to_merge=4),
            merged_pr(hours_to_merge=10),
            merged_pr(hours_to_merge=100, is_draft=True),
            make_pull_request(pr_number=next(_numbers), created_at=CREATED),
            merged_pr(hours_to_merge=1, created_at=START - timedelta(days=1)),
        )

        cycle_time = await PullRequestMetrics(database).cycle_time(START, END)

        assert cycle_time.count == 2
        assert cycle_time.p50_hours == pytest.approx(7.0)

    @pytest.mark.asyncio
    async def test_by_project(self, database):
        await store(
            database,
            merged_pr(hours_to_merge=4, project="Payments"),
            merged_pr(hours_to_merge=8, project="Identity"),
        )

        by_project = await PullRequestMetrics(database).cycle_time_by_project(START, END)

        assert by_project["Payments"].p50_hours == pytest.approx(4.0)
        assert by_project["Identity"].p50_hours == pytest.approx(8.0)


class TestReviewWaitTime:

    @pytest.mark.asyncio
    async def test_reviewed_prs(self, database):
        await store(
            database,
            make_pull_request(pr_number=1, created_at=CREATED, first_review_at=CREATED + timedelta(hours=2)),
            make_pull_request(pr_number=2, created_at=CREATED, first_review_at=CREATED + timedelta(hours=6)),
            make_pull_request(pr_number=3, created_at=CREATED),
        )

        wait = await PullRequestMetrics(database).review_wait_time(START, END, "Payments")

        assert wait.count == 2
        assert wait.p50_hours == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_empty_window(self, database):
        wait = await PullRequestMetrics(database).review_wait_time(START, END)

        assert (wait.p50_hours, wait.p90_hours, wait.count) == (None, None, 0)


class TestSizeDistribution:

    @pytest.mark.asyncio
    async def test_bucket_boundaries(self, database):
        sizes = [50, 51, 200, 201, 500, 501, 1000, 1001]
        await store(database, *[merged_pr(additions=size // 2, deletions=size - size // 2) for size in sizes])

        distribution = await PullRequestMetrics(database).size_distribution(START, END)

        assert (distribution.xs, distribution.s, distribution.m, distribution.l, distribution.xl) == (1, 2, 2, 2, 1)
        assert distribution.total == 8
        assert distribution.percentages == {"xs": 12.5, "s": 25.0, "m": 25.0, "l": 25.0, "xl": 12.5}

    @pytest.mark.asyncio
    async def test_excludes_drafts_and_unmerged(self, database):
        await store(
            database,
            merged_pr(size=10),
            merged_pr(size=10, is_draft=True),
            make_pull_request(pr_number=next(_numbers), created_at=CREATED, additions=10),
        )

        distribution = await PullRequestMetrics(database).size_distribution(START, END)

        assert distribution.total == 1
        assert distribution.xs == 1

    @pytest.mark.asyncio
    async def test_empty_distribution(self, database):
        distribution = await PullRequestMetrics(database).size_distribution(START, END)

        assert distribution.total == 0
        assert set(distribution.percentages.values()) == {0.0}

    @pytest.mark.asyncio
    async def test_by_project(self, database):
        await store(
            database,
            merged_pr(size=10, project="Payments"),
            merged_pr(size=300, project="Payments"),
            merged_pr(size=2000, project="Identity"),
        )

        by_project = await PullRequestMetrics(database).size_distribution_by_project(START, END)

        assert by_project["Payments"].percentages["xs"] == 50.0
        assert by_project["Payments"].m == 1
        assert by_project["Identity"].xl == 1


class TestCIMetrics:

    @pytest.fixture
    def started(self):
        return datetime(2024, 5, 20, 8, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_rates(self, database, started):
        await store(
            database,
            make_ci_run(run_id="P-1", conclusion=CIRunConclusion.SUCCESS, is_flaky=True, started_at=started),
            make_ci_run(run_id="P-2", conclusion=CIRunConclusion.FAILURE, is_flaky=True, started_at=started),
            make_ci_run(run_id="P-3", conclusion=CIRunConclusion.SUCCESS, started_at=started),
            make_ci_run(run_id="P-4", status=CIRunStatus.IN_PROGRESS, conclusion=None, started_at=started),
            make_ci_run(run_id="P-5", conclusion=CIRunConclusion.SUCCESS, started_at=START - timedelta(days=1)),
            make_ci_run(run_id="P-6", conclusion=CIRunConclusion.CANCELLED, started_at=started),
        )
        ci = CIMetrics(database)

        assert await ci.flaky_test_rate(START, END) == 40.0
        assert await ci.flaky_run_count(START, END) == 2
        assert await ci.success_rate(START, END) == 40.0

    @pytest.mark.asyncio
    async def test_rates_are_rounded(self, database, started):
        await store(
            database,
            make_ci_run(run_id="P-1", is_flaky=True, started_at=started),
            make_ci_run(run_id="P-2", conclusion=CIRunConclusion.FAILURE, started_at=started),
            make_ci_run(run_id="P-3", conclusion=CIRunConclusion.FAILURE, started_at=started),
        )
        ci = CIMetrics(database)

        assert await ci.flaky_test_rate(START, END) == 33.33
        assert await ci.success_rate(START, END) == 33.33

    @pytest.mark.asyncio
    async def test_no_runs(self, database):
        ci = CIMetrics(database)

        assert await ci.flaky_test_rate(START, END) == 0.0
        assert await ci.flaky_run_count(START, END) == 0
        assert await ci.success_rate(START, END) == 0.0

    @pytest.mark.asyncio
    async def test_by_project(self, database, started):
        await store(
            database,
            make_ci_run(run_id="P-1", project_name="Payments", is_flaky=True, started_at=started),
            make_ci_run(run_id="P-2", project_name="Payments", started_at=started),
            make_ci_run(run_id="I-1", project_name="Identity", started_at=started),
        )
        ci = CIMetrics(database)

        assert await ci.flaky_test_rate_by_project(START, END) == {"Payments": 50.0, "Identity": 0.0}
        assert await ci.flaky_run_count_by_project(START, END) == {"Payments": 1, "Identity": 0}
        assert await ci.success_rate_by_project(START, END) == {"Payments": 100.0, "Identity": 100.0}
