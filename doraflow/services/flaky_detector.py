"""
Flaky CI run detection.

A run is flaky when the same commit produced both a passing and a failing
(or partially successful) run within 24 hours of the commit's first run.
Detection is a batch pass over persisted, not-yet-flagged runs from the last
90 days. Runs are only ever flagged, never unflagged, so repeated passes are
idempotent.

Batches are independent: the runs of one commit that straddle a batch
boundary are not grouped together in that pass.
"""

import time
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

from sqlalchemy import select, update

from doraflow.db.database import Database
from doraflow.db.tables import CIRunRow
from doraflow.exceptions import OperationTimeoutError
from doraflow.models.ci_run import CIRunConclusion
from doraflow.models.ingestion import FlakyDetectionResult
from doraflow.utils.logging import get_logger
from doraflow.utils.resilience import with_timeout

logger = get_logger(__name__)

BATCH_SIZE = 500
LOOKBACK_DAYS = 90
DETECTION_TIMEOUT_SECONDS = 120.0
FLAKY_WINDOW = timedelta(hours=24)

_FAILING_CONCLUSIONS = {CIRunConclusion.FAILURE, CIRunConclusion.PARTIALLY_SUCCEEDED}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlakyCandidate(NamedTuple):
    id: int
    commit_sha: Optional[str]
    conclusion: Optional[CIRunConclusion]
    started_at: datetime


def find_flaky_run_ids(runs: Sequence[FlakyCandidate], window: timedelta = FLAKY_WINDOW) -> List[int]:
    """
    Ids of runs to flag within one batch.

    Runs are grouped by commit SHA (runs without one are ignored). In each
    group of two or more, only runs started within ``window`` of the earliest
    run count; if those include a success and a failure or partial success,
    all of them are flaky.
    """
    by_commit: Dict[str, List[FlakyCandidate]] = defaultdict(list)
    for run in runs:
        if run.commit_sha:
            by_commit[run.commit_sha].append(run)

    flaky_ids: List[int] = []
    for commit_sha, group in by_commit.items():
        if len(group) < 2:
            continue

        group.sort(key=lambda run: run.started_at)
        first_started = group[0].started_at
        in_window = [run for run in group if run.started_at - first_started <= window]
        if len(in_window) < 2:
            continue

        has_success = any(run.conclusion == CIRunConclusion.SUCCESS for run in in_window)
        has_failure = any(run.conclusion in _FAILING_CONCLUSIONS for run in in_window)
        if has_success and has_failure:
            logger.debug(
                f"Flaky pattern detected for commit {commit_sha[:8]} ({len(in_window)} runs in window)"
            )
            flaky_ids.extend(run.id for run in in_window)

    return flaky_ids


class CIRunBatchCursor:
    """
    Lazy, finite sequence of batches of unflagged recent runs.

    Keyset pagination on the primary key: each batch starts after the last id
    of the previous one, so flagging runs between batches never shifts the
    sequence and the cursor can resume from any ``after_id``.

    Usage:
        async for batch in CIRunBatchCursor(database, since):
            ...
    """

    def __init__(self, database: Database, since: datetime, batch_size: int = BATCH_SIZE, after_id: int = 0):
        self.database = database
        self.since = since
        self.batch_size = batch_size
        self.last_id = after_id
        self.exhausted = False

    async def next_batch(self) -> Optional[List[FlakyCandidate]]:
        """Fetch the next batch, or None when the sequence is exhausted."""
        if self.exhausted:
            return None

        async with self.database.session() as session:
            result = await session.execute(
                select(CIRunRow.id, CIRunRow.commit_sha, CIRunRow.conclusion, CIRunRow.started_at)
                .where(
                    CIRunRow.is_flaky.is_(False),
                    CIRunRow.started_at >= self.since,
                    CIRunRow.id > self.last_id,
                )
                .order_by(CIRunRow.id)
                .limit(self.batch_size)
            )
            rows = result.all()

        if len(rows) < self.batch_size:
            self.exhausted = True
        if not rows:
            return None

        self.last_id = rows[-1].id
        return [FlakyCandidate(*row) for row in rows]

    def __aiter__(self) -> "CIRunBatchCursor":
        return self

    async def __anext__(self) -> List[FlakyCandidate]:
        batch = await self.next_batch()
        if batch is None:
            raise StopAsyncIteration
        return batch


class FlakyDetector:
    """
    Runs one detection pass under a wall-clock budget.

    The deadline is checked before each batch and bounds the batch's read and
    update, so a stalled query cannot outlive it. When it has passed the pass
    stops early and reports ``timed_out`` with the work done so far.
    """

    def __init__(
        self,
        database: Database,
        batch_size: int = BATCH_SIZE,
        lookback_days: int = LOOKBACK_DAYS,
        timeout_seconds: float = DETECTION_TIMEOUT_SECONDS,
        window: timedelta = FLAKY_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.database = database
        self.batch_size = batch_size
        self.lookback_days = lookback_days
        self.timeout_seconds = timeout_seconds
        self.window = window
        self._clock = clock
        self._monotonic = monotonic

    async def detect(self) -> FlakyDetectionResult:
        start = self._monotonic()
        deadline = start + self.timeout_seconds
        result = FlakyDetectionResult()

        since = self._clock() - timedelta(days=self.lookback_days)
        cursor = CIRunBatchCursor(self.database, since, batch_size=self.batch_size)

        logger.info("Starting flaky run detection")

        while True:
            remaining = deadline - self._monotonic()
            try:
                if remaining <= 0:
                    raise OperationTimeoutError("flaky-detection", self.timeout_seconds)
                counts = await with_timeout(self._process_batch(cursor), remaining, "flaky-detection-batch")
            except OperationTimeoutError:
                result.timed_out = True
                logger.warning(
                    f"Flaky detection timed out after examining {result.runs_examined} runs, stopping early"
                )
                break

            if counts is None:
                break

            examined, flagged = counts
            result.batches += 1
            result.runs_examined += examined
            result.runs_flagged += flagged

            logger.info(
                f"Batch {result.batches}: examined {examined} runs, flagged {flagged}",
                extra={"batch": result.batches, "last_id": cursor.last_id},
            )

        result.duration_seconds = round(self._monotonic() - start, 2)
        logger.info(
            f"Flaky detection complete: examined {result.runs_examined} runs, "
            f"flagged {result.runs_flagged} in {result.duration_seconds:.2f}s"
        )
        return result

    async def _process_batch(self, cursor: CIRunBatchCursor) -> Optional[Tuple[int, int]]:
        """Read, classify and flag one batch; returns (examined, flagged) or None when done."""
        batch = await cursor.next_batch()
        if batch is None:
            return None

        flaky_ids = find_flaky_run_ids(batch, self.window)
        if flaky_ids:
            await self._mark_flaky(flaky_ids)
        return len(batch), len(flaky_ids)

    async def _mark_flaky(self, run_ids: List[int]) -> None:
        async with self.database.session() as session:
            await session.execute(
                update(CIRunRow)
                .where(CIRunRow.id.in_(run_ids))
                .values(is_flaky=True, flaky_test_count=1)
                .execution_options(synchronize_session=False)
            )
