"""
Smart-merge upsert for pull requests and CI runs.

Each record is inserted when new, updated when the incoming data is newer or
adds something previously missing, and skipped otherwise. Re-ingesting
unchanged upstream data therefore writes nothing.
"""

from typing import Any, Dict, List

from sqlalchemy import select

from doraflow.db.database import Database
from doraflow.db.tables import CIRunRow, PullRequestRow
from doraflow.models.ci_run import CIRunData
from doraflow.models.ingestion import UpsertAction
from doraflow.models.pull_request import PullRequestData
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)

REVIEW_FIELDS = ("first_review_at", "approved_at")
PULL_REQUEST_KEY = ("pr_number", "repo_name", "project_name")


def missing_review_fields(existing: PullRequestData, incoming: PullRequestData) -> List[str]:
    """Review timestamps the incoming record has and the stored one lacks."""
    return [
        field for field in REVIEW_FIELDS
        if getattr(existing, field) is None and getattr(incoming, field) is not None
    ]


def should_update_pull_request(existing: PullRequestData, incoming: PullRequestData) -> bool:
    """Newer source data, or enrichment filling a previously-null review timestamp."""
    return incoming.updated_at > existing.updated_at or bool(missing_review_fields(existing, incoming))


def should_update_ci_run(existing: CIRunData, incoming: CIRunData) -> bool:
    """Status change, a run newly flagged flaky, or a PR number filled in."""
    return (
        incoming.status != existing.status
        or (incoming.is_flaky and not existing.is_flaky)
        or (incoming.pr_number is not None and existing.pr_number is None)
    )


def merge_pull_request(existing: PullRequestData, incoming: PullRequestData) -> Dict[str, Any]:
    """
    Field values to write for an update.

    A record that is not older than the stored one overwrites every mutable
    field. An older record only fills the review timestamps the stored one is
    missing, so newer data never regresses.
    """
    if incoming.updated_at >= existing.updated_at:
        return incoming.model_dump(exclude=set(PULL_REQUEST_KEY))
    return {field: getattr(incoming, field) for field in missing_review_fields(existing, incoming)}


def merge_ci_run(existing: CIRunData, incoming: CIRunData) -> Dict[str, Any]:
    """
    Field values to write for an update.

    Flaky flags belong to the flaky detector: ingestion can raise them but
    never clears them. A stored PR number is never cleared either.
    """
    values = incoming.model_dump(exclude={"run_id"})
    values["is_flaky"] = existing.is_flaky or incoming.is_flaky
    values["flaky_test_count"] = max(existing.flaky_test_count, incoming.flaky_test_count)
    if incoming.pr_number is None:
        values["pr_number"] = existing.pr_number
    return values


class UpsertEngine:
    """Applies the smart-merge policy against the database."""

    def __init__(self, database: Database):
        self.database = database

    async def upsert_pull_request(self, data: PullRequestData) -> UpsertAction:
        async with self.database.session() as session:
            result = await session.execute(
                select(PullRequestRow)
                .where(
                    PullRequestRow.pr_number == data.pr_number,
                    PullRequestRow.repo_name == data.repo_name,
                    PullRequestRow.project_name == data.project_name,
                )
                .limit(1)
            )
            row = result.scalar_one_or_none()

            if row is None:
                session.add(PullRequestRow(**data.model_dump()))
                return UpsertAction.INSERTED

            existing = PullRequestData.model_validate(row, from_attributes=True)
            if not should_update_pull_request(existing, data):
                return UpsertAction.SKIPPED

            for field, value in merge_pull_request(existing, data).items():
                setattr(row, field, value)

        logger.debug(
            f"Updated PR #{data.pr_number}",
            extra={"project": data.project_name, "repository": data.repo_name},
        )
        return UpsertAction.UPDATED

    async def upsert_ci_run(self, data: CIRunData) -> UpsertAction:
        async with self.database.session() as session:
            result = await session.execute(
                select(CIRunRow).where(CIRunRow.run_id == data.run_id).limit(1)
            )
            row = result.scalar_one_or_none()

            if row is None:
                session.add(CIRunRow(**data.model_dump()))
                return UpsertAction.INSERTED

            existing = CIRunData.model_validate(row, from_attributes=True)
            if not should_update_ci_run(existing, data):
                return UpsertAction.SKIPPED

            for field, value in merge_ci_run(existing, data).items():
                setattr(row, field, value)

        logger.debug(f"Updated CI run {data.run_id}", extra={"project": data.project_name, "run_id": data.run_id})
        return UpsertAction.UPDATED
