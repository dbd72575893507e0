"""Shared query helpers for metric calculators."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import ColumnElement, and_, case, func, select

from doraflow.db.database import Database
from doraflow.utils.logging import get_logger

logger = get_logger(__name__)


def count_where(condition: ColumnElement) -> ColumnElement:
    """``COALESCE(SUM(CASE WHEN condition THEN 1 ELSE 0 END), 0)``."""
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def percentage(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def scope_label(project_name: Optional[str]) -> str:
    return project_name or "Organization"


class MetricsQuery:
    """
    Base class for windowed, read-only metric queries.

    Every metric filters on an inclusive ``[start_date, end_date]`` window and
    an optional project. The ``..._by_project`` variants group by project in
    the same query instead of issuing one query per project.
    """

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def window(column: Any, start_date: datetime, end_date: datetime) -> List[ColumnElement]:
        return [column >= start_date, column <= end_date]

    async def aggregate(
        self,
        columns: Sequence[ColumnElement],
        conditions: Sequence[ColumnElement],
        project_column: Any,
        project_name: Optional[str] = None,
        by_project: bool = False,
    ) -> List[Any]:
        """
        Run one aggregate query.

        With ``by_project`` the rows are grouped by project and carry a
        ``project_name`` column first; otherwise exactly one row is returned.
        """
        conditions = list(conditions)
        if project_name is not None:
            conditions.append(project_column == project_name)

        if by_project:
            stmt = (
                select(project_column.label("project_name"), *columns)
                .where(and_(*conditions))
                .group_by(project_column)
            )
        else:
            stmt = select(*columns).where(and_(*conditions))

        async with self.database.session() as session:
            result = await session.execute(stmt)
            return list(result.all())

    async def fetch(self, stmt) -> List[Any]:
        async with self.database.session() as session:
            result = await session.execute(stmt)
            return list(result.all())


def group_by_project(rows: Sequence[Any], value) -> Dict[str, List[Any]]:
    """Collect ``value(row)`` per ``row.project_name``."""
    grouped: Dict[str, List[Any]] = {}
    for row in rows:
        grouped.setdefault(row.project_name, []).append(value(row))
    return grouped
