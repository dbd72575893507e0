"""Persistence layer: tables and session management."""

from doraflow.db.database import Database
from doraflow.db.tables import Base, CIRunRow, DeploymentRow, PullRequestRow, UTCDateTime

__all__ = [
    "Database",
    "Base",
    "PullRequestRow",
    "CIRunRow",
    "DeploymentRow",
    "UTCDateTime",
]
