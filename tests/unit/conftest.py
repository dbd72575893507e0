"""Shared fixtures for unit tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from doraflow.db.database import Database
from doraflow.utils.resilience import RateLimiter, RetryExecutor


@pytest_asyncio.fixture
async def database():
    """Fresh in-memory SQLite database with all tables."""
    db = Database("sqlite+aiosqlite://")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def now():
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def retry_executor():
    """Executor that never waits."""
    return RetryExecutor(RateLimiter(1000), max_retries=3, sleep=AsyncMock())
