"""Pytest fixtures for tonga tests."""

import os
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Keep tests independent of a developer's ``.env`` and log directory."""
    os.environ.setdefault("TONGA_ENVIRONMENT", "test")
    os.environ.setdefault("TONGA_LOG_TO_FILE", "false")

    from tonga.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Clear settings cache before each test."""
    from tonga.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def default_structlog_config():
    """Put structlog back on tonga's stdlib-backed default after each test."""
    yield
    import structlog

    from tonga.logging import configure_default_logging

    structlog.reset_defaults()
    configure_default_logging()


@pytest.fixture
def mock_conn() -> AsyncMock:
    """Mock asyncpg connection/pool exposing execute/fetch/fetchrow/fetchval."""
    conn = AsyncMock()
    conn.fetch.return_value = []
    conn.fetchval.return_value = None
    conn.execute.return_value = "SELECT 1"
    return conn


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_message_row(
    message_id: int = 1,
    topic: str = "orders",
    body: Any = '{"order": 1}',
    created_at: datetime | None = None,
    deliver_at: datetime | None = None,
) -> tuple[Any, ...]:
    """Build a positional row shaped like a ``tonga_read`` result."""
    ts = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    return (message_id, topic, body, created_at or ts, deliver_at or ts)


@pytest.fixture
def message_row():
    """Factory for ``tonga_read`` rows."""
    return make_message_row
