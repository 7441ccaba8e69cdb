"""Shared test fixtures."""
import uuid
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from loguru import logger

from analytics_core.core.config import DuckDBConfig
from analytics_core.db.db_helper import DuckDBHelper
from analytics_core.schemas.events import CanonicalEventRow
from analytics_core.schemas.query import QueryFilter
from analytics_core.storage.duckdb_storage import DuckDBStorage

CHROME_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
PROJECT = "proj-1"
DAY_ONE = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
DAY_TWO = datetime(2024, 1, 16, 10, 0, tzinfo=timezone.utc)


def make_row(**overrides: Any) -> CanonicalEventRow:
    values: dict[str, Any] = {
        "event_id": uuid.uuid4(),
        "project_id": PROJECT,
        "event_type": "pageview",
        "event_time": DAY_ONE,
        "received_at": DAY_ONE,
    }
    values.update(overrides)
    return CanonicalEventRow(**values)


@pytest.fixture
def raw_event() -> dict:
    return {
        "projectId": PROJECT,
        "eventType": "pageview",
        "timestamp": 1705312800000,  # 2024-01-15T10:00:00Z
        "sessionId": "s-1",
        "anonymousId": "a-1",
        "properties": {"path": "/from-properties", "plan": "pro"},
        "context": {
            "page": {
                "url": "https://example.com/pricing",
                "title": "Pricing",
                "path": "/pricing",
                "referrer": "https://www.google.com/search?q=example",
            },
            "userAgent": CHROME_WINDOWS_UA,
            "locale": "en-US",
            "screen": {"width": 1920, "height": 1080},
            "ip": "203.0.113.7",
            "geo": {"country": "DE", "city": "Berlin", "region": "BE"},
            "receivedAt": 1705312801000,
        },
    }


@pytest.fixture
def filters() -> QueryFilter:
    return QueryFilter(project_id=PROJECT, start_date="2024-01-15", end_date="2024-01-16")


@pytest_asyncio.fixture
async def duck_storage():
    """Columnar backend on a private in-memory database."""
    storage = DuckDBStorage(DuckDBHelper(DuckDBConfig(path=":memory:")), default_timeout=10.0)
    await storage.initialize_schema()
    yield storage
    await storage.close()


@pytest.fixture
def log_messages():
    """Messages logged through loguru while the test runs."""
    messages: list[str] = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(sink_id)
