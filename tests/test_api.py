"""Query endpoints against a mocked storage backend."""
from datetime import datetime, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from analytics_core.api.routers import main_router, register_exception_handlers
from analytics_core.core.exceptions import StorageError
from analytics_core.schemas.analytics import (
    DeviceStats,
    DeviceTypeStat,
    OverviewMetrics,
    PageViewStat,
    TimeSeriesPoint,
)
from analytics_core.schemas.query import Granularity
from analytics_core.storage.base import StorageAdapter

DATES = {"startDate": "2024-01-15", "endDate": "2024-01-16"}


@pytest.fixture
def storage(mocker):
    return mocker.AsyncMock(spec=StorageAdapter)


@pytest.fixture
def client(storage) -> TestClient:
    app = FastAPI()
    app.include_router(main_router, prefix="/api/v1")
    register_exception_handlers(app)
    app.state.storage = storage
    return TestClient(app)


def test_overview(client, storage):
    storage.get_overview.return_value = OverviewMetrics(total_events=12, total_pageviews=10, unique_sessions=3)

    response = client.get("/api/v1/projects/proj-1/overview", params={**DATES, "country": "DE"})

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["totalPageviews"] == 10
    assert body["data"]["uniqueSessions"] == 3
    assert "response_time_sec" in body
    filters = storage.get_overview.call_args.args[0]
    assert filters.project_id == "proj-1"
    assert filters.dimensions() == [("country", "DE")]


def test_pages_limit_forwarded(client, storage):
    storage.get_page_views.return_value = [
        PageViewStat(path="/", title="Home", pageviews=5, unique_sessions=2, unique_visitors=2),
    ]

    response = client.get("/api/v1/projects/proj-1/pages", params={**DATES, "limit": 5})

    assert response.status_code == 200
    assert response.json()["data"][0]["uniqueVisitors"] == 2
    assert storage.get_page_views.call_args.args[1] == 5


def test_devices(client, storage):
    storage.get_device_stats.return_value = DeviceStats(
        devices=[DeviceTypeStat(device_type="mobile", count=4, unique_sessions=1)],
    )

    response = client.get("/api/v1/projects/proj-1/devices", params=DATES)

    assert response.json()["data"]["devices"][0]["deviceType"] == "mobile"
    assert response.json()["data"]["operatingSystems"] == []


def test_timeseries_granularity(client, storage):
    storage.get_time_series.return_value = [
        TimeSeriesPoint(time=datetime(2024, 1, 15, 9, tzinfo=timezone.utc), events=1, pageviews=1,
                        unique_sessions=1, unique_visitors=1),
    ]

    response = client.get("/api/v1/projects/proj-1/timeseries", params={**DATES, "granularity": "hour"})

    assert response.status_code == 200
    assert response.json()["data"][0]["time"].startswith("2024-01-15T09:00:00")
    assert storage.get_time_series.call_args.args[1] == Granularity.HOUR


@pytest.mark.parametrize("params", [
    {"endDate": "2024-01-16"},
    {"startDate": "2024-13-01", "endDate": "2024-01-16"},
    {"startDate": "2024-01-17", "endDate": "2024-01-16"},
])
def test_invalid_dates_rejected(client, storage, params):
    response = client.get("/api/v1/projects/proj-1/overview", params=params)

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    storage.get_overview.assert_not_called()


@pytest.mark.parametrize("retryable, status_code", [(True, 503), (False, 500)])
def test_storage_errors(client, storage, retryable, status_code):
    storage.get_web_vitals.side_effect = StorageError(
        "get_web_vitals failed", operation="get_web_vitals", backend="duckdb", retryable=retryable
    )

    response = client.get("/api/v1/projects/proj-1/web-vitals", params=DATES)

    assert response.status_code == status_code
    assert response.json() == {"error": "storage_error", "detail": "get_web_vitals failed", "retryable": retryable}
