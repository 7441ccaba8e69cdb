"""Tests for query filter resolution."""
from datetime import date, datetime, timezone

import pytest

from analytics_core.core.exceptions import ValidationError
from analytics_core.services.query_filter import resolve


def test_resolves_camel_case_params():
    f = resolve({
        "projectId": "proj-1",
        "startDate": "2024-01-15",
        "endDate": "2024-01-16",
        "eventType": "pageview",
        "country": "DE",
    })
    assert f.project_id == "proj-1"
    assert f.start_date == date(2024, 1, 15)
    assert f.end_date == date(2024, 1, 16)
    assert f.dimensions() == [("event_type", "pageview"), ("country", "DE")]


def test_end_date_is_inclusive():
    f = resolve({"projectId": "p", "startDate": "2024-01-15", "endDate": "2024-01-15"})
    assert f.start_at == datetime(2024, 1, 15, tzinfo=timezone.utc)
    assert f.end_before == datetime(2024, 1, 16, tzinfo=timezone.utc)


def test_blank_optional_params_are_ignored():
    f = resolve({"projectId": "p", "startDate": "2024-01-15", "endDate": "2024-01-15", "userId": "  "})
    assert f.user_id is None
    assert f.dimensions() == []


@pytest.mark.parametrize("params", [
    {"startDate": "2024-01-15", "endDate": "2024-01-16"},
    {"projectId": "", "startDate": "2024-01-15", "endDate": "2024-01-16"},
    {"projectId": "p", "startDate": "2024-02-30", "endDate": "2024-03-01"},
    {"projectId": "p", "startDate": "yesterday", "endDate": "2024-03-01"},
    {"projectId": "p", "startDate": "2024-01-15"},
    {"projectId": "p", "startDate": 1705276800, "endDate": "2024-01-16"},
    {"projectId": "p", "startDate": "2024-01-17", "endDate": "2024-01-16"},
    {"projectId": "p", "startDate": "20240115", "endDate": "2024-01-16"},
    {"projectId": "p", "startDate": "2024-W03-1", "endDate": "2024-01-16"},
    {"projectId": "p", "startDate": "2024-01-15", "endDate": "2024-01-16T00:00:00"},
])
def test_invalid_params(params):
    with pytest.raises(ValidationError):
        resolve(params)


def test_error_lists_offending_fields():
    with pytest.raises(ValidationError) as exc_info:
        resolve({"startDate": "2024-01-15", "endDate": "nope"})
    assert "projectId" in str(exc_info.value)
    assert "endDate" in str(exc_info.value)
    assert len(exc_info.value.errors) == 2
