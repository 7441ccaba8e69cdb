import re
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

CALENDAR_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"


# Optional filter field -> stored column it matches exactly.
DIMENSION_COLUMNS: dict[str, str] = {
    "event_type": "event_type",
    "user_id": "user_id",
    "session_id": "session_id",
    "page_path": "page_path",
    "country": "country",
}


class QueryFilter(BaseModel):
    """
    Predicates shared by every read aggregation: exact project match, an
    inclusive calendar-day range and any optional exact-match dimensions.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    project_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    event_type: Optional[str] = None
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    page_path: Optional[str] = None
    country: Optional[str] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _calendar_date(cls, value: Any) -> date:
        if isinstance(value, datetime):
            raise ValueError("expected a calendar date, not a timestamp")
        if isinstance(value, date):
            return value
        if isinstance(value, str) and CALENDAR_DATE.fullmatch(value.strip()):
            return date.fromisoformat(value.strip())
        raise ValueError("expected an ISO date string (YYYY-MM-DD)")

    @field_validator(*DIMENSION_COLUMNS, mode="before")
    @classmethod
    def _blank_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _ordered_range(self) -> "QueryFilter":
        if self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self

    @property
    def start_at(self) -> datetime:
        """Inclusive lower bound, midnight UTC of start_date."""
        return datetime.combine(self.start_date, time.min, tzinfo=timezone.utc)

    @property
    def end_before(self) -> datetime:
        """Exclusive upper bound, midnight UTC of the day after end_date."""
        return datetime.combine(self.end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)

    def dimensions(self) -> list[tuple[str, str]]:
        """(column, value) pairs for the optional predicates that are set."""
        return [
            (column, getattr(self, field))
            for field, column in DIMENSION_COLUMNS.items()
            if getattr(self, field) is not None
        ]
