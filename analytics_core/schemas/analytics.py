from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class ResultModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class OverviewMetrics(ResultModel):
    total_events: int = 0
    total_pageviews: int = 0
    unique_sessions: int = 0
    unique_visitors: int = 0
    unique_users: int = 0


class PageViewStat(ResultModel):
    path: str
    title: Optional[str] = None
    pageviews: int
    unique_sessions: int
    unique_visitors: int


class ReferrerStat(ResultModel):
    referrer_domain: str
    visits: int
    unique_sessions: int


class DeviceTypeStat(ResultModel):
    device_type: str
    count: int
    unique_sessions: int


class BrowserStat(ResultModel):
    browser_name: str
    browser_version: Optional[str] = None
    count: int


class OperatingSystemStat(ResultModel):
    os_name: str
    os_version: Optional[str] = None
    count: int


class DeviceStats(ResultModel):
    devices: List[DeviceTypeStat] = []
    browsers: List[BrowserStat] = []
    operating_systems: List[OperatingSystemStat] = []


class GeoStat(ResultModel):
    country: str
    city: Optional[str] = None
    pageviews: int
    unique_sessions: int
    unique_visitors: int


class TimeSeriesPoint(ResultModel):
    time: datetime
    events: int
    pageviews: int
    unique_sessions: int
    unique_visitors: int

    @field_validator("time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # columnar backend returns naive UTC buckets
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class WebVitalMetric(ResultModel):
    metric: str
    p50: Optional[float] = None
    p75: Optional[float] = None
    p95: Optional[float] = None
    p99: Optional[float] = None
    good_count: int = 0
    needs_improvement_count: int = 0
    poor_count: int = 0
