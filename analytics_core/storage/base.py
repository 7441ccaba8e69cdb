"""
Backend-agnostic storage contract.

StorageAdapter fixes the write primitive and the seven read aggregations,
enforces timeouts and turns driver failures into StorageError. Concrete
variants only translate each operation into their own query dialect and
return plain dict rows keyed by result field name.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Optional, Sequence

from loguru import logger

from analytics_core.core.config import StorageBackend, settings
from analytics_core.core.exceptions import AnalyticsError, StorageError, ValidationError
from analytics_core.schemas.analytics import (
    BrowserStat,
    DeviceStats,
    DeviceTypeStat,
    GeoStat,
    OperatingSystemStat,
    OverviewMetrics,
    PageViewStat,
    ReferrerStat,
    TimeSeriesPoint,
    WebVitalMetric,
)
from analytics_core.schemas.events import CanonicalEventRow
from analytics_core.schemas.query import Granularity, QueryFilter

PAGEVIEW = "pageview"
WEBVITAL = "webvital"
GOOD, NEEDS_IMPROVEMENT, POOR = "good", "needs-improvement", "poor"
# scheme://[userinfo@]host[:port]... -> host
REFERRER_HOST_PATTERN = r"^https?://(?:[^/?#@]*@)?([^/?#:]+)"

Row = dict[str, Any]


class StorageAdapter(ABC):
    backend: ClassVar[StorageBackend]

    def __init__(
            self,
            default_timeout: float = settings.storage.default_timeout,
            device_top_n: int = settings.ingest.device_top_n,
    ):
        self.default_timeout = default_timeout
        self.device_top_n = device_top_n

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def insert_events(self, rows: Sequence[CanonicalEventRow], *, timeout: Optional[float] = None) -> int:
        """
        Insert all rows in one transaction or none of them. A row whose
        event_id already exists is skipped; any other failure rolls back the
        whole batch and raises StorageError.
        """
        if not rows:
            return 0
        await self._guard("insert_events", self._insert_events(rows), timeout)
        logger.info(f"Inserted batch of {len(rows)} events into {self.backend.value}.")
        return len(rows)

    async def initialize_schema(self, *, timeout: Optional[float] = None):
        await self._guard("initialize_schema", self._initialize_schema(), timeout)
        logger.info(f"Events schema ready on {self.backend.value}.")

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_overview(self, filters: QueryFilter, *, timeout: Optional[float] = None) -> OverviewMetrics:
        row = await self._guard("get_overview", self._overview(filters), timeout)
        return OverviewMetrics.model_validate(row or {})

    async def get_page_views(
            self, filters: QueryFilter, limit: int = settings.ingest.default_limit, *, timeout: Optional[float] = None
    ) -> list[PageViewStat]:
        rows = await self._guard("get_page_views", self._page_views(filters, self._limit(limit)), timeout)
        return [PageViewStat.model_validate(row) for row in rows]

    async def get_referrers(
            self, filters: QueryFilter, limit: int = settings.ingest.default_limit, *, timeout: Optional[float] = None
    ) -> list[ReferrerStat]:
        rows = await self._guard("get_referrers", self._referrers(filters, self._limit(limit)), timeout)
        return [ReferrerStat.model_validate(row) for row in rows]

    async def get_device_stats(self, filters: QueryFilter, *, timeout: Optional[float] = None) -> DeviceStats:
        devices, browsers, systems = await self._guard("get_device_stats", self._device_stats(filters), timeout)
        return DeviceStats(
            devices=[DeviceTypeStat.model_validate(row) for row in devices],
            browsers=[BrowserStat.model_validate(row) for row in browsers],
            operating_systems=[OperatingSystemStat.model_validate(row) for row in systems],
        )

    async def get_geo_stats(
            self, filters: QueryFilter, limit: int = settings.ingest.default_limit, *, timeout: Optional[float] = None
    ) -> list[GeoStat]:
        rows = await self._guard("get_geo_stats", self._geo_stats(filters, self._limit(limit)), timeout)
        return [GeoStat.model_validate(row) for row in rows]

    async def get_time_series(
            self,
            filters: QueryFilter,
            granularity: Granularity = Granularity.DAY,
            *,
            timeout: Optional[float] = None,
    ) -> list[TimeSeriesPoint]:
        granularity = Granularity(granularity)
        rows = await self._guard("get_time_series", self._time_series(filters, granularity), timeout)
        return [TimeSeriesPoint.model_validate(row) for row in rows]

    async def get_web_vitals(self, filters: QueryFilter, *, timeout: Optional[float] = None) -> list[WebVitalMetric]:
        rows = await self._guard("get_web_vitals", self._web_vitals(filters), timeout)
        return [WebVitalMetric.model_validate(row) for row in rows]

    async def close(self):
        await self._dispose()

    # ------------------------------------------------------------------
    # Dialect hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _insert_events(self, rows: Sequence[CanonicalEventRow]) -> None: ...

    @abstractmethod
    async def _initialize_schema(self) -> None: ...

    @abstractmethod
    async def _overview(self, filters: QueryFilter) -> Optional[Row]: ...

    @abstractmethod
    async def _page_views(self, filters: QueryFilter, limit: int) -> list[Row]: ...

    @abstractmethod
    async def _referrers(self, filters: QueryFilter, limit: int) -> list[Row]: ...

    @abstractmethod
    async def _device_stats(self, filters: QueryFilter) -> tuple[list[Row], list[Row], list[Row]]: ...

    @abstractmethod
    async def _geo_stats(self, filters: QueryFilter, limit: int) -> list[Row]: ...

    @abstractmethod
    async def _time_series(self, filters: QueryFilter, granularity: Granularity) -> list[Row]: ...

    @abstractmethod
    async def _web_vitals(self, filters: QueryFilter) -> list[Row]: ...

    @abstractmethod
    async def _dispose(self) -> None: ...

    @abstractmethod
    def _is_retryable(self, error: BaseException) -> bool:
        """True when retrying the same operation later may succeed."""

    # ------------------------------------------------------------------

    @staticmethod
    def _limit(limit: int) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")
        return limit

    async def _guard(self, operation: str, coro, timeout: Optional[float]):
        """Run one backend operation under a timeout, translating failures."""
        timeout = self.default_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except AnalyticsError:
            raise
        except asyncio.TimeoutError as e:
            logger.error(f"{operation} timed out after {timeout}s on {self.backend.value}.")
            raise StorageError(
                f"{operation} timed out after {timeout}s",
                operation=operation,
                backend=self.backend.value,
                retryable=True,
            ) from e
        except Exception as e:
            retryable = self._is_retryable(e)
            logger.error(f"{operation} failed on {self.backend.value} (retryable={retryable}): {e}")
            raise StorageError(
                f"{operation} failed: {e}",
                operation=operation,
                backend=self.backend.value,
                retryable=retryable,
            ) from e
