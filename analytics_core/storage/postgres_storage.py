import json
from typing import Any, Optional, Sequence

from sqlalchemy import Float, and_, case, cast, distinct, func, literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.sql import Select

from analytics_core.core.config import StorageBackend
from analytics_core.db.db_helper import PostgresHelper
from analytics_core.db.models.event import BaseORM, Event
from analytics_core.schemas.events import CanonicalEventRow
from analytics_core.schemas.query import Granularity, QueryFilter
from analytics_core.storage.base import (
    GOOD,
    NEEDS_IMPROVEMENT,
    PAGEVIEW,
    POOR,
    REFERRER_HOST_PATTERN,
    WEBVITAL,
    Row,
    StorageAdapter,
)

events = Event.__table__
c = events.c

RETRYABLE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError, ConnectionError, OSError)


def _quantile(fraction: str):
    # inline constant; percentile_cont is overloaded on float8 and float8[]
    return literal_column(fraction)


class PostgresStorage(StorageAdapter):
    """Relational-transactional variant: PostgreSQL through SQLAlchemy Core and asyncpg."""

    backend = StorageBackend.POSTGRES

    def __init__(self, helper: PostgresHelper, **kwargs):
        super().__init__(**kwargs)
        self.helper = helper

    # ---------------------------------------------------------------- write

    @staticmethod
    def _to_params(row: CanonicalEventRow) -> dict[str, Any]:
        params = row.model_dump()
        # the JSONB column binds Python objects
        if params["properties"] is not None:
            params["properties"] = json.loads(params["properties"])
        return params

    async def _insert_events(self, rows: Sequence[CanonicalEventRow]) -> None:
        stmt = pg_insert(events).on_conflict_do_nothing(index_elements=[c.event_id])
        async with self.helper.begin() as conn:
            await conn.execute(stmt, [self._to_params(row) for row in rows])

    async def _initialize_schema(self) -> None:
        async with self.helper.begin() as conn:
            await conn.run_sync(BaseORM.metadata.create_all, checkfirst=True)

    # ----------------------------------------------------------------- read

    @staticmethod
    def _where(filters: QueryFilter, *extra):
        clauses = [
            c.project_id == filters.project_id,
            c.event_time >= filters.start_at,
            c.event_time < filters.end_before,
        ]
        clauses.extend(c[column] == value for column, value in filters.dimensions())
        clauses.extend(extra)
        return and_(*clauses)

    async def _fetch(self, *statements: Select) -> list[list[Row]]:
        results = []
        async with self.helper.connect() as conn:
            for stmt in statements:
                result = await conn.execute(stmt)
                results.append([dict(row) for row in result.mappings().all()])
        return results

    def overview_statement(self, filters: QueryFilter) -> Select:
        return select(
            func.count().label("total_events"),
            func.count().filter(c.event_type == PAGEVIEW).label("total_pageviews"),
            func.count(distinct(c.session_id)).label("unique_sessions"),
            func.count(distinct(c.anonymous_id)).label("unique_visitors"),
            func.count(distinct(c.user_id)).label("unique_users"),
        ).where(self._where(filters))

    def page_views_statement(self, filters: QueryFilter, limit: int) -> Select:
        pageviews = func.count().label("pageviews")
        return (
            select(
                c.page_path.label("path"),
                func.max(c.page_title).label("title"),
                pageviews,
                func.count(distinct(c.session_id)).label("unique_sessions"),
                func.count(distinct(c.anonymous_id)).label("unique_visitors"),
            )
            .where(self._where(filters, c.event_type == PAGEVIEW, c.page_path.isnot(None)))
            .group_by(c.page_path)
            .order_by(pageviews.desc(), c.page_path)
            .limit(limit)
        )

    def referrers_statement(self, filters: QueryFilter, limit: int) -> Select:
        pattern = literal_column(f"'{REFERRER_HOST_PATTERN}'")
        domain = func.coalesce(func.substring(func.lower(c.page_referrer), pattern), c.page_referrer)
        visits = func.count().label("visits")
        return (
            select(
                domain.label("referrer_domain"),
                visits,
                func.count(distinct(c.session_id)).label("unique_sessions"),
            )
            .where(self._where(
                filters,
                c.event_type == PAGEVIEW,
                c.page_referrer.isnot(None),
                c.page_referrer != "",
            ))
            .group_by(domain)
            .order_by(visits.desc(), domain)
            .limit(limit)
        )

    def device_statements(self, filters: QueryFilter) -> tuple[Select, Select, Select]:
        count = func.count().label("count")
        devices = (
            select(
                c.device_type,
                count,
                func.count(distinct(c.session_id)).label("unique_sessions"),
            )
            .where(self._where(filters, c.event_type == PAGEVIEW, c.device_type.isnot(None)))
            .group_by(c.device_type)
            .order_by(count.desc(), c.device_type)
        )
        browsers = (
            select(c.browser_name, c.browser_version, count)
            .where(self._where(filters, c.event_type == PAGEVIEW, c.browser_name.isnot(None)))
            .group_by(c.browser_name, c.browser_version)
            .order_by(count.desc(), c.browser_name, c.browser_version)
            .limit(self.device_top_n)
        )
        systems = (
            select(c.os_name, c.os_version, count)
            .where(self._where(filters, c.event_type == PAGEVIEW, c.os_name.isnot(None)))
            .group_by(c.os_name, c.os_version)
            .order_by(count.desc(), c.os_name, c.os_version)
            .limit(self.device_top_n)
        )
        return devices, browsers, systems

    def geo_statement(self, filters: QueryFilter, limit: int) -> Select:
        pageviews = func.count().label("pageviews")
        return (
            select(
                c.country,
                c.city,
                pageviews,
                func.count(distinct(c.session_id)).label("unique_sessions"),
                func.count(distinct(c.anonymous_id)).label("unique_visitors"),
            )
            .where(self._where(filters, c.event_type == PAGEVIEW, c.country.isnot(None)))
            .group_by(c.country, c.city)
            .order_by(pageviews.desc(), c.country, c.city)
            .limit(limit)
        )

    def time_series_statement(self, filters: QueryFilter, granularity: Granularity) -> Select:
        bucket = func.date_trunc(literal_column(f"'{granularity.value}'"), c.event_time)
        return (
            select(
                bucket.label("time"),
                func.count().label("events"),
                func.count().filter(c.event_type == PAGEVIEW).label("pageviews"),
                func.count(distinct(c.session_id)).label("unique_sessions"),
                func.count(distinct(c.anonymous_id)).label("unique_visitors"),
            )
            .where(self._where(filters))
            .group_by(bucket)
            .order_by(bucket)
        )

    def web_vitals_statement(self, filters: QueryFilter) -> Select:
        value = case(
            (func.jsonb_typeof(c.properties["value"]) == "number", cast(c.properties["value"].astext, Float)),
        )
        vitals = (
            select(
                c.properties["metric"].astext.label("metric"),
                value.label("metric_value"),
                c.properties["rating"].astext.label("rating"),
            )
            .where(self._where(filters, c.event_type == WEBVITAL))
            .subquery("vitals")
        )
        v = vitals.c
        return (
            select(
                v.metric,
                func.percentile_cont(_quantile("0.50")).within_group(v.metric_value).label("p50"),
                func.percentile_cont(_quantile("0.75")).within_group(v.metric_value).label("p75"),
                func.percentile_cont(_quantile("0.95")).within_group(v.metric_value).label("p95"),
                func.percentile_cont(_quantile("0.99")).within_group(v.metric_value).label("p99"),
                func.count().filter(v.rating == GOOD).label("good_count"),
                func.count().filter(v.rating == NEEDS_IMPROVEMENT).label("needs_improvement_count"),
                func.count().filter(v.rating == POOR).label("poor_count"),
            )
            .where(v.metric.isnot(None))
            .group_by(v.metric)
            .order_by(v.metric)
        )

    async def _overview(self, filters: QueryFilter) -> Optional[Row]:
        [rows] = await self._fetch(self.overview_statement(filters))
        return rows[0] if rows else None

    async def _page_views(self, filters: QueryFilter, limit: int) -> list[Row]:
        [rows] = await self._fetch(self.page_views_statement(filters, limit))
        return rows

    async def _referrers(self, filters: QueryFilter, limit: int) -> list[Row]:
        [rows] = await self._fetch(self.referrers_statement(filters, limit))
        return rows

    async def _device_stats(self, filters: QueryFilter) -> tuple[list[Row], list[Row], list[Row]]:
        devices, browsers, systems = await self._fetch(*self.device_statements(filters))
        return devices, browsers, systems

    async def _geo_stats(self, filters: QueryFilter, limit: int) -> list[Row]:
        [rows] = await self._fetch(self.geo_statement(filters, limit))
        return rows

    async def _time_series(self, filters: QueryFilter, granularity: Granularity) -> list[Row]:
        [rows] = await self._fetch(self.time_series_statement(filters, granularity))
        return rows

    async def _web_vitals(self, filters: QueryFilter) -> list[Row]:
        [rows] = await self._fetch(self.web_vitals_statement(filters))
        return rows

    async def _dispose(self) -> None:
        await self.helper.dispose()

    def _is_retryable(self, error: BaseException) -> bool:
        if getattr(error, "connection_invalidated", False):
            return True
        return isinstance(error, RETRYABLE_ERRORS)
