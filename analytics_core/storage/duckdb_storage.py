import asyncio
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import duckdb

from analytics_core.core.config import StorageBackend
from analytics_core.db.db_helper import DuckDBHelper
from analytics_core.schemas.events import EVENT_COLUMNS, CanonicalEventRow
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

SCHEMA_SQL = [
    """
    CREATE TABLE IF NOT EXISTS events (
        event_id        UUID PRIMARY KEY,
        project_id      VARCHAR NOT NULL,
        event_type      VARCHAR NOT NULL,
        event_time      TIMESTAMP NOT NULL,
        session_id      VARCHAR,
        user_id         VARCHAR,
        anonymous_id    VARCHAR,
        page_url        VARCHAR,
        page_title      VARCHAR,
        page_path       VARCHAR,
        page_referrer   VARCHAR,
        user_agent      VARCHAR,
        browser_name    VARCHAR,
        browser_version VARCHAR,
        os_name         VARCHAR,
        os_version      VARCHAR,
        device_type     VARCHAR,
        screen_width    INTEGER,
        screen_height   INTEGER,
        country         VARCHAR,
        city            VARCHAR,
        region          VARCHAR,
        ip_address      VARCHAR,
        locale          VARCHAR,
        properties      VARCHAR,
        received_at     TIMESTAMP NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_project_event_time ON events (project_id, event_time)",
]

INSERT_SQL = f"""
    INSERT INTO events ({", ".join(EVENT_COLUMNS)})
    VALUES ({", ".join("?" for _ in EVENT_COLUMNS)})
    ON CONFLICT (event_id) DO NOTHING
"""

# Timestamps are stored as naive UTC.
TIMESTAMP_COLUMNS = ("event_time", "received_at")

RETRYABLE_ERRORS = (duckdb.IOException, duckdb.InterruptException, duckdb.TransactionException, OSError)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _fetch_all(cursor: duckdb.DuckDBPyConnection, queries: Sequence[tuple[str, list]]) -> list[list[Row]]:
    try:
        results = []
        for sql, params in queries:
            cursor.execute(sql, params)
            columns = [d[0] for d in cursor.description]
            results.append([dict(zip(columns, record)) for record in cursor.fetchall()])
        return results
    finally:
        cursor.close()


def _insert_all(cursor: duckdb.DuckDBPyConnection, params: list[list[Any]]) -> None:
    try:
        cursor.begin()
        try:
            cursor.executemany(INSERT_SQL, params)
            cursor.commit()
        except Exception:
            cursor.rollback()
            raise
    finally:
        cursor.close()


def _execute_script(cursor: duckdb.DuckDBPyConnection, statements: Sequence[str]) -> None:
    try:
        for sql in statements:
            cursor.execute(sql)
    finally:
        cursor.close()


class DuckDBStorage(StorageAdapter):
    """
    Columnar-analytical variant. DuckDB calls block, so every operation runs
    in a worker thread on its own cursor; a timed-out operation interrupts
    its cursor so the thread stops and any open transaction rolls back.
    """

    backend = StorageBackend.DUCKDB

    def __init__(self, helper: DuckDBHelper, **kwargs):
        super().__init__(**kwargs)
        self.helper = helper

    async def _run(self, func, *args):
        cursor = self.helper.cursor()
        try:
            return await asyncio.to_thread(func, cursor, *args)
        except asyncio.CancelledError:
            cursor.interrupt()
            raise

    async def _query(self, *queries: tuple[str, list]) -> list[list[Row]]:
        return await self._run(_fetch_all, list(queries))

    # ---------------------------------------------------------------- write

    @staticmethod
    def _to_params(row: CanonicalEventRow) -> list[Any]:
        values = row.model_dump()
        values["event_id"] = str(values["event_id"])
        for column in TIMESTAMP_COLUMNS:
            if values[column] is not None:
                values[column] = _naive_utc(values[column])
        return [values[column] for column in EVENT_COLUMNS]

    async def _insert_events(self, rows: Sequence[CanonicalEventRow]) -> None:
        await self._run(_insert_all, [self._to_params(row) for row in rows])

    async def _initialize_schema(self) -> None:
        await self._run(_execute_script, SCHEMA_SQL)

    # ----------------------------------------------------------------- read

    @staticmethod
    def _where(filters: QueryFilter, *extra: str) -> tuple[str, list]:
        clauses = ["project_id = ?", "event_time >= ?", "event_time < ?"]
        params: list[Any] = [filters.project_id, _naive_utc(filters.start_at), _naive_utc(filters.end_before)]
        for column, value in filters.dimensions():
            clauses.append(f"{column} = ?")
            params.append(value)
        clauses.extend(extra)
        return " AND ".join(clauses), params

    async def _overview(self, filters: QueryFilter) -> Optional[Row]:
        where, params = self._where(filters)
        [rows] = await self._query((f"""
            SELECT
                count(*) AS total_events,
                count(*) FILTER (WHERE event_type = '{PAGEVIEW}') AS total_pageviews,
                count(DISTINCT session_id) AS unique_sessions,
                count(DISTINCT anonymous_id) AS unique_visitors,
                count(DISTINCT user_id) AS unique_users
            FROM events
            WHERE {where}
        """, params))
        return rows[0] if rows else None

    async def _page_views(self, filters: QueryFilter, limit: int) -> list[Row]:
        where, params = self._where(filters, f"event_type = '{PAGEVIEW}'", "page_path IS NOT NULL")
        [rows] = await self._query((f"""
            SELECT
                page_path AS path,
                max(page_title) AS title,
                count(*) AS pageviews,
                count(DISTINCT session_id) AS unique_sessions,
                count(DISTINCT anonymous_id) AS unique_visitors
            FROM events
            WHERE {where}
            GROUP BY page_path
            ORDER BY pageviews DESC, path ASC
            LIMIT ?
        """, [*params, limit]))
        return rows

    async def _referrers(self, filters: QueryFilter, limit: int) -> list[Row]:
        where, params = self._where(
            filters, f"event_type = '{PAGEVIEW}'", "page_referrer IS NOT NULL", "page_referrer <> ''"
        )
        [rows] = await self._query((f"""
            SELECT
                coalesce(
                    nullif(regexp_extract(lower(page_referrer), '{REFERRER_HOST_PATTERN}', 1), ''),
                    page_referrer
                ) AS referrer_domain,
                count(*) AS visits,
                count(DISTINCT session_id) AS unique_sessions
            FROM events
            WHERE {where}
            GROUP BY referrer_domain
            ORDER BY visits DESC, referrer_domain ASC
            LIMIT ?
        """, [*params, limit]))
        return rows

    async def _device_stats(self, filters: QueryFilter) -> tuple[list[Row], list[Row], list[Row]]:
        device_where, device_params = self._where(filters, f"event_type = '{PAGEVIEW}'", "device_type IS NOT NULL")
        browser_where, browser_params = self._where(filters, f"event_type = '{PAGEVIEW}'", "browser_name IS NOT NULL")
        os_where, os_params = self._where(filters, f"event_type = '{PAGEVIEW}'", "os_name IS NOT NULL")
        devices, browsers, systems = await self._query(
            (f"""
                SELECT device_type, count(*) AS count, count(DISTINCT session_id) AS unique_sessions
                FROM events
                WHERE {device_where}
                GROUP BY device_type
                ORDER BY count DESC, device_type ASC
            """, device_params),
            (f"""
                SELECT browser_name, browser_version, count(*) AS count
                FROM events
                WHERE {browser_where}
                GROUP BY browser_name, browser_version
                ORDER BY count DESC, browser_name ASC, browser_version ASC NULLS FIRST
                LIMIT ?
            """, [*browser_params, self.device_top_n]),
            (f"""
                SELECT os_name, os_version, count(*) AS count
                FROM events
                WHERE {os_where}
                GROUP BY os_name, os_version
                ORDER BY count DESC, os_name ASC, os_version ASC NULLS FIRST
                LIMIT ?
            """, [*os_params, self.device_top_n]),
        )
        return devices, browsers, systems

    async def _geo_stats(self, filters: QueryFilter, limit: int) -> list[Row]:
        where, params = self._where(filters, f"event_type = '{PAGEVIEW}'", "country IS NOT NULL")
        [rows] = await self._query((f"""
            SELECT
                country,
                city,
                count(*) AS pageviews,
                count(DISTINCT session_id) AS unique_sessions,
                count(DISTINCT anonymous_id) AS unique_visitors
            FROM events
            WHERE {where}
            GROUP BY country, city
            ORDER BY pageviews DESC, country ASC, city ASC NULLS FIRST
            LIMIT ?
        """, [*params, limit]))
        return rows

    async def _time_series(self, filters: QueryFilter, granularity: Granularity) -> list[Row]:
        where, params = self._where(filters)
        [rows] = await self._query((f"""
            SELECT
                CAST(date_trunc('{granularity.value}', event_time) AS TIMESTAMP) AS "time",
                count(*) AS events,
                count(*) FILTER (WHERE event_type = '{PAGEVIEW}') AS pageviews,
                count(DISTINCT session_id) AS unique_sessions,
                count(DISTINCT anonymous_id) AS unique_visitors
            FROM events
            WHERE {where}
            GROUP BY "time"
            ORDER BY "time" ASC
        """, params))
        return rows

    async def _web_vitals(self, filters: QueryFilter) -> list[Row]:
        where, params = self._where(filters, f"event_type = '{WEBVITAL}'")
        [rows] = await self._query((f"""
            WITH vitals AS (
                SELECT
                    json_extract_string(properties, '$.metric') AS metric,
                    CASE WHEN json_type(properties, '$.value') IN ('UBIGINT', 'BIGINT', 'HUGEINT', 'DOUBLE')
                        THEN TRY_CAST(json_extract_string(properties, '$.value') AS DOUBLE)
                    END AS metric_value,
                    json_extract_string(properties, '$.rating') AS rating
                FROM events
                WHERE {where}
            )
            SELECT
                metric,
                quantile_cont(metric_value, 0.50) AS p50,
                quantile_cont(metric_value, 0.75) AS p75,
                quantile_cont(metric_value, 0.95) AS p95,
                quantile_cont(metric_value, 0.99) AS p99,
                count(*) FILTER (WHERE rating = '{GOOD}') AS good_count,
                count(*) FILTER (WHERE rating = '{NEEDS_IMPROVEMENT}') AS needs_improvement_count,
                count(*) FILTER (WHERE rating = '{POOR}') AS poor_count
            FROM vitals
            WHERE metric IS NOT NULL
            GROUP BY metric
            ORDER BY metric ASC
        """, params))
        return rows

    async def _dispose(self) -> None:
        await self.helper.dispose()

    def _is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, RETRYABLE_ERRORS)
