import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import duckdb
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from analytics_core.core.config import DatabaseConfig, DuckDBConfig


class PostgresHelper:
    """
    Process-wide handle on the relational backend. The engine (and its small
    connection pool) is created on first use and torn down by dispose().
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._engine: Optional[AsyncEngine] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(
                url=self.config.url,
                echo=self.config.echo,
                echo_pool=self.config.echo_pool,
                pool_size=self.config.pool_size,
                max_overflow=self.config.max_overflow,
                pool_timeout=self.config.pool_timeout,
                pool_pre_ping=True,
                # buckets and day boundaries are computed in UTC
                connect_args={"server_settings": {"timezone": "UTC"}},
            )
            logger.info(f"Created Postgres engine (pool_size={self.config.pool_size}).")
        return self._engine

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        """Checks a pooled connection out for exactly one operation."""
        async with self.engine.connect() as conn:
            yield conn

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """One pooled connection inside one transaction; rolled back on any error."""
        async with self.engine.begin() as conn:
            yield conn

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info("Disposed Postgres engine.")


class DuckDBHelper:
    """
    Process-wide handle on the columnar backend: one database connection,
    opened lazily, and a fresh cursor for each operation.
    """

    def __init__(self, config: DuckDBConfig):
        self.config = config
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        with self._lock:
            if self._conn is None:
                duck_config = {}
                if self.config.threads:
                    duck_config["threads"] = self.config.threads
                self._conn = duckdb.connect(database=self.config.path, read_only=False, config=duck_config)
                logger.info(f"Opened DuckDB database at {self.config.path}.")
            return self._conn

    def cursor(self) -> duckdb.DuckDBPyConnection:
        return self.connection.cursor()

    async def dispose(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Closed DuckDB database.")
