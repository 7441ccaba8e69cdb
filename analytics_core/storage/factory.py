from loguru import logger

from analytics_core.core.config import Settings, StorageBackend
from analytics_core.db.db_helper import DuckDBHelper, PostgresHelper
from analytics_core.storage.base import StorageAdapter
from analytics_core.storage.duckdb_storage import DuckDBStorage
from analytics_core.storage.postgres_storage import PostgresStorage


def create_storage(settings: Settings) -> StorageAdapter:
    """
    Build the adapter for the configured backend. Connections are opened
    lazily on first use and released by StorageAdapter.close().
    """
    options = dict(
        default_timeout=settings.storage.default_timeout,
        device_top_n=settings.ingest.device_top_n,
    )
    backend = StorageBackend(settings.storage.backend)

    if backend is StorageBackend.POSTGRES:
        storage: StorageAdapter = PostgresStorage(PostgresHelper(settings.db), **options)
    elif backend is StorageBackend.DUCKDB:
        storage = DuckDBStorage(DuckDBHelper(settings.duckdb), **options)
    else:
        raise ValueError(f"Unsupported storage backend: {backend}")

    logger.info(f"Storage backend selected: {backend.value}")
    return storage
