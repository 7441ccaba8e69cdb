import pytest

from analytics_core.core.config import Settings, StorageBackend
from analytics_core.storage.duckdb_storage import DuckDBStorage
from analytics_core.storage.factory import create_storage
from analytics_core.storage.postgres_storage import PostgresStorage


@pytest.mark.parametrize("backend, adapter", [
    (StorageBackend.POSTGRES, PostgresStorage),
    (StorageBackend.DUCKDB, DuckDBStorage),
])
def test_backend_selection(backend, adapter):
    settings = Settings(storage={"backend": backend, "default_timeout": 3.0}, ingest={"device_top_n": 5})

    storage = create_storage(settings)

    assert isinstance(storage, adapter)
    assert storage.default_timeout == 3.0
    assert storage.device_top_n == 5


def test_backend_from_environment(monkeypatch):
    monkeypatch.setenv("APP_CONFIG__STORAGE__BACKEND", "postgres")
    assert Settings().storage.backend is StorageBackend.POSTGRES
