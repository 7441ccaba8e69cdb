import time
from typing import Optional, Sequence

from loguru import logger

from analytics_core.core.exceptions import StorageError
from analytics_core.schemas.events import CanonicalEventRow
from analytics_core.storage.base import StorageAdapter


class BatchWriter:
    """
    All-or-nothing batch insert against one storage backend. Batch sizing is
    the caller's job; failures propagate unchanged for batch-level retry.
    """

    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    async def insert_batch(self, rows: Sequence[CanonicalEventRow], *, timeout: Optional[float] = None) -> int:
        if not rows:
            logger.debug("Empty batch, nothing to insert.")
            return 0

        start_time = time.perf_counter()
        try:
            inserted = await self.storage.insert_events(rows, timeout=timeout)
        except StorageError as e:
            logger.error(f"Batch of {len(rows)} rows rolled back ({e.operation}, retryable={e.retryable}): {e}")
            raise
        elapsed = time.perf_counter() - start_time

        logger.info(f"Wrote batch of {inserted} rows in {elapsed:.3f}s.")
        return inserted
