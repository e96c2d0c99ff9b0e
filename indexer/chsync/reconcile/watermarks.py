"""
Watermark readers for both stores.

A watermark is the highest block a store has durably recorded for a chain.
The process store's watermark says what the indexer runtime has fetched;
the analytics store's watermark says what actually reached the destination
tables. A batch may have landed in some tables and not others, so the
analytics watermark is the maximum over every destination table.

Both readers return chain_id -> block_number mappings. An empty mapping
means nothing is known yet (first run), which is not an error.
"""

from __future__ import annotations

import logging

from ..store.base import AnalyticsStore, ProcessStore
from ..store.catalog import TableCatalog

logger = logging.getLogger(__name__)


class ProcessWatermarkReader:
    """Reads fetch progress and chain heads from the process store."""

    def __init__(self, store: ProcessStore) -> None:
        self.store = store

    async def read(self) -> dict[int, int]:
        """Highest fetched block per chain."""
        return await self.store.get_watermarks()

    async def read_heads(self) -> dict[int, int]:
        """Best-known chain tip per chain."""
        return await self.store.get_chain_heads()


class AnalyticsWatermarkReader:
    """Computes the highest written block per chain across all tables."""

    def __init__(self, store: AnalyticsStore, catalog: TableCatalog) -> None:
        self.store = store
        self.catalog = catalog

    async def read(self) -> dict[int, int]:
        tables = await self.catalog.tables()
        if not tables:
            logger.info("No event tables found - first run or empty database")
            return {}
        return await self.store.max_block_per_chain(tables)
