"""
Orphan remover: chain-scoped deletes beyond a safe block.

Deletes are expensive on the analytics engine, so the remover first counts
matching rows in every destination table and only deletes from tables that
actually hold orphaned rows. Calling it again with the same arguments after
a successful run finds nothing to count and does nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from ..store.base import AnalyticsStore
from ..store.catalog import TableCatalog

logger = logging.getLogger(__name__)


@dataclass
class DeleteResult:
    """Outcome of one delete_blocks_after() call.

    Attributes:
        chain_id: Chain the delete was scoped to
        safe_block: Rows with block_number > safe_block were removed
        rows_removed: Rows counted before deletion
        tables: Tables that were cleaned
        tables_scanned: Destination tables inspected
    """

    chain_id: int
    safe_block: int
    rows_removed: int = 0
    tables: list[str] = field(default_factory=list)
    tables_scanned: int = 0


class OrphanRemover:
    """Deletes rows of a chain beyond a safe block from affected tables."""

    def __init__(self, store: AnalyticsStore, catalog: TableCatalog) -> None:
        self.store = store
        self.catalog = catalog

    async def delete_blocks_after(self, chain_id: int, safe_block: int) -> DeleteResult:
        """Remove every row of chain_id with block_number > safe_block."""
        result = DeleteResult(chain_id=chain_id, safe_block=safe_block)

        tables = await self.catalog.tables()
        result.tables_scanned = len(tables)
        if not tables:
            return result

        counts = await self.store.count_rows_after(tables, chain_id, safe_block)
        to_clean = [table for table in tables if counts.get(table, 0) > 0]
        if not to_clean:
            logger.info(
                f"Chain {chain_id}: No orphaned data found",
                extra={"chain_id": chain_id, "safe_block": safe_block},
            )
            return result

        logger.warning(
            f"Chain {chain_id}: Deleting blocks > {safe_block} "
            f"from {len(to_clean)}/{len(tables)} tables",
            extra={
                "chain_id": chain_id,
                "safe_block": safe_block,
                "tables": len(to_clean),
                "tables_scanned": len(tables),
            },
        )

        await asyncio.gather(
            *(self.store.delete_rows_after(table, chain_id, safe_block) for table in to_clean)
        )

        result.rows_removed = sum(counts[table] for table in to_clean)
        result.tables = to_clean
        logger.warning(
            f"Chain {chain_id}: Deleted {result.rows_removed} orphaned rows "
            f"from {len(to_clean)} tables",
            extra={
                "chain_id": chain_id,
                "safe_block": safe_block,
                "rows_removed": result.rows_removed,
                "tables": to_clean,
            },
        )
        return result
