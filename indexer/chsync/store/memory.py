"""
In-memory store implementations for testing.

InMemoryAnalyticsStore mimics the parts of ClickHouse the sync layer relies
on: per-table bulk inserts, ReplacingMergeTree-style deduplication by id
(newest write-version wins when read with final=True), and chain-scoped
deletes. InMemoryProcessStore holds hand-set watermarks and chain heads.

Invariants:
    - All data is lost on process exit
    - Every inserted row gets a strictly increasing write-version
    - A table with an injected failure rejects the whole insert

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep behaviour aligned with ClickHouseStore for anything tests assert
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Mapping, Sequence
from typing import Any

from ..schema import VERSION_COLUMN, EventTableSchema
from .base import StoreConnectionError, StoreQueryError

logger = logging.getLogger(__name__)


class InMemoryAnalyticsStore:
    """AnalyticsStore kept entirely in memory.

    Attributes:
        tables: table name -> stored rows (including the write-version column)

    Example:
        >>> store = InMemoryAnalyticsStore()
        >>> await store.connect()
        >>> await store.insert("erc20_transfer", [{"id": "1_10_0", ...}])
    """

    def __init__(self, tables: Sequence[str] = ()) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {name: [] for name in tables}
        self.delete_calls: list[tuple[str, int, int]] = []
        self.insert_calls: list[tuple[str, int]] = []
        self._versions = itertools.count(1)
        self._failures: dict[str, Exception] = {}
        self._insert_delay = 0.0
        self._delete_delay = 0.0
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def close(self) -> None:
        self._connected = False

    def _require_connection(self) -> None:
        if not self._connected:
            raise StoreConnectionError("Not connected")

    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        self._require_connection()
        if self._insert_delay:
            await asyncio.sleep(self._insert_delay)
        if table in self._failures:
            raise self._failures[table]
        if table not in self.tables:
            raise StoreQueryError(f"Table {table} doesn't exist")

        stored = self.tables[table]
        for row in rows:
            stored.append({**row, VERSION_COLUMN: next(self._versions)})
        self.insert_calls.append((table, len(rows)))

    async def list_tables(self) -> list[str]:
        self._require_connection()
        return sorted(self.tables)

    async def max_block_per_chain(self, tables: Sequence[str]) -> dict[int, int]:
        self._require_connection()
        result: dict[int, int] = {}
        for table in tables:
            for row in self.tables.get(table, []):
                chain_id = row["chain_id"]
                result[chain_id] = max(result.get(chain_id, 0), row["block_number"])
        return result

    async def count_rows_after(
        self, tables: Sequence[str], chain_id: int, block_number: int
    ) -> dict[str, int]:
        self._require_connection()
        return {
            table: sum(
                1
                for row in self.tables.get(table, [])
                if row["chain_id"] == chain_id and row["block_number"] > block_number
            )
            for table in tables
        }

    async def delete_rows_after(self, table: str, chain_id: int, block_number: int) -> None:
        self._require_connection()
        if self._delete_delay:
            await asyncio.sleep(self._delete_delay)
        self.delete_calls.append((table, chain_id, block_number))
        self.tables[table] = [
            row
            for row in self.tables.get(table, [])
            if not (row["chain_id"] == chain_id and row["block_number"] > block_number)
        ]

    async def fetch_rows(
        self, table: str, chain_id: int | None = None, final: bool = True
    ) -> list[dict[str, Any]]:
        self._require_connection()
        rows = [
            row
            for row in self.tables.get(table, [])
            if chain_id is None or row["chain_id"] == chain_id
        ]
        if final:
            newest: dict[str, dict[str, Any]] = {}
            for row in rows:
                current = newest.get(row["id"])
                if current is None or row[VERSION_COLUMN] > current[VERSION_COLUMN]:
                    newest[row["id"]] = row
            rows = list(newest.values())
        return sorted(rows, key=lambda r: r["id"])

    async def ensure_tables(self, schemas: Sequence[EventTableSchema]) -> None:
        for schema in schemas:
            self.tables.setdefault(schema.table, [])

    # Testing helpers

    def fail_inserts(self, table: str, error: Exception | None = None) -> None:
        """Make every insert into table raise (testing helper)."""
        self._failures[table] = error or StoreQueryError(f"Injected failure for {table}")

    def clear_failures(self) -> None:
        self._failures.clear()

    def slow_inserts(self, seconds: float) -> None:
        """Delay every insert, to keep flushes in flight (testing helper)."""
        self._insert_delay = seconds

    def slow_deletes(self, seconds: float) -> None:
        """Delay every delete, to keep a reconciliation pass running (testing helper)."""
        self._delete_delay = seconds

    def row_count(self, table: str | None = None) -> int:
        if table is not None:
            return len(self.tables.get(table, []))
        return sum(len(rows) for rows in self.tables.values())


class InMemoryProcessStore:
    """ProcessStore with watermarks and heads set directly by tests."""

    def __init__(
        self,
        watermarks: Mapping[int, int] | None = None,
        chain_heads: Mapping[int, int] | None = None,
    ) -> None:
        self.watermarks: dict[int, int] = dict(watermarks or {})
        self.chain_heads: dict[int, int] = dict(chain_heads or {})
        self.closed = False
        self._failure: Exception | None = None

    async def get_watermarks(self) -> dict[int, int]:
        if self._failure is not None:
            raise self._failure
        return dict(self.watermarks)

    async def get_chain_heads(self) -> dict[int, int]:
        if self._failure is not None:
            raise self._failure
        return dict(self.chain_heads)

    async def close(self) -> None:
        self.closed = True

    def fail_with(self, error: Exception | None) -> None:
        """Make every read raise error; None clears it (testing helper)."""
        self._failure = error
