"""
Base protocols and errors for the two stores the sync layer talks to.

AnalyticsStore is the append-only, per-event-type table store (ClickHouse
in production). ProcessStore is the indexer runtime's transactional state
(PostgreSQL), which is read-only from here and authoritative for what has
been fetched.

Invariants:
    - Missing tables are never an error for read paths; they read as empty
    - Deletes are always scoped to one chain and a strict block bound
    - Implementations must be safe to call from concurrent coroutines

How to change safely:
    - Protocol changes require updating every implementation, including
      the in-memory stores used by tests
    - Keep query parameters bound, never interpolate chain ids or blocks
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..schema import EventTableSchema


class StoreError(Exception):
    """Base exception for store operations."""

    pass


class StoreConnectionError(StoreError):
    """The store could not be reached."""

    pass


class StoreQueryError(StoreError):
    """The store rejected a query or insert."""

    pass


@runtime_checkable
class AnalyticsStore(Protocol):
    """Protocol for the analytics (destination) store.

    Tables are identified by bare names; the store applies its own
    database qualifier.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the client. Must be called before any other operation."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the client and its connections."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Bulk insert rows into one table.

        Raises:
            StoreQueryError: If the store rejects the insert
            StoreConnectionError: If the store is unreachable
        """
        ...

    @abstractmethod
    async def list_tables(self) -> list[str]:
        """List destination tables, sorted by name."""
        ...

    @abstractmethod
    async def max_block_per_chain(self, tables: Sequence[str]) -> dict[int, int]:
        """Highest block_number per chain_id across all given tables."""
        ...

    @abstractmethod
    async def count_rows_after(
        self, tables: Sequence[str], chain_id: int, block_number: int
    ) -> dict[str, int]:
        """Count rows per table with block_number > block_number for a chain."""
        ...

    @abstractmethod
    async def delete_rows_after(self, table: str, chain_id: int, block_number: int) -> None:
        """Delete rows of one chain with block_number > block_number."""
        ...

    @abstractmethod
    async def fetch_rows(
        self, table: str, chain_id: int | None = None, final: bool = True
    ) -> list[dict[str, Any]]:
        """Read rows back, deduplicated by id when final is set."""
        ...

    @abstractmethod
    async def ensure_tables(self, schemas: Sequence[EventTableSchema]) -> None:
        """Create destination tables that do not exist yet."""
        ...


@runtime_checkable
class ProcessStore(Protocol):
    """Protocol for the indexer runtime's processing-state store."""

    @abstractmethod
    async def get_watermarks(self) -> dict[int, int]:
        """Highest fetched block per chain. Empty before bootstrap."""
        ...

    @abstractmethod
    async def get_chain_heads(self) -> dict[int, int]:
        """Best-known chain tip per chain. Empty before bootstrap."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...
