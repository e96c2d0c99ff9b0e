"""
Store abstractions for the sync layer.

This module provides:
- ClickHouseStore: the analytics store, over ClickHouse's HTTP interface
- PostgresProcessStore: read-only access to the indexer runtime's state
- In-memory implementations of both (for testing)
- Table catalogs used to enumerate destination tables

Invariants:
    - The process store is authoritative for what has been fetched
    - The analytics store may hold rows the process store never committed;
      reconciliation removes them
"""

from .base import (
    AnalyticsStore,
    ProcessStore,
    StoreConnectionError,
    StoreError,
    StoreQueryError,
)
from .catalog import StaticTableCatalog, SystemTablesCatalog, TableCatalog
from .clickhouse import ClickHouseStore
from .memory import InMemoryAnalyticsStore, InMemoryProcessStore
from .postgres import PostgresProcessStore

__all__ = [
    # Protocols and errors
    "AnalyticsStore",
    "ProcessStore",
    "StoreError",
    "StoreConnectionError",
    "StoreQueryError",
    # Catalogs
    "TableCatalog",
    "SystemTablesCatalog",
    "StaticTableCatalog",
    # Implementations
    "ClickHouseStore",
    "PostgresProcessStore",
    "InMemoryAnalyticsStore",
    "InMemoryProcessStore",
]
