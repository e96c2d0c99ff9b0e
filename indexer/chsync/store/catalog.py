"""
Destination table lookup.

The watermark reader and the orphan remover need the list of destination
tables. SystemTablesCatalog discovers them from the store's catalog
metadata; StaticTableCatalog serves a list known in advance, typically the
tables of the generated schema.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from ..schema import EventTableSchema
from .base import AnalyticsStore


@runtime_checkable
class TableCatalog(Protocol):
    """Source of destination table names."""

    async def tables(self) -> list[str]:
        ...


class SystemTablesCatalog:
    """Discovers MergeTree tables in the analytics database."""

    def __init__(self, store: AnalyticsStore) -> None:
        self.store = store

    async def tables(self) -> list[str]:
        return await self.store.list_tables()


class StaticTableCatalog:
    """Fixed list of destination tables."""

    def __init__(self, tables: Iterable[str]) -> None:
        self._tables = sorted(set(tables))

    @classmethod
    def from_schemas(cls, schemas: Iterable[EventTableSchema]) -> StaticTableCatalog:
        return cls(schema.table for schema in schemas)

    async def tables(self) -> list[str]:
        return list(self._tables)
