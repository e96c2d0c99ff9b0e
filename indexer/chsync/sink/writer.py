"""
Analytics writer: bulk inserts of one batch generation.

One insert is issued per non-empty table bucket and all of them run
concurrently. The destination has no cross-table transactions, so when one
table's insert fails the others may already be durable. They are left in
place; reconciliation accounts for that asymmetry.

Invariants:
    - write() resolves only after every insert has settled
    - A single failed table makes the whole write raise BatchWriteError
    - Succeeded inserts are never rolled back

How to change safely:
    - Keep inserts independent per table; ordering inside a table does not
      matter because rows deduplicate by id
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..store.base import AnalyticsStore, StoreError

logger = logging.getLogger(__name__)

Buffers = Mapping[str, Sequence[Mapping[str, Any]]]


class BatchWriteError(StoreError):
    """One or more table inserts of a batch failed.

    Attributes:
        failures: table -> exception raised by its insert
        written_tables: tables whose insert succeeded and stays written
    """

    def __init__(
        self,
        message: str,
        failures: dict[str, BaseException],
        written_tables: list[str],
    ) -> None:
        super().__init__(message)
        self.failures = failures
        self.written_tables = written_tables


@dataclass
class WriteResult:
    """Outcome of a successful write.

    Attributes:
        rows_written: Total rows inserted
        tables: Tables that received rows
    """

    rows_written: int = 0
    tables: list[str] = field(default_factory=list)


class AnalyticsWriter:
    """Writes batch generations to the analytics store.

    Example:
        >>> writer = AnalyticsWriter(store)
        >>> result = await writer.write({"erc20_transfer": rows})
        >>> result.rows_written
        5000
    """

    def __init__(self, store: AnalyticsStore) -> None:
        self.store = store

    async def write(self, buffers: Buffers) -> WriteResult:
        """Insert every non-empty bucket, one concurrent insert per table.

        Raises:
            BatchWriteError: If any table insert failed
        """
        tables = [table for table, rows in buffers.items() if rows]
        if not tables:
            return WriteResult()

        outcomes = await asyncio.gather(
            *(self.store.insert(table, buffers[table]) for table in tables),
            return_exceptions=True,
        )

        failures: dict[str, BaseException] = {}
        written: list[str] = []
        for table, outcome in zip(tables, outcomes):
            if isinstance(outcome, BaseException):
                failures[table] = outcome
            else:
                written.append(table)

        if failures:
            for table, error in failures.items():
                rows = buffers[table]
                logger.error(
                    f"Batch insert failed for table {table}: {error}",
                    extra={
                        "table": table,
                        "rows": len(rows),
                        "sample": json.dumps(rows[0], default=str, indent=2),
                    },
                )
            first_error = next(iter(failures.values()))
            raise BatchWriteError(
                f"Batch insert failed for {len(failures)}/{len(tables)} tables: "
                f"{', '.join(failures)}",
                failures=failures,
                written_tables=written,
            ) from first_error

        rows_written = sum(len(buffers[table]) for table in tables)
        logger.info(
            f"Flushed {rows_written} events to {len(tables)} tables",
            extra={"rows": rows_written, "tables": len(tables)},
        )
        return WriteResult(rows_written=rows_written, tables=tables)
