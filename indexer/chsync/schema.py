"""
Destination table schema description for the analytics store.

The schema generator upstream decides which tables exist and which decoded
fields each one carries; this module only describes that shape and renders
the ClickHouse DDL for it.

Every destination table shares:
    - the common structural columns in COMMON_COLUMNS
    - one evt_-prefixed column per decoded field
    - a write-version column (_inserted_at) used by ReplacingMergeTree to
      keep the newest copy of rows with the same id
    - monthly partitions on block_timestamp

Invariants:
    - ORDER BY (id) makes the surrogate id the deduplication key
    - Column types are supplied by the caller; no type mapping happens here
    - Every identifier in the DDL is backtick-quoted

How to change safely:
    - New common columns need a default so existing tables can be altered
    - Never change ORDER BY on an existing table; it requires a rebuild
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .records import FIELD_PREFIX, table_name

VERSION_COLUMN = "_inserted_at"


def quote_identifier(name: str) -> str:
    """Backtick-quote a ClickHouse identifier."""
    escaped = name.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


COMMON_COLUMNS: tuple[tuple[str, str], ...] = (
    ("id", "String"),
    ("chain_id", "UInt32"),
    ("tx_hash", "FixedString(66)"),
    ("block_number", "UInt64"),
    ("block_timestamp", "DateTime"),
    ("log_index", "UInt32"),
    ("log_address", "FixedString(42)"),
)


@dataclass(frozen=True)
class EventTableSchema:
    """Shape of one destination table.

    Attributes:
        origin: Contract (or other origin) name
        event_type: Event name
        fields: (decoded field name, ClickHouse type) pairs in ABI order
    """

    origin: str
    event_type: str
    fields: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @property
    def table(self) -> str:
        return table_name(self.origin, self.event_type)

    def columns(self) -> list[tuple[str, str]]:
        """All columns of the table, in declaration order."""
        columns = list(COMMON_COLUMNS)
        for index, (name, ch_type) in enumerate(self.fields):
            columns.append((f"{FIELD_PREFIX}{name or f'param_{index}'}", ch_type))
        columns.append((VERSION_COLUMN, "DateTime DEFAULT now()"))
        return columns

    def create_table_sql(self, database: str = "default") -> str:
        """Render the CREATE TABLE statement for this table.

        Database, table and column names are backtick-quoted, so decoded
        fields named like reserved words stay valid.
        """
        body = ",\n".join(
            f"    {quote_identifier(name)} {ch_type}" for name, ch_type in self.columns()
        )
        qualified = f"{quote_identifier(database)}.{quote_identifier(self.table)}"
        return (
            f"CREATE TABLE IF NOT EXISTS {qualified} (\n"
            f"{body}\n"
            f")\n"
            f"ENGINE = ReplacingMergeTree({VERSION_COLUMN})\n"
            f"PARTITION BY toYYYYMM(block_timestamp)\n"
            f"ORDER BY (id)"
        )
