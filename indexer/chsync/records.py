"""
Event records and destination table naming.

An EventRecord is one decoded on-chain event, ready to be written to the
analytics table for its (origin, event type) pair. The event-processing
runtime builds records; the batch accumulator consumes them.

Invariants:
    - Destination table name is deterministic per (origin, event type)
    - Structural columns (id, chain_id, block_number, log_index, ...) come from
      the record itself and are never taken from the decoded fields
    - The surrogate id is "{chain_id}_{block_number}_{log_index}"

How to change safely:
    - Adding a structural column requires the same column in schema.COMMON_COLUMNS
    - Never change the surrogate id format; it is the deduplication key

Example:
    >>> record = EventRecord(
    ...     table=table_name("UniswapV3Pool", "Swap"),
    ...     chain_id=1,
    ...     block_number=18_000_000,
    ...     log_index=3,
    ...     fields={"sender": "0xabc...", "amount0": -5},
    ... )
    >>> record.surrogate_id
    '1_18000000_3'
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

FIELD_PREFIX = "evt_"

UINT32_MAX = 2**32 - 1
UINT64_MAX = 2**64 - 1

# JSON numbers outside this range lose precision in most clients
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_PASCAL_BOUNDARY = re.compile(r"([A-Z])([A-Z][a-z])")


def to_snake_case(name: str) -> str:
    """Convert a camel or Pascal case identifier to snake case.

    >>> to_snake_case("UniswapV3Pool")
    'uniswap_v3_pool'
    >>> to_snake_case("ERC20Transfer")
    'erc20_transfer'
    """
    if not isinstance(name, str):
        raise TypeError("Name must be a string")

    name = _CAMEL_BOUNDARY.sub(r"\1_\2", name)
    name = _PASCAL_BOUNDARY.sub(r"\1_\2", name)
    return name.lower()


def table_name(origin: str, event_type: str) -> str:
    """Destination table for an (origin contract, event type) pair."""
    return f"{to_snake_case(origin)}_{to_snake_case(event_type)}"


def sanitize_value(value: Any) -> Any:
    """Convert a decoded value to something JSONEachRow accepts.

    Booleans become 1/0, integers that do not fit in a signed 64-bit
    number become decimal strings, bytes become 0x-prefixed hex.
    Sequences and mappings are converted recursively.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, int):
        if value < _INT64_MIN or value > _INT64_MAX:
            return str(value)
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(k): sanitize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) for v in value]
    return value


@dataclass(frozen=True)
class EventRecord:
    """A decoded event bound for one destination table.

    Attributes:
        table: Destination table name
        chain_id: Chain the event was emitted on
        block_number: Block containing the event (uint64)
        log_index: Position of the log within the block (uint32)
        fields: Decoded event parameters, in ABI order
        tx_hash: Transaction hash
        block_timestamp: Block timestamp (Unix seconds)
        src_address: Address of the emitting contract
    """

    table: str
    chain_id: int
    block_number: int
    log_index: int
    fields: Mapping[str, Any] = field(default_factory=dict)
    tx_hash: str = ""
    block_timestamp: int = 0
    src_address: str = ""

    def __post_init__(self) -> None:
        if not self.table:
            raise ValueError("EventRecord.table must not be empty")
        if self.chain_id < 0 or self.chain_id > UINT32_MAX:
            raise ValueError(f"chain_id out of range: {self.chain_id}")
        if self.block_number < 0 or self.block_number > UINT64_MAX:
            raise ValueError(f"block_number out of range: {self.block_number}")
        if self.log_index < 0 or self.log_index > UINT32_MAX:
            raise ValueError(f"log_index out of range: {self.log_index}")
        # Freeze a private copy so later mutation by the caller is not observed
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def surrogate_id(self) -> str:
        return f"{self.chain_id}_{self.block_number}_{self.log_index}"

    def to_row(self) -> dict[str, Any]:
        """Build the analytics row for this record."""
        row: dict[str, Any] = {
            f"{FIELD_PREFIX}{name}": sanitize_value(value) for name, value in self.fields.items()
        }
        row.update(
            {
                "id": self.surrogate_id,
                "chain_id": self.chain_id,
                "tx_hash": self.tx_hash,
                "block_number": self.block_number,
                "block_timestamp": self.block_timestamp,
                "log_index": self.log_index,
                "log_address": self.src_address,
            }
        )
        return row
