"""
ClickHouse sync layer for the event-extraction indexer.

The indexer runtime writes decoded events into per-event-type ClickHouse
tables through a side channel, while its own fetch progress is committed to
PostgreSQL. The two writes share no transaction. This package batches the
ClickHouse writes and keeps the two stores consistent:

Architecture:
    ┌───────────────┐  accept()  ┌──────────────────┐ threshold ┌────────────┐
    │ Event runtime │───────────▶│ BatchAccumulator │──────────▶│   Writer   │
    └───────┬───────┘            └──────────────────┘           └─────┬──────┘
            │ commits progress                                        │ inserts
            ▼                                                         ▼
    ┌───────────────┐   watermarks   ┌────────────┐   deletes   ┌────────────┐
    │  PostgreSQL   │───────────────▶│ Reconciler │────────────▶│ ClickHouse │
    └───────────────┘                └────────────┘◀────────────└────────────┘
                                                     watermarks

Invariants:
    - PostgreSQL is authoritative for what has been fetched
    - ClickHouse rows deduplicate by surrogate id (ReplacingMergeTree)
    - Orphaned rows are deleted only when provably outside the reorg window

How to change safely:
    - Keep the confirmed-block threshold aligned with the runtime
    - Test every reconciliation branch with the in-memory stores
"""

from ._version import __version__

__all__ = ["__version__"]
