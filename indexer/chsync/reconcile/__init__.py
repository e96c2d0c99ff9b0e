"""
Reconciliation between the process store and the analytics store.

This module handles:
- Watermark reads from both stores
- Per-chain classification of divergence
- Chain-scoped removal of orphaned rows
- Startup and periodic scheduling

Invariants:
    - The process store is authoritative; the analytics store is corrected
      towards it, never the other way around
    - Rows within the reorg window of the chain head are never deleted
    - Reconciliation is idempotent

How to change safely:
    - Test every decision branch with the in-memory stores
    - Keep the confirmed-block threshold aligned with the indexer runtime
"""

from .reconciler import (
    ChainReconciliation,
    ReconciliationDecision,
    ReconciliationReport,
    Reconciler,
    classify,
)
from .remover import DeleteResult, OrphanRemover
from .scheduler import ReconciliationScheduler
from .watermarks import AnalyticsWatermarkReader, ProcessWatermarkReader

__all__ = [
    "Reconciler",
    "ReconciliationDecision",
    "ReconciliationReport",
    "ChainReconciliation",
    "classify",
    "OrphanRemover",
    "DeleteResult",
    "ReconciliationScheduler",
    "ProcessWatermarkReader",
    "AnalyticsWatermarkReader",
]
