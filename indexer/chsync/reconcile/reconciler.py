"""
Reconciler: detects and cleans divergence between the two stores.

For every chain the process store knows about, the reconciler compares the
process watermark (pg_block) with the analytics watermark (ch_block):

    ch_block == pg_block   IN_SYNC                    nothing to do
    ch_block <  pg_block   BEHIND_WILL_REPROCESS      the runtime re-drives the gap
    ch_block >  pg_block   orphaned rows exist, and then:
        ch_block > head             ORPHAN_BEYOND_HEAD          delete after pg_block
        ch_block <= safe_threshold  ORPHAN_CONFIRMED            delete after pg_block
        otherwise                   ORPHAN_WITHIN_REORG_WINDOW  skip this pass

where safe_threshold = head - confirmed_block_threshold and head falls back
to pg_block when the chain tip is unknown.

Reconciliation runs while ingestion continues. An in-flight batch can push
ch_block past pg_block before the runtime commits its own progress; those
rows sit within the reorg window of the head and are left alone. Only rows
that are impossible (beyond the head) or older than the runtime's own
finality threshold are deleted.

Invariants:
    - Decisions are recomputed on every pass and never persisted
    - Deletes never touch blocks <= pg_block
    - A pass with no ingestion in between repeats no deletes

How to change safely:
    - Keep classify() pure; it carries all of the decision logic
    - Keep confirmed_block_threshold aligned with the runtime's reorg threshold
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from .remover import OrphanRemover
from .watermarks import AnalyticsWatermarkReader, ProcessWatermarkReader

logger = logging.getLogger(__name__)


class ReconciliationDecision(Enum):
    """Outcome of comparing the two watermarks of one chain."""

    IN_SYNC = "in_sync"
    ORPHAN_BEYOND_HEAD = "orphan_beyond_head"
    ORPHAN_CONFIRMED = "orphan_confirmed"
    ORPHAN_WITHIN_REORG_WINDOW = "orphan_within_reorg_window"
    BEHIND_WILL_REPROCESS = "behind_will_reprocess"

    @property
    def requires_delete(self) -> bool:
        return self in (
            ReconciliationDecision.ORPHAN_BEYOND_HEAD,
            ReconciliationDecision.ORPHAN_CONFIRMED,
        )


def classify(
    pg_block: int,
    ch_block: int,
    head: int,
    confirmed_block_threshold: int,
) -> ReconciliationDecision:
    """Classify one chain.

    Args:
        pg_block: Process-store watermark
        ch_block: Analytics-store watermark
        head: Chain tip
        confirmed_block_threshold: Blocks behind the head considered final

    A ch_block equal to the safe threshold counts as confirmed.
    """
    if ch_block == pg_block:
        return ReconciliationDecision.IN_SYNC
    if ch_block < pg_block:
        return ReconciliationDecision.BEHIND_WILL_REPROCESS
    if ch_block > head:
        return ReconciliationDecision.ORPHAN_BEYOND_HEAD
    if ch_block <= head - confirmed_block_threshold:
        return ReconciliationDecision.ORPHAN_CONFIRMED
    return ReconciliationDecision.ORPHAN_WITHIN_REORG_WINDOW


@dataclass
class ChainReconciliation:
    """Result of reconciling one chain in one pass.

    Attributes:
        chain_id: Chain identifier
        pg_block: Process-store watermark
        ch_block: Analytics-store watermark (0 when the chain has no rows)
        head: Chain tip used for the decision
        safe_threshold: head - confirmed_block_threshold
        decision: Classification of the chain
        rows_removed: Rows deleted by this pass
        tables_cleaned: Tables rows were deleted from
    """

    chain_id: int
    pg_block: int
    ch_block: int
    head: int
    safe_threshold: int
    decision: ReconciliationDecision
    rows_removed: int = 0
    tables_cleaned: list[str] = field(default_factory=list)


@dataclass
class ReconciliationReport:
    """Result of one reconciliation pass."""

    chains: list[ChainReconciliation] = field(default_factory=list)
    dry_run: bool = False

    @property
    def deleted_rows(self) -> int:
        return sum(chain.rows_removed for chain in self.chains)

    def decision_for(self, chain_id: int) -> ReconciliationDecision | None:
        for chain in self.chains:
            if chain.chain_id == chain_id:
                return chain.decision
        return None


class Reconciler:
    """Compares watermarks per chain and removes orphaned rows.

    Example:
        >>> reconciler = Reconciler(process_reader, analytics_reader, remover)
        >>> report = await reconciler.run()
        >>> report.deleted_rows
        0
    """

    def __init__(
        self,
        process_reader: ProcessWatermarkReader,
        analytics_reader: AnalyticsWatermarkReader,
        remover: OrphanRemover,
        confirmed_block_threshold: int = 200,
    ) -> None:
        self.process_reader = process_reader
        self.analytics_reader = analytics_reader
        self.remover = remover
        self.confirmed_block_threshold = confirmed_block_threshold

    async def run(self, dry_run: bool = False) -> ReconciliationReport:
        """Run one reconciliation pass over every chain.

        Args:
            dry_run: Classify and log without deleting anything

        Raises:
            Exception: Any store error; the pass is abandoned
        """
        logger.info("Reconciliation - checking for orphaned data...")

        try:
            pg_watermarks, chain_heads, ch_watermarks = await asyncio.gather(
                self.process_reader.read(),
                self.process_reader.read_heads(),
                self.analytics_reader.read(),
            )

            chains = await asyncio.gather(
                *(
                    self._reconcile_chain(
                        chain_id,
                        pg_block,
                        ch_watermarks.get(chain_id, 0),
                        chain_heads.get(chain_id) or pg_block,
                        dry_run,
                    )
                    for chain_id, pg_block in sorted(pg_watermarks.items())
                )
            )
        except Exception as e:
            logger.error(f"Reconciliation failed: {e}")
            raise

        report = ReconciliationReport(chains=list(chains), dry_run=dry_run)
        logger.info(
            "Reconciliation complete",
            extra={
                "chains": len(report.chains),
                "deleted_rows": report.deleted_rows,
                "dry_run": dry_run,
            },
        )
        return report

    async def _reconcile_chain(
        self,
        chain_id: int,
        pg_block: int,
        ch_block: int,
        head: int,
        dry_run: bool,
    ) -> ChainReconciliation:
        safe_threshold = head - self.confirmed_block_threshold
        decision = classify(pg_block, ch_block, head, self.confirmed_block_threshold)
        outcome = ChainReconciliation(
            chain_id=chain_id,
            pg_block=pg_block,
            ch_block=ch_block,
            head=head,
            safe_threshold=safe_threshold,
            decision=decision,
        )
        context = {
            "chain_id": chain_id,
            "pg_block": pg_block,
            "ch_block": ch_block,
            "head": head,
            "safe_threshold": safe_threshold,
            "decision": decision.value,
        }

        if decision is ReconciliationDecision.IN_SYNC:
            logger.info(f"Chain {chain_id}: Synced at block {pg_block}", extra=context)

        elif decision is ReconciliationDecision.BEHIND_WILL_REPROCESS:
            logger.info(
                f"Chain {chain_id}: CH at block {ch_block}, PG watermark at {pg_block}. "
                f"Gap of {pg_block - ch_block} blocks will be re-processed.",
                extra=context,
            )

        elif decision is ReconciliationDecision.ORPHAN_WITHIN_REORG_WINDOW:
            logger.warning(
                f"Chain {chain_id}: Detected orphaned blocks {pg_block + 1} to {ch_block} "
                f"within reorg window (head: {head}, threshold: {safe_threshold}) - "
                f"skipping cleanup",
                extra=context,
            )

        else:
            reason = (
                f"BEYOND chain head: {head}"
                if decision is ReconciliationDecision.ORPHAN_BEYOND_HEAD
                else f"confirmed, head: {head}, threshold: {safe_threshold}"
            )
            if dry_run:
                logger.warning(
                    f"Chain {chain_id}: Would delete orphaned blocks {pg_block + 1} "
                    f"to {ch_block} ({reason}) - dry run",
                    extra=context,
                )
            else:
                logger.warning(
                    f"Chain {chain_id}: Deleting orphaned blocks {pg_block + 1} "
                    f"to {ch_block} ({reason})",
                    extra=context,
                )
                deleted = await self.remover.delete_blocks_after(chain_id, pg_block)
                outcome.rows_removed = deleted.rows_removed
                outcome.tables_cleaned = deleted.tables

        return outcome
