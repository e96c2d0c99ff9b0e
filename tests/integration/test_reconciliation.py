"""
Integration tests for reconciliation with the in-memory stores.

Tests cover:
- Every decision branch, including the reorg-window boundaries
- Chain-scoped deletes and idempotence
- Partial batch writes followed by reconciliation
- Dry runs and first-run behaviour
"""

import pytest

from indexer.chsync.reconcile import (
    AnalyticsWatermarkReader,
    OrphanRemover,
    ProcessWatermarkReader,
    ReconciliationDecision,
    Reconciler,
)
from indexer.chsync.records import EventRecord
from indexer.chsync.sink import AnalyticsWriter, BatchWriteError
from indexer.chsync.store import (
    InMemoryAnalyticsStore,
    InMemoryProcessStore,
    StoreConnectionError,
    SystemTablesCatalog,
)


def make_rows(table, chain_id, blocks, events_per_block=1):
    return [
        EventRecord(
            table=table,
            chain_id=chain_id,
            block_number=block,
            log_index=i,
            fields={"amount": block * 10 + i},
            tx_hash="0x" + "00" * 32,
        ).to_row()
        for block in blocks
        for i in range(events_per_block)
    ]


def build_reconciler(analytics, process, threshold=200):
    catalog = SystemTablesCatalog(analytics)
    return Reconciler(
        process_reader=ProcessWatermarkReader(process),
        analytics_reader=AnalyticsWatermarkReader(analytics, catalog),
        remover=OrphanRemover(analytics, catalog),
        confirmed_block_threshold=threshold,
    )


async def max_block(store, table, chain_id):
    rows = await store.fetch_rows(table, chain_id=chain_id)
    return max((row["block_number"] for row in rows), default=0)


class TestReconciliation:
    """Integration tests for Reconciler."""

    @pytest.fixture
    def analytics(self):
        return InMemoryAnalyticsStore(tables=["pool_swap", "pool_mint"])

    @pytest.mark.asyncio
    async def test_in_sync(self, analytics):
        """Equal watermarks: nothing is deleted."""
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(1990, 2001)))
        process = InMemoryProcessStore(watermarks={1: 2000}, chain_heads={1: 2100})

        report = await build_reconciler(analytics, process).run()

        assert report.decision_for(1) is ReconciliationDecision.IN_SYNC
        assert report.deleted_rows == 0
        assert analytics.delete_calls == []

    @pytest.mark.asyncio
    async def test_orphans_within_reorg_window_are_kept(self, analytics):
        """head 1000, threshold 200, ch 850 > pg 700: skipped."""
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(600, 851)))
        process = InMemoryProcessStore(watermarks={1: 700}, chain_heads={1: 1000})

        report = await build_reconciler(analytics, process).run()

        assert report.decision_for(1) is ReconciliationDecision.ORPHAN_WITHIN_REORG_WINDOW
        assert analytics.delete_calls == []
        assert await max_block(analytics, "pool_swap", 1) == 850

    @pytest.mark.asyncio
    async def test_confirmed_orphans_at_boundary_are_deleted(self, analytics):
        """head 1000, threshold 200, ch 800: confirmed, rows > pg removed."""
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(600, 801)))
        await analytics.insert("pool_mint", make_rows("pool_mint", 1, [650, 750]))
        process = InMemoryProcessStore(watermarks={1: 700}, chain_heads={1: 1000})

        report = await build_reconciler(analytics, process).run()

        chain = report.chains[0]
        assert chain.decision is ReconciliationDecision.ORPHAN_CONFIRMED
        assert chain.safe_threshold == 800
        assert chain.rows_removed == 100 + 1
        assert sorted(chain.tables_cleaned) == ["pool_mint", "pool_swap"]
        assert await max_block(analytics, "pool_swap", 1) == 700
        assert await max_block(analytics, "pool_mint", 1) == 650

    @pytest.mark.asyncio
    async def test_orphans_beyond_head_are_deleted(self, analytics):
        """ch 1001 > head 1000: impossible rows, deleted after pg."""
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(950, 1002)))
        process = InMemoryProcessStore(watermarks={1: 990}, chain_heads={1: 1000})

        report = await build_reconciler(analytics, process).run()

        assert report.decision_for(1) is ReconciliationDecision.ORPHAN_BEYOND_HEAD
        assert analytics.delete_calls == [("pool_swap", 1, 990)]
        assert await max_block(analytics, "pool_swap", 1) == 990

    @pytest.mark.asyncio
    async def test_behind_is_left_for_reprocessing(self, analytics):
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(100, 151)))
        process = InMemoryProcessStore(watermarks={1: 200}, chain_heads={1: 300})

        report = await build_reconciler(analytics, process).run()

        assert report.decision_for(1) is ReconciliationDecision.BEHIND_WILL_REPROCESS
        assert analytics.delete_calls == []
        assert analytics.row_count() == 51

    @pytest.mark.asyncio
    async def test_second_pass_is_noop(self, analytics):
        """Running again without ingestion repeats no deletes."""
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(600, 801)))
        process = InMemoryProcessStore(watermarks={1: 700}, chain_heads={1: 1000})
        reconciler = build_reconciler(analytics, process)

        first = await reconciler.run()
        deletes_after_first = list(analytics.delete_calls)
        second = await reconciler.run()

        assert first.deleted_rows == 100
        assert second.deleted_rows == 0
        assert second.decision_for(1) is ReconciliationDecision.IN_SYNC
        assert analytics.delete_calls == deletes_after_first

    @pytest.mark.asyncio
    async def test_missing_head_falls_back_to_watermark(self, analytics):
        """Without a known head, any orphan is beyond the head."""
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(490, 511)))
        await analytics.insert("pool_swap", make_rows("pool_swap", 2, range(490, 511)))
        process = InMemoryProcessStore(watermarks={1: 500, 2: 500}, chain_heads={2: 0})

        report = await build_reconciler(analytics, process).run()

        for chain in report.chains:
            assert chain.head == 500
            assert chain.decision is ReconciliationDecision.ORPHAN_BEYOND_HEAD
        assert await max_block(analytics, "pool_swap", 1) == 500
        assert await max_block(analytics, "pool_swap", 2) == 500

    @pytest.mark.asyncio
    async def test_first_run_with_empty_stores(self):
        analytics = InMemoryAnalyticsStore()
        await analytics.connect()
        process = InMemoryProcessStore()

        report = await build_reconciler(analytics, process).run()

        assert report.chains == []
        assert report.deleted_rows == 0

    @pytest.mark.asyncio
    async def test_first_run_without_event_tables(self):
        """No destination tables yet: every chain is behind."""
        analytics = InMemoryAnalyticsStore()
        await analytics.connect()
        process = InMemoryProcessStore(watermarks={1: 100}, chain_heads={1: 150})

        report = await build_reconciler(analytics, process).run()

        assert report.chains[0].ch_block == 0
        assert report.decision_for(1) is ReconciliationDecision.BEHIND_WILL_REPROCESS

    @pytest.mark.asyncio
    async def test_dry_run_deletes_nothing(self, analytics):
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(600, 801)))
        process = InMemoryProcessStore(watermarks={1: 700}, chain_heads={1: 1000})

        report = await build_reconciler(analytics, process).run(dry_run=True)

        assert report.dry_run is True
        assert report.decision_for(1) is ReconciliationDecision.ORPHAN_CONFIRMED
        assert report.deleted_rows == 0
        assert analytics.delete_calls == []
        assert await max_block(analytics, "pool_swap", 1) == 800

    @pytest.mark.asyncio
    async def test_deletes_are_chain_scoped(self, analytics):
        """Orphans of one chain never remove rows of another."""
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(600, 801)))
        await analytics.insert("pool_swap", make_rows("pool_swap", 137, range(600, 801)))
        process = InMemoryProcessStore(
            watermarks={1: 700, 137: 700},
            chain_heads={1: 1000, 137: 900},
        )

        report = await build_reconciler(analytics, process).run()

        assert report.decision_for(1) is ReconciliationDecision.ORPHAN_CONFIRMED
        assert report.decision_for(137) is ReconciliationDecision.ORPHAN_WITHIN_REORG_WINDOW
        assert await max_block(analytics, "pool_swap", 1) == 700
        assert await max_block(analytics, "pool_swap", 137) == 800

    @pytest.mark.asyncio
    async def test_deleting_chains_end_at_or_below_watermark(self, analytics):
        """After a pass, every cleaned chain's max block is <= its watermark."""
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(0, 300, 7)))
        await analytics.insert("pool_mint", make_rows("pool_mint", 1, range(3, 260, 11)))
        await analytics.insert("pool_mint", make_rows("pool_mint", 10, range(0, 50)))
        process = InMemoryProcessStore(watermarks={1: 40, 10: 45}, chain_heads={1: 1000, 10: 45})

        report = await build_reconciler(analytics, process).run()

        for chain in report.chains:
            assert chain.decision.requires_delete
            watermarks = await analytics.max_block_per_chain(["pool_swap", "pool_mint"])
            assert watermarks[chain.chain_id] <= chain.pg_block

    @pytest.mark.asyncio
    async def test_partial_batch_write_is_reconciled(self, analytics):
        """A batch lands in one table only; the extra rows are removed."""
        await analytics.connect()
        writer = AnalyticsWriter(analytics)
        await writer.write(
            {
                "pool_swap": make_rows("pool_swap", 1, range(90, 101)),
                "pool_mint": make_rows("pool_mint", 1, range(90, 101)),
            }
        )

        analytics.fail_inserts("pool_swap")
        with pytest.raises(BatchWriteError):
            await writer.write(
                {
                    "pool_swap": make_rows("pool_swap", 1, range(101, 111)),
                    "pool_mint": make_rows("pool_mint", 1, range(101, 111)),
                }
            )
        analytics.clear_failures()

        # The runtime never committed the failed batch
        process = InMemoryProcessStore(watermarks={1: 100}, chain_heads={1: 1000})

        report = await build_reconciler(analytics, process).run()

        assert report.decision_for(1) is ReconciliationDecision.ORPHAN_CONFIRMED
        assert report.chains[0].tables_cleaned == ["pool_mint"]
        assert await max_block(analytics, "pool_mint", 1) == 100
        assert await max_block(analytics, "pool_swap", 1) == 100
        assert analytics.row_count("pool_mint") == 11

    @pytest.mark.asyncio
    async def test_reprocessed_rows_deduplicate(self, analytics):
        """Re-written events collapse to one row per id on final reads."""
        await analytics.connect()
        rows = make_rows("pool_swap", 1, range(10, 20), events_per_block=2)

        await analytics.insert("pool_swap", rows)
        await analytics.insert("pool_swap", rows)

        final = await analytics.fetch_rows("pool_swap")
        assert len(final) == 20
        assert len({row["id"] for row in final}) == 20

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, analytics):
        await analytics.connect()
        process = InMemoryProcessStore(watermarks={1: 100})
        process.fail_with(StoreConnectionError("pg down"))

        with pytest.raises(StoreConnectionError):
            await build_reconciler(analytics, process).run()

    @pytest.mark.asyncio
    async def test_remover_without_orphans(self, analytics):
        await analytics.connect()
        await analytics.insert("pool_swap", make_rows("pool_swap", 1, range(1, 11)))
        remover = OrphanRemover(analytics, SystemTablesCatalog(analytics))

        result = await remover.delete_blocks_after(1, 10)

        assert result.rows_removed == 0
        assert result.tables == []
        assert result.tables_scanned == 2
        assert analytics.delete_calls == []
