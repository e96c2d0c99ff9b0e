"""
Batch accumulator for decoded event records.

The event-processing runtime hands records over one at a time through
accept(), synchronously, on the event loop thread. Rows are buffered per
destination table and written in bulk once the pending count reaches the
configured threshold, or when flush() is awaited.

Buffering works in generations: a flush swaps the current buffers for empty
ones and hands the swapped generation to the writer. accept() calls that
arrive while that write is in flight fill the fresh generation, so no lock
is needed between ingestion and the writer.

Invariants:
    - accept() never raises and never awaits
    - Only accept() mutates the current generation; swaps are atomic
      because they happen between awaits on a single-threaded loop
    - On a running loop, memory is bounded by max_batch_size rows per
      generation, plus the generations still being written. Without a
      running loop nothing is scheduled and rows accumulate until flush()
    - A failed write is never silently dropped: automatic-flush failures
      are logged and re-raised by the next flush()

How to change safely:
    - Do not add awaits inside accept(); the runtime calls it synchronously
    - Shutdown must await flush(), which waits for in-flight writes rather
      than cancelling them
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..records import EventRecord
from .writer import AnalyticsWriter, WriteResult

logger = logging.getLogger(__name__)


class BatchAccumulator:
    """Buffers rows per table and flushes them through an AnalyticsWriter.

    Attributes:
        writer: Writer that performs the bulk inserts
        max_batch_size: Pending rows that trigger an automatic flush

    Example:
        >>> accumulator = BatchAccumulator(AnalyticsWriter(store), max_batch_size=5000)
        >>> accumulator.accept(record)   # from the event handler
        >>> await accumulator.flush()    # on shutdown
    """

    def __init__(self, writer: AnalyticsWriter, max_batch_size: int = 5000) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")

        self.writer = writer
        self.max_batch_size = max_batch_size

        self._buffers: dict[str, list[dict[str, Any]]] = {}
        self._pending = 0
        self._in_flight: set[asyncio.Task[WriteResult]] = set()
        self._deferred_errors: list[BaseException] = []
        self._no_loop_logged = False

        self._scheduled_flushes = 0
        self._flushed_batches = 0
        self._flushed_rows = 0
        self._failed_batches = 0

    @property
    def pending_count(self) -> int:
        """Rows in the current generation, not yet handed to the writer."""
        return self._pending

    @property
    def in_flight(self) -> int:
        """Automatic flushes that have not settled yet."""
        return len(self._in_flight)

    def accept(self, record: EventRecord) -> None:
        """Buffer one record, scheduling a flush when the threshold is hit."""
        self._buffers.setdefault(record.table, []).append(record.to_row())
        self._pending += 1

        if self._pending >= self.max_batch_size:
            self._schedule_flush()

    async def flush(self) -> WriteResult:
        """Write everything buffered so far.

        Waits for in-flight automatic flushes, including any scheduled
        while waiting, then writes the current generation.

        Returns:
            WriteResult for the current generation

        Raises:
            BatchWriteError: If this write, or an earlier automatic flush
                whose failure has not been reported yet, failed
        """
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        result = WriteResult()
        error: BaseException | None = None
        if self._pending:
            buffers = self._swap()
            try:
                result = await self._write(buffers)
            except Exception as e:
                error = e

        deferred, self._deferred_errors = self._deferred_errors, []
        if error is not None:
            raise error
        if deferred:
            raise deferred[0]
        return result

    def _swap(self) -> dict[str, list[dict[str, Any]]]:
        buffers = self._buffers
        self._buffers = {}
        self._pending = 0
        self._no_loop_logged = False
        return buffers

    def _schedule_flush(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop: rows stay pending until flush() is awaited.
            if not self._no_loop_logged:
                logger.debug("No running event loop, deferring flush")
                self._no_loop_logged = True
            return

        buffers = self._swap()
        self._scheduled_flushes += 1
        task = loop.create_task(self._write(buffers))
        self._in_flight.add(task)
        task.add_done_callback(self._on_flush_done)

    def _on_flush_done(self, task: asyncio.Task[WriteResult]) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._deferred_errors.append(error)
            logger.error(f"Automatic flush failed: {error}")

    async def _write(self, buffers: dict[str, list[dict[str, Any]]]) -> WriteResult:
        try:
            result = await self.writer.write(buffers)
        except Exception:
            self._failed_batches += 1
            raise
        self._flushed_batches += 1
        self._flushed_rows += result.rows_written
        return result

    @property
    def stats(self) -> dict[str, Any]:
        """Get accumulator statistics."""
        return {
            "pending_rows": self._pending,
            "pending_tables": len(self._buffers),
            "in_flight": len(self._in_flight),
            "scheduled_flushes": self._scheduled_flushes,
            "flushed_batches": self._flushed_batches,
            "flushed_rows": self._flushed_rows,
            "failed_batches": self._failed_batches,
        }
