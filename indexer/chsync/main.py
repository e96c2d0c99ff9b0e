"""
ClickHouse sync service - lifecycle and shutdown coordination.

This module wires all components together:
- Analytics store (ClickHouse) and process store (PostgreSQL)
- Batch accumulator and writer (ingestion path)
- Reconciler and its scheduler (consistency path)

An event-processing runtime embedding the service calls accept() for every
decoded event. Run standalone, the service performs the startup
reconciliation, keeps reconciling periodically, and waits for a signal.

Usage:
    python -m indexer.chsync.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Startup reconciliation succeeds before the service reports started;
      otherwise the process exits non-zero
    - Shutdown order: stop the scheduler, flush pending rows, close stores
    - Shutdown waits for in-flight flushes instead of cancelling them
    - Only the first SIGINT/SIGTERM starts a shutdown; later ones are ignored

How to change safely:
    - Add new components with enable/disable flags
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .config import SyncConfig
from .reconcile import (
    AnalyticsWatermarkReader,
    OrphanRemover,
    ProcessWatermarkReader,
    ReconciliationScheduler,
    Reconciler,
)
from .records import EventRecord
from .sink import AnalyticsWriter, BatchAccumulator
from .store import (
    AnalyticsStore,
    ClickHouseStore,
    PostgresProcessStore,
    ProcessStore,
    SystemTablesCatalog,
    TableCatalog,
)

logger = logging.getLogger(__name__)


def setup_logging(config: SyncConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Sync configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("psycopg").setLevel(logging.WARNING)


class SyncService:
    """Sync service orchestrator.

    Owns the stores, the ingestion sink and the reconciliation scheduler,
    and coordinates their startup and shutdown.

    Attributes:
        config: Sync configuration
        analytics_store: Destination store
        process_store: Processing-state store
        accumulator: Batch accumulator fed by accept()
        reconciler: Reconciler used at startup and periodically
        scheduler: Reconciliation scheduler

    Example:
        >>> service = SyncService()
        >>> await service.start()
        >>> service.accept(record)
        >>> await service.stop()
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        analytics_store: AnalyticsStore | None = None,
        process_store: ProcessStore | None = None,
        catalog: TableCatalog | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Optional configuration (loaded from env if not provided)
            analytics_store: Optional analytics store (ClickHouse by default)
            process_store: Optional process store (PostgreSQL by default)
            catalog: Optional table catalog (discovered from the store by default)
        """
        self.config = config or SyncConfig.from_env()
        self.analytics_store = analytics_store or ClickHouseStore(self.config.analytics_store)
        self.process_store = process_store or PostgresProcessStore(self.config.process_store)
        self.catalog = catalog or SystemTablesCatalog(self.analytics_store)

        self.writer = AnalyticsWriter(self.analytics_store)
        self.accumulator = BatchAccumulator(
            self.writer, max_batch_size=self.config.batch.max_batch_size
        )
        self.reconciler = Reconciler(
            process_reader=ProcessWatermarkReader(self.process_store),
            analytics_reader=AnalyticsWatermarkReader(self.analytics_store, self.catalog),
            remover=OrphanRemover(self.analytics_store, self.catalog),
            confirmed_block_threshold=self.config.reconciliation.confirmed_block_threshold,
        )
        self.scheduler = ReconciliationScheduler(
            self.reconciler,
            interval_seconds=self.config.reconciliation.interval_seconds,
            enabled=self.config.reconciliation.enabled,
        )

        self.final_flush_failed = False
        self._running = False
        self._stopping = False
        self._shutdown_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def accept(self, record: EventRecord) -> None:
        """Hand one decoded event to the batch accumulator."""
        self.accumulator.accept(record)

    async def start(self) -> None:
        """Connect, reconcile once, and start periodic reconciliation.

        Raises:
            Exception: If the stores are unreachable or startup
                reconciliation fails
        """
        if self._running:
            logger.warning("Sync service already running")
            return

        logger.info("Starting ClickHouse sync service")
        self.config.log_config()

        await self.analytics_store.connect()
        await self.scheduler.run_startup()
        self.scheduler.start()

        self._running = True
        logger.info("ClickHouse sync service started")

    async def serve(self) -> None:
        """Start the service and wait until shutdown is requested."""
        await self.start()
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop the service gracefully. Safe to call more than once."""
        if self._stopping:
            return
        self._stopping = True

        logger.info("Stopping ClickHouse sync service")

        await self.scheduler.stop()

        pending = self.accumulator.pending_count
        if pending or self.accumulator.in_flight:
            logger.info(f"Flushing {pending} remaining events before shutdown")
        try:
            await self.accumulator.flush()
        except Exception as e:
            self.final_flush_failed = True
            logger.error(f"Failed to flush final batch: {e}", exc_info=True)

        for store in (self.analytics_store, self.process_store):
            try:
                await store.close()
            except Exception as e:
                logger.error(f"Error closing store connection: {e}", exc_info=True)

        self._running = False
        logger.info("ClickHouse sync service stopped")

    def request_shutdown(self, sig: int | None = None) -> None:
        """Request graceful shutdown; repeated requests are ignored."""
        if self._shutdown_event.is_set():
            logger.debug("Shutdown already in progress, ignoring signal", extra={"signal": sig})
            return
        logger.info(f"Received signal {sig}, shutting down gracefully")
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    # Load configuration
    try:
        config = SyncConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    service = SyncService(config)

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, service.request_shutdown, sig)

    exit_code = 0
    try:
        loop.run_until_complete(service.serve())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Startup failed: {e}", exc_info=True)
        logger.error("Verify configuration and apply the destination table schema")
        exit_code = 1
    finally:
        loop.run_until_complete(service.stop())
        loop.close()

    if service.final_flush_failed:
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
