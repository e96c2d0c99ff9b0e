"""
Reconciliation scheduler.

Startup reconciliation is mandatory: ingestion must not begin against an
analytics store of unknown consistency, so run_startup() lets failures
propagate. Afterwards a background loop repeats the pass on a fixed
interval to catch reorgs and crashes mid-run; failures there are logged and
retried on the next tick, never raised.

Invariants:
    - At most one periodic loop per scheduler
    - Periodic passes never overlap; the next sleep starts after a pass ends
    - A periodic failure never stops the loop
    - stop() never cancels a pass; deletes in progress run to completion

How to change safely:
    - Only the wait between passes may be interrupted by stop()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .reconciler import ReconciliationReport, Reconciler

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Runs the reconciler at startup and then periodically.

    Example:
        >>> scheduler = ReconciliationScheduler(reconciler, interval_seconds=60)
        >>> await scheduler.run_startup()   # raises on failure
        >>> scheduler.start()
        >>> ...
        >>> await scheduler.stop()
    """

    def __init__(
        self,
        reconciler: Reconciler,
        interval_seconds: float = 60.0,
        enabled: bool = True,
    ) -> None:
        """Initialize the scheduler.

        Args:
            reconciler: Reconciler to run
            interval_seconds: Interval between periodic passes
            enabled: Whether start() launches the periodic loop
        """
        self.reconciler = reconciler
        self.interval_seconds = interval_seconds
        self.enabled = enabled

        self._task: asyncio.Task[None] | None = None
        self._stop_requested = asyncio.Event()
        self._runs = 0
        self._failures = 0
        self._last_report: ReconciliationReport | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_startup(self) -> ReconciliationReport:
        """Run the mandatory startup pass. Failures propagate."""
        report = await self.reconciler.run()
        self._runs += 1
        self._last_report = report
        return report

    def start(self) -> None:
        """Start the periodic loop in the background."""
        if not self.enabled:
            logger.info("Periodic reconciliation disabled")
            return

        if self.is_running:
            logger.warning("Periodic reconciliation already running")
            return

        self._stop_requested.clear()
        logger.info(
            f"Starting periodic reconciliation (every {self.interval_seconds}s)",
            extra={"interval_seconds": self.interval_seconds},
        )
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        """Stop the periodic loop, letting a pass in progress finish."""
        if self._task is None:
            return

        task, self._task = self._task, None
        self._stop_requested.set()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Stopped periodic reconciliation")

    async def _loop(self) -> None:
        while not self._stop_requested.is_set():
            try:
                await asyncio.wait_for(self._stop_requested.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await self.run_once()
        logger.debug("Periodic reconciliation loop exited")

    async def run_once(self) -> ReconciliationReport | None:
        """Run one periodic pass, logging and swallowing failures."""
        try:
            report = await self.reconciler.run()
        except Exception as e:
            self._failures += 1
            logger.error(f"Periodic reconciliation failed: {e}", exc_info=True)
            return None

        self._runs += 1
        self._last_report = report
        return report

    @property
    def stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {
            "running": self.is_running,
            "runs": self._runs,
            "failures": self._failures,
            "last_deleted_rows": self._last_report.deleted_rows if self._last_report else None,
        }
