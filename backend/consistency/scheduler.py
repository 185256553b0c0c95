"""
Reconciliation scheduler.

Background task that periodically repairs tag drift (backfill, dedupe,
reconcile) for every owner. Off by default: reconciliation stays manual
through the maintenance endpoints unless reconcile_interval_seconds is set.

Typical usage:
    # In FastAPI lifespan:
    scheduler = ReconciliationScheduler(TagMaintenance(db, settings), interval)
    scheduler.start()
    # On shutdown:
    scheduler.stop()
"""

import asyncio
import logging
from typing import Optional

from consistency.maintenance import TagMaintenance

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Runs TagMaintenance.repair_owner for each owner every interval seconds.

    Args:
        maintenance: The repair toolkit bound to the app's database.
        interval: Seconds between passes.
    """

    def __init__(self, maintenance: TagMaintenance, interval: int) -> None:
        self._maintenance = maintenance
        self._interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the scheduler as a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Reconciliation scheduler started (interval=%ds)", self._interval)

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None
        logger.info("Reconciliation scheduler stopped")

    async def _loop(self) -> None:
        """Main scheduler loop — one pass, then sleep."""
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Reconciliation pass error: {e}", exc_info=True)
            await asyncio.sleep(self._interval)

    async def run_once(self) -> int:
        """Repair every owner once. Returns the number of owners processed."""
        owners = await self._maintenance.owners()
        for owner_id in owners:
            try:
                report = await self._maintenance.repair_owner(owner_id)
            except Exception as e:
                logger.error(f"Reconciliation failed for owner {owner_id}: {e}", exc_info=True)
                continue
            if not report.ok:
                logger.warning(
                    f"Reconciliation for owner {owner_id} had {len(report.failures)} failed step(s)"
                )
        if owners:
            logger.info(f"Reconciliation pass processed {len(owners)} owner(s)")
        return len(owners)
