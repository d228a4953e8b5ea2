"""
Maintenance service: background worker that keeps competition statuses in
step with their dates and purges expired data.

Polls every MAINTENANCE_INTERVAL_SECONDS (default 5 minutes).
"""

import asyncio
import logging
import os
from typing import Any, Dict, Optional

from compete.services.competition_status_service import update_all_competition_statuses
from compete.services.database_service import DatabaseService

logger = logging.getLogger(__name__)

# How often the worker runs (seconds)
DEFAULT_INTERVAL_SECONDS = 300  # 5 minutes


class MaintenanceService:
    """Background service running status updates and cleanup."""

    def __init__(self, database: DatabaseService, interval_seconds: Optional[float] = None):
        self.database = database
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else float(os.getenv("MAINTENANCE_INTERVAL_SECONDS", str(DEFAULT_INTERVAL_SECONDS)))
        )
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def start(self) -> None:
        """Start the background worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Maintenance worker started")

    def stop(self) -> None:
        """Stop the background worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Maintenance worker stopped")

    async def run_once(self) -> Dict[str, Any]:
        """Run one maintenance pass: status transitions, then cleanup."""
        updates = await update_all_competition_statuses(self.database.competitions)
        removed = await self.database.cleanup()
        return {"statusUpdates": updates, "cleanup": removed}

    async def _poll_loop(self) -> None:
        """Main loop: run a pass, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in maintenance worker: {e}", exc_info=True)

            # Wait for the interval or until stop is signalled
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass
