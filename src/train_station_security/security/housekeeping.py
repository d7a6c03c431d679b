"""Periodic removal of expired CSRF tokens and sessions."""

import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from train_station_security.core.logging import get_logger

logger = get_logger(__name__)

SweepTask = Tuple[str, Callable[[], int]]


class HousekeepingSweeper:
    """Run named cleanup callables on a fixed interval.

    Each task returns the number of records it removed. A task that raises is
    logged and the remaining tasks still run.
    """

    def __init__(self, tasks: Iterable[SweepTask], interval_seconds: float = 15 * 60):
        self.tasks: List[SweepTask] = list(tasks)
        self.interval_seconds = interval_seconds
        self._running = False
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    def run_once(self) -> Dict[str, int]:
        """Run every task once and return removed counts by task name."""
        removed: Dict[str, int] = {}
        for name, task in self.tasks:
            try:
                removed[name] = task()
            except Exception as e:
                logger.error("Housekeeping task failed", task=name, error=str(e))
        return removed

    async def start(self) -> None:
        """Start the background sweep."""
        if self._running:
            return

        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())

        logger.info("Housekeeping sweeper started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background sweep."""
        self._running = False

        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        logger.info("Housekeeping sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            removed = self.run_once()
            logger.debug("Housekeeping sweep completed", removed=removed)
