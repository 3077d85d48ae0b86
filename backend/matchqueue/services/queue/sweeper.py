"""
Periodic expiry of stale queue entries.
"""

import asyncio
import logging
import os
from typing import Optional

from matchqueue.services.queue.engine import PairingEngine

logger = logging.getLogger(__name__)

QUEUE_SWEEP_INTERVAL_SECONDS = float(os.getenv("QUEUE_SWEEP_INTERVAL_SECONDS", "60"))


class QueueSweeper:
    """Runs ``PairingEngine.evict_expired`` every ``interval`` seconds."""

    def __init__(
        self, engine: PairingEngine, interval: float = QUEUE_SWEEP_INTERVAL_SECONDS
    ):
        self.engine = engine
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info(f"Queue sweeper started (interval {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Queue sweeper stopped")

    async def sweep_once(self) -> int:
        try:
            return await self.engine.evict_expired()
        except Exception as e:
            # Keep sweeping; the next pass retries the same entries
            logger.error(f"Queue sweep failed: {e}")
            return 0

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.sweep_once()
