"""Periodic sweep that hands stuck `syncing` accounts back to the queue.

An account stays `syncing` forever if its worker crashes or is killed
mid-run. The sweep runs on its own timer, independent of the worker loop.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class StaleJobSweeper:
    def __init__(self, store, threshold: float, interval: float):
        """
        Args:
            store: account store exposing `reset_stuck(threshold)`.
            threshold: seconds without an update before a syncing account counts as stuck.
            interval: seconds between sweeps.
        """
        self.store = store
        self.threshold = float(threshold)
        self.interval = float(interval)
        self.total_reset = 0
        self._stopping = asyncio.Event()

    def sweep(self) -> int:
        n = self.store.reset_stuck(self.threshold)
        if n:
            logger.warning("reset %d stuck syncing account(s) older than %.0fs", n, self.threshold)
        self.total_reset += n
        return n

    async def run(self) -> None:
        logger.info("stale job sweeper started (threshold=%.0fs, every %.0fs)", self.threshold, self.interval)
        while not self._stopping.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("stale job sweep failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("stale job sweeper stopped")

    def stop(self) -> None:
        self._stopping.set()
