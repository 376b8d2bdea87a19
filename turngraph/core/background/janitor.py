"""CheckpointJanitor — periodic removal of expired checkpoints."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from loguru import logger

from turngraph.core.config.schema import Config
from turngraph.memory.checkpoints import CheckpointStore


class CheckpointJanitor:
    """Deletes checkpoints older than ``checkpoints.max_age_s`` every interval."""

    def __init__(self, config: Config, store: CheckpointStore):
        self.store = store
        self.interval_s = config.checkpoints.cleanup_interval_s
        self.max_age = timedelta(seconds=config.checkpoints.max_age_s)
        self.enabled = config.checkpoints.enabled
        self._running = False

    async def start(self) -> None:
        """Start the cleanup loop."""
        if not self.enabled or not self.store.is_ready():
            logger.debug("CheckpointJanitor disabled")
            return
        self._running = True
        logger.info(
            f"CheckpointJanitor started (interval={self.interval_s}s, max_age={self.max_age})"
        )
        while self._running:
            await asyncio.sleep(self.interval_s)
            if not self._running:
                break
            await self._tick()

    def stop(self) -> None:
        """Stop the cleanup loop."""
        self._running = False
        logger.info("CheckpointJanitor stopped")

    async def _tick(self) -> int:
        removed = await asyncio.to_thread(self.store.cleanup_older_than, self.max_age)
        logger.debug(f"Janitor: {removed} expired checkpoints removed")
        return removed
