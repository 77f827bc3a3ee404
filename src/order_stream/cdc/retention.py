"""Best-effort trimming of delivered change records"""

import asyncio
import random
from typing import Optional

from loguru import logger

from .base import ChangeRecordSource


class RetentionSweeper:
    """Deletes delivered records beyond the newest `retention_count` ones"""

    def __init__(
        self,
        source: ChangeRecordSource,
        retention_count: int = 1000,
        probability: float = 0.1,
        timeout: float = 5.0,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize retention sweeper

        Args:
            source: Change log to trim
            retention_count: Number of delivered records to keep
            probability: Chance that a given tick triggers a sweep
            timeout: Max seconds to wait for the delete
            rng: Random source (injectable for tests)
        """
        self.source = source
        self.retention_count = retention_count
        self.probability = probability
        self.timeout = timeout
        self.rng = rng or random.Random()
        self.sweeps = 0
        self.failures = 0

    def should_sweep(self) -> bool:
        return self.rng.random() < self.probability

    async def maybe_sweep(self) -> bool:
        """Sweep on roughly `probability` of calls"""
        if not self.should_sweep():
            return False
        return await self.sweep()

    async def sweep(self) -> bool:
        """Run one sweep; never raises"""
        try:
            deleted = await asyncio.wait_for(
                asyncio.to_thread(self.source.delete_delivered_older_than, self.retention_count),
                timeout=self.timeout
            )
        except Exception as e:
            self.failures += 1
            logger.warning(f"Change log cleanup failed (ignored): {e}")
            return False

        self.sweeps += 1
        logger.debug(f"Change log cleanup done, keeping last {self.retention_count} delivered changes")
        return bool(deleted)
