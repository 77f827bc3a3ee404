"""Polling consumer of the change log"""

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from loguru import logger

from .base import CDCPositionError, ChangeRecordSource
from .cursor import CursorTracker
from .normalizer import EventNormalizer
from .retention import RetentionSweeper

if TYPE_CHECKING:
    from ..realtime.broadcaster import Broadcaster

MAX_RECORDED_ERRORS = 50


class ChangePoller:
    """
    Moves undelivered change records to the broadcaster, in id order

    For every record: normalize, publish, mark delivered, advance the
    cursor. A record is only skipped past once its delivered flag is set,
    which gives at-least-once delivery across failures and restarts.
    """

    def __init__(
        self,
        source: ChangeRecordSource,
        broadcaster: "Broadcaster",
        cursor: Optional[CursorTracker] = None,
        normalizer: Optional[EventNormalizer] = None,
        sweeper: Optional[RetentionSweeper] = None,
        poll_interval: float = 0.2,
        batch_size: int = 50,
        query_timeout: float = 5.0
    ):
        """
        Initialize change poller

        Args:
            source: Change log to read
            broadcaster: Fan-out receiving the events
            cursor: Delivery cursor (created over `source` if omitted)
            normalizer: Record to event converter
            sweeper: Optional retention sweeper run after busy ticks
            poll_interval: Seconds between tick starts
            batch_size: Max records fetched per tick
            query_timeout: Max seconds for a single store call
        """
        self.source = source
        self.broadcaster = broadcaster
        self.cursor = cursor or CursorTracker(source)
        self.normalizer = normalizer or EventNormalizer()
        self.sweeper = sweeper
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.query_timeout = query_timeout

        self.is_running = False
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        self.metrics = {
            'ticks': 0,
            'tick_errors': 0,
            'events_received': 0,
            'events_published': 0,
            'events_dropped': 0,
            'delivery_failures': 0,
            'last_event_time': None,
            'errors': []
        }

    async def _call(self, func: Callable, *args) -> Any:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.query_timeout)

    async def initialize(self) -> int:
        """Recover the cursor from the store (startup; errors are fatal)"""
        return await asyncio.to_thread(self.cursor.initialize)

    async def tick(self) -> int:
        """
        Process one batch of undelivered records

        Returns:
            Number of records marked delivered during this tick
        """
        self.metrics['ticks'] += 1

        try:
            records = await self._call(
                self.source.fetch_undelivered,
                self.cursor.position,
                self.batch_size
            )
        except Exception as e:
            self.metrics['tick_errors'] += 1
            self._record_error('fetch', e)
            logger.warning(f"Error checking for changes, retrying next tick: {e}")
            return 0

        if not records:
            return 0

        processed = 0
        for record in records:
            self.metrics['events_received'] += 1
            self.metrics['last_event_time'] = datetime.now()

            event = self.normalizer.normalize(record)
            if event is not None:
                await self.broadcaster.publish(event)
                self.metrics['events_published'] += 1
            else:
                self.metrics['events_dropped'] += 1

            try:
                marked = await self._call(self.source.mark_delivered, record.id)
            except Exception as e:
                marked = False
                self._record_error('mark_delivered', e, change_id=record.id)
                logger.warning(f"Failed to mark change #{record.id} delivered: {e}")

            if not marked:
                self.metrics['delivery_failures'] += 1
                logger.warning(f"Change #{record.id} stays pending, will retry from it next tick")
                break

            self.cursor.advance(record.id)
            processed += 1

        if self.sweeper is not None:
            await self.sweeper.maybe_sweep()

        return processed

    async def run(self) -> None:
        """Poll until stopped; ticks never overlap"""
        loop = asyncio.get_running_loop()

        while not self._stop_event.is_set():
            started = loop.time()
            try:
                await self.tick()
            except CDCPositionError:
                logger.critical("Change poller stopped on cursor invariant violation")
                self.is_running = False
                raise
            except Exception as e:
                self.metrics['tick_errors'] += 1
                self._record_error('tick', e)
                logger.exception(f"Unexpected error in change poll tick: {e}")

            delay = max(0.0, self.poll_interval - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def start(self) -> None:
        """Launch the poll loop as a task on the running loop"""
        if self.is_running:
            logger.warning("Change poller already running")
            return
        if not self.cursor.initialized:
            raise CDCPositionError("Cursor must be initialized before polling")

        self._stop_event.clear()
        self.is_running = True
        self._task = asyncio.create_task(self.run(), name="change-poller")
        logger.info(f"Started change polling every {self.poll_interval * 1000:.0f}ms")

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop scheduling ticks and wait for the in-flight one"""
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("In-flight change tick did not finish in time, cancelling")
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        except Exception as e:
            logger.error(f"Change poller ended with error: {e}")

        self._task = None
        self.is_running = False
        logger.info("Change listener stopped")

    def _record_error(self, stage: str, error: Exception, **extra) -> None:
        errors = self.metrics['errors']
        errors.append({
            'stage': stage,
            'error': str(error),
            'timestamp': datetime.now(),
            **extra
        })
        del errors[:-MAX_RECORDED_ERRORS]

    def get_status(self) -> Dict[str, Any]:
        return {
            'is_running': self.is_running,
            'last_processed_id': self.cursor.position,
            'poll_interval': self.poll_interval,
            'batch_size': self.batch_size,
            'metrics': {**self.metrics, 'errors': list(self.metrics['errors'])},
        }
