"""Change stream manager coordinating the poller, fan-out and snapshots"""

import asyncio
from typing import Any, Dict, Optional

from loguru import logger

from .base import CDCSetupError, ChangeRecordSource, EntityStore
from .cursor import CursorTracker
from .normalizer import EventNormalizer
from .poller import ChangePoller
from .retention import RetentionSweeper
from ..realtime.broadcaster import Broadcaster, Subscriber, SubscriberConnection
from ..realtime.snapshot import SnapshotProvider


class ChangeStreamManager:
    """
    Owns the change-capture-and-broadcast pipeline

    The Change Stream Manager:
    - Recovers the delivery cursor and runs the poll loop
    - Attaches subscriber connections (snapshot, then live events)
    - Shuts everything down in order
    - Reports status and change log statistics
    """

    def __init__(
        self,
        source: ChangeRecordSource,
        store: EntityStore,
        poll_interval: float = 0.2,
        batch_size: int = 50,
        query_timeout: float = 5.0,
        retention_count: int = 1000,
        retention_probability: float = 0.1,
        send_queue_size: int = 100,
        send_timeout: float = 5.0,
        table: str = "orders"
    ):
        """
        Initialize change stream manager

        Args:
            source: Change log
            store: Entity table used for snapshots
            poll_interval: Seconds between poll ticks
            batch_size: Max change records per tick
            query_timeout: Max seconds for one store call
            retention_count: Delivered change records to keep
            retention_probability: Share of busy ticks that trim the log
            send_queue_size: Per-connection outbound buffer, in messages
            send_timeout: Max seconds for one send to a connection
            table: Entity table name reported in change messages
        """
        self.source = source
        self.store = store
        self.query_timeout = query_timeout

        self.broadcaster = Broadcaster(queue_size=send_queue_size, send_timeout=send_timeout)
        self.cursor = CursorTracker(source)
        self.sweeper = RetentionSweeper(
            source,
            retention_count=retention_count,
            probability=retention_probability,
            timeout=query_timeout
        )
        self.poller = ChangePoller(
            source,
            self.broadcaster,
            cursor=self.cursor,
            normalizer=EventNormalizer(table=table),
            sweeper=self.sweeper,
            poll_interval=poll_interval,
            batch_size=batch_size,
            query_timeout=query_timeout
        )
        self.snapshots = SnapshotProvider(store, self.broadcaster, timeout=query_timeout)

    @classmethod
    def from_settings(cls, source: ChangeRecordSource, store: EntityStore, settings) -> "ChangeStreamManager":
        return cls(
            source,
            store,
            poll_interval=settings.cdc_poll_interval,
            batch_size=settings.cdc_batch_size,
            query_timeout=settings.cdc_query_timeout,
            retention_count=settings.cdc_retention_count,
            retention_probability=settings.cdc_retention_probability,
            send_queue_size=settings.ws_send_queue_size,
            send_timeout=settings.ws_send_timeout,
        )

    @property
    def is_running(self) -> bool:
        return self.poller.is_running

    async def start(self) -> None:
        """Recover the cursor and start polling; failures are fatal"""
        if self.is_running:
            logger.warning("Change stream already running")
            return

        try:
            await self.poller.initialize()
        except Exception as e:
            logger.error(f"Failed to start change listener: {e}")
            if isinstance(e, CDCSetupError):
                raise
            raise CDCSetupError(f"Failed to start change listener: {e}")

        self.poller.start()
        logger.info("Change listener started successfully")

    async def stop(self) -> None:
        """Stop ticks, let the in-flight tick finish, close all connections"""
        await self.poller.stop()
        await self.broadcaster.close_all()

    async def attach(self, connection: SubscriberConnection) -> Subscriber:
        """Join a new subscriber: snapshot first, then live changes"""
        return await self.snapshots.attach(connection)

    async def detach(self, subscriber: Subscriber) -> None:
        await self.broadcaster.unregister(subscriber)

    def get_status(self) -> Dict[str, Any]:
        """Get status of the poller, fan-out and retention"""
        return {
            'poller': self.poller.get_status(),
            'broadcast': {
                'subscribers': self.broadcaster.subscriber_count,
                'queue_size': self.broadcaster.queue_size,
                'send_timeout': self.broadcaster.send_timeout,
                'metrics': dict(self.broadcaster.metrics),
                'connections': [
                    {
                        'id': s.id,
                        'state': s.state.value,
                        'connected_at': s.connected_at,
                        'queued': s.queue.qsize(),
                        'messages_sent': s.messages_sent,
                    }
                    for s in self.broadcaster.subscribers()
                ],
            },
            'retention': {
                'retention_count': self.sweeper.retention_count,
                'probability': self.sweeper.probability,
                'sweeps': self.sweeper.sweeps,
                'failures': self.sweeper.failures,
            },
        }

    async def get_stats(self) -> Optional[Dict[str, Any]]:
        """Change log counters plus cursor state; None if the store is unreachable"""
        get_change_stats = getattr(self.source, "get_change_stats", None)
        if get_change_stats is None:
            counts: Dict[str, Any] = {}
        else:
            try:
                counts = await asyncio.wait_for(
                    asyncio.to_thread(get_change_stats),
                    timeout=self.query_timeout
                )
            except Exception as e:
                logger.error(f"Error getting stats: {e}")
                return None

        return {
            **counts,
            'lastProcessedId': self.cursor.position,
            'isListening': self.is_running,
        }
