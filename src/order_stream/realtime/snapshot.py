"""Initial snapshot for newly joined subscribers"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List

from loguru import logger

from ..cdc.base import CDCStreamError, EntityStore, encode_message
from .broadcaster import Broadcaster, Subscriber, SubscriberConnection


def initial_data_message(entities: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "type": "INITIAL_DATA",
        "data": entities,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class SnapshotProvider:
    """
    Brings a new connection up to date before live delivery starts

    The connection is registered before the snapshot is read, so a change
    committed meanwhile is either already in the snapshot or waiting in the
    connection's queue (possibly both; consumers must be idempotent).
    """

    def __init__(self, store: EntityStore, broadcaster: Broadcaster, timeout: float = 5.0):
        self.store = store
        self.broadcaster = broadcaster
        self.timeout = timeout

    async def attach(self, connection: SubscriberConnection) -> Subscriber:
        """
        Register a connection, send it INITIAL_DATA and start live delivery

        Raises:
            CDCStreamError: if the connection was dropped (buffer full)
                before live delivery could start
            Exception: if the snapshot could not be read or sent; the
                connection has been removed in that case
        """
        subscriber = await self.broadcaster.register(connection)

        try:
            entities = await asyncio.wait_for(
                asyncio.to_thread(self.store.list_all),
                timeout=self.timeout
            )
        except Exception as e:
            logger.error(f"Error sending initial data: {e}")
            await self.broadcaster.unregister(subscriber, f"snapshot failed: {e}")
            raise

        if not subscriber.is_open:
            raise CDCStreamError(f"Subscriber {subscriber.id} was dropped before its snapshot was sent")

        try:
            await subscriber.send_now(encode_message(initial_data_message(entities)))
        except Exception as e:
            logger.error(f"Error sending initial data to {subscriber.id}: {e}")
            await self.broadcaster.unregister(subscriber, f"snapshot send failed: {e}")
            raise

        if not subscriber.is_open:
            raise CDCStreamError(f"Subscriber {subscriber.id} was dropped while its snapshot was being sent")

        logger.debug(f"Sent snapshot of {len(entities)} orders to {subscriber.id}")
        subscriber.start()
        return subscriber
