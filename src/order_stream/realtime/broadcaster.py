"""Fan-out of change events to live subscriber connections"""

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Union

from loguru import logger

from ..cdc.base import CDCStreamError, ChangeEvent, encode_message


class SubscriberConnection(Protocol):
    """Transport handle; a FastAPI WebSocket satisfies it"""

    async def send_text(self, data: str) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


class SubscriberState(Enum):
    """Liveness of a subscriber connection"""
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class Subscriber:
    """
    One live connection plus its bounded outbound queue

    Messages are queued by the broadcaster and written by a dedicated
    writer task, so a slow peer only ever fills its own queue.
    """

    def __init__(
        self,
        connection: SubscriberConnection,
        broadcaster: "Broadcaster",
        queue_size: int = 100,
        send_timeout: float = 5.0
    ):
        self.id = uuid.uuid4().hex[:12]
        self.connection = connection
        self.broadcaster = broadcaster
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.send_timeout = send_timeout
        self.state = SubscriberState.OPEN
        self.connected_at = datetime.now()
        self.messages_sent = 0
        self._writer: Optional[asyncio.Task] = None
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"Subscriber({self.id}, {self.state.value})"

    @property
    def is_open(self) -> bool:
        return self.state == SubscriberState.OPEN

    def offer(self, message: str) -> bool:
        """Queue a message without waiting; False if closed or full"""
        if not self.is_open:
            return False
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            return False
        return True

    async def send_now(self, message: str) -> None:
        """
        Bounded direct send, bypassing the queue

        Holds the send lock, so `close()` waits for an in-flight send.
        """
        async with self._send_lock:
            if self.state == SubscriberState.CLOSED:
                raise CDCStreamError(f"Subscriber {self.id} is closed")
            await asyncio.wait_for(self.connection.send_text(message), timeout=self.send_timeout)
            self.messages_sent += 1

    def start(self) -> None:
        """Start draining queued messages to the connection"""
        if self._writer is None and self.is_open:
            self._writer = asyncio.create_task(self._drain(), name=f"subscriber-{self.id}")

    async def _drain(self) -> None:
        while self.is_open:
            message = await self.queue.get()
            if not self.is_open:
                break
            try:
                await self.send_now(message)
            except Exception as e:
                reason = "send timed out" if isinstance(e, asyncio.TimeoutError) else f"send failed: {e}"
                await self.broadcaster.unregister(self, reason)
                break

    async def close(self) -> None:
        """Stop the writer, then close the transport"""
        if self.state == SubscriberState.CLOSED:
            return
        self.state = SubscriberState.CLOSING

        writer = self._writer
        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

        async with self._send_lock:
            try:
                await asyncio.wait_for(self.connection.close(), timeout=self.send_timeout)
            except Exception as e:
                logger.debug(f"Error closing subscriber {self.id}: {e}")
            self.state = SubscriberState.CLOSED


class Broadcaster:
    """
    Registry of live subscribers and one-to-many publish

    Registration, removal and publish are serialized by one lock; publish
    only enqueues, so it never waits on a connection.
    """

    def __init__(self, queue_size: int = 100, send_timeout: float = 5.0):
        """
        Initialize broadcaster

        Args:
            queue_size: Per-connection outbound buffer, in messages
            send_timeout: Max seconds for a single send
        """
        self.queue_size = queue_size
        self.send_timeout = send_timeout
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

        self.metrics = {
            'published': 0,
            'deliveries': 0,
            'dropped_connections': 0,
        }

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribers(self) -> List[Subscriber]:
        return list(self._subscribers.values())

    async def register(self, connection: SubscriberConnection) -> Subscriber:
        """
        Add a connection to the live set

        Events published from now on are queued for it; nothing is sent
        until `Subscriber.start()` is called.
        """
        subscriber = Subscriber(
            connection,
            self,
            queue_size=self.queue_size,
            send_timeout=self.send_timeout
        )
        async with self._lock:
            self._subscribers[subscriber.id] = subscriber
        logger.info(f"Client connected: {subscriber.id} ({self.subscriber_count} live)")
        return subscriber

    async def unregister(self, subscriber: Subscriber, reason: str = "disconnected") -> None:
        """Remove a connection from the live set and close it"""
        async with self._lock:
            removed = self._subscribers.pop(subscriber.id, None)
            if removed is not None and removed.is_open:
                removed.state = SubscriberState.CLOSING

        if removed is None:
            return

        if reason != "disconnected":
            self.metrics['dropped_connections'] += 1
            logger.warning(f"Dropping subscriber {subscriber.id}: {reason}")
        else:
            logger.info(f"Client disconnected: {subscriber.id}")

        await subscriber.close()

    async def publish(self, event: Union[ChangeEvent, Dict[str, Any]]) -> int:
        """
        Queue one event for every open connection

        Connections whose buffer is full are dropped; the rest still get
        the event.

        Returns:
            Number of connections the event was queued for
        """
        payload = event.to_message() if isinstance(event, ChangeEvent) else event
        message = encode_message(payload)

        delivered = 0
        overflowed = []
        async with self._lock:
            for subscriber in self._subscribers.values():
                if subscriber.offer(message):
                    delivered += 1
                elif subscriber.is_open:
                    overflowed.append(subscriber)

        for subscriber in overflowed:
            await self.unregister(subscriber, "send buffer full")

        self.metrics['published'] += 1
        self.metrics['deliveries'] += delivered

        if isinstance(event, ChangeEvent):
            data = event.data or {}
            logger.info(
                f"{event.operation.value} change → {delivered} clients: "
                f"{data.get('customer_name')}'s {data.get('product_name')}"
            )
        return delivered

    async def close_all(self) -> None:
        """Close every connection (shutdown)"""
        async with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
            for subscriber in subscribers:
                subscriber.state = SubscriberState.CLOSING

        await asyncio.gather(*(s.close() for s in subscribers), return_exceptions=True)
        if subscribers:
            logger.info(f"Closed {len(subscribers)} subscriber connections")
