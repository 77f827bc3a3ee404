"""
Shared fixtures: an in-memory change log and fake subscriber connections.
"""

import asyncio
import json
import threading
from typing import Any, Dict, List, Optional

import pytest

from order_stream.cdc.base import ChangeRecord, ChangeRecordSource, EntityStore


class FakeChangeLog(ChangeRecordSource, EntityStore):
    """In-memory change log plus entity table."""

    def __init__(self):
        self.records: Dict[int, ChangeRecord] = {}
        self.orders: Dict[int, Dict[str, Any]] = {}
        self.fail_fetch = False
        self.fail_max = False
        self.fail_delete = False
        self.mark_failures: Dict[int, int] = {}
        self.mark_calls: List[int] = []
        self._lock = threading.Lock()

    def add(
        self,
        record_id: int,
        operation: str,
        entity_id: Optional[int],
        before: Any = None,
        after: Any = None,
        delivered: bool = False,
    ) -> ChangeRecord:
        record = ChangeRecord(
            id=record_id,
            entity_id=entity_id,
            operation=operation,
            before=before,
            after=after,
            occurred_at="2024-01-15 10:30:00",
            delivered=delivered,
        )
        with self._lock:
            self.records[record_id] = record
        return record

    def fetch_undelivered(self, after_id: int, limit: int) -> List[ChangeRecord]:
        if self.fail_fetch:
            raise ConnectionError("lost connection to change log")
        with self._lock:
            pending = [
                r for _, r in sorted(self.records.items())
                if r.id > after_id and not r.delivered
            ]
        return pending[:limit]

    def mark_delivered(self, change_id: int) -> bool:
        self.mark_calls.append(change_id)
        remaining = self.mark_failures.get(change_id, 0)
        if remaining:
            self.mark_failures[change_id] = remaining - 1
            raise ConnectionError(f"could not mark {change_id}")
        with self._lock:
            self.records[change_id].delivered = True
        return True

    def max_delivered_id(self) -> int:
        if self.fail_max:
            raise ConnectionError("change log unreachable")
        delivered = [r.id for r in self.records.values() if r.delivered]
        return max(delivered) if delivered else 0

    def delete_delivered_older_than(self, retention_count: int) -> bool:
        if self.fail_delete:
            raise ConnectionError("delete failed")
        with self._lock:
            delivered = sorted(r.id for r in self.records.values() if r.delivered)
            doomed = delivered[:-retention_count] if retention_count else delivered
            for record_id in doomed:
                del self.records[record_id]
        return bool(doomed)

    def list_all(self) -> List[Dict[str, Any]]:
        return [dict(order) for order in self.orders.values()]


class FakeConnection:
    """Subscriber transport that records what it was sent."""

    def __init__(self, hang: bool = False, fail: bool = False):
        self.hang = hang
        self.fail = fail
        self.messages: List[Dict[str, Any]] = []
        self.closed = False

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        if self.hang:
            await asyncio.Event().wait()
        self.messages.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.closed = True

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]

    def change_ids(self) -> List[int]:
        return [m["changeId"] for m in self.messages if "changeId" in m]


async def wait_for_messages(connection: FakeConnection, count: int, timeout: float = 2.0) -> None:
    """Wait until `connection` has received at least `count` messages."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while len(connection.messages) < count:
        if loop.time() > deadline:
            raise AssertionError(
                f"expected {count} messages, got {len(connection.messages)}: {connection.types()}"
            )
        await asyncio.sleep(0.01)


def order(order_id: int, status: str = "pending", name: str = "Alice", product: str = "Laptop") -> Dict[str, Any]:
    return {
        "id": order_id,
        "customer_name": name,
        "product_name": product,
        "status": status,
        "updated_at": "2024-01-15 10:30:00",
        "created_at": "2024-01-15 10:00:00",
    }


@pytest.fixture
def change_log():
    return FakeChangeLog()
