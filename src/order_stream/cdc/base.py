"""Base classes and interfaces for the order change feed"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ChangeOperation(Enum):
    """Types of captured row operations"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeRecord:
    """
    One row of the change log as written by the capture triggers

    Payloads are kept raw: depending on the driver they arrive as dicts,
    JSON text or bytes, and the normalizer decides what is usable.
    """
    id: int
    entity_id: Optional[int]
    operation: Union[ChangeOperation, str]
    before: Any = None
    after: Any = None
    occurred_at: Optional[Union[datetime, str]] = None
    delivered: bool = False

    def __str__(self) -> str:
        op = self.operation.value if isinstance(self.operation, ChangeOperation) else self.operation
        return f"ChangeRecord(#{self.id} {op} order={self.entity_id})"


@dataclass
class ChangeEvent:
    """
    Canonical change event ready for transport

    Built from exactly one ChangeRecord. `sequence_id` is the record id and
    is the only ordering authority.
    """
    operation: ChangeOperation
    entity_id: Any
    sequence_id: int
    occurred_at: Optional[Union[datetime, str]] = None

    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None

    table: str = "orders"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"ChangeEvent({self.operation.value} on {self.table}[{self.entity_id}] "
            f"change #{self.sequence_id})"
        )

    @property
    def data(self) -> Optional[Dict[str, Any]]:
        """Current state for INSERT/UPDATE, last known state for DELETE"""
        if self.operation == ChangeOperation.DELETE:
            return self.before
        return self.after

    def get_identifier(self) -> str:
        """Key consumers can use to make re-delivery idempotent"""
        return f"{self.table}:{self.entity_id}:{self.operation.value}:{self.sequence_id}"

    def to_message(self) -> Dict[str, Any]:
        """Subscriber-facing message for this event"""
        message: Dict[str, Any] = {
            "type": self.operation.value,
            "table": self.table,
            "timestamp": format_timestamp(self.occurred_at),
            "changeId": self.sequence_id,
        }
        if self.operation == ChangeOperation.UPDATE:
            message["oldData"] = self.before
            message["newData"] = self.after
        message["data"] = self.data
        return message


def format_timestamp(value: Optional[Union[datetime, str]]) -> Optional[str]:
    """Render a driver timestamp as ISO-8601 text"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def json_default(value: Any) -> Any:
    """`json.dumps` hook for driver values: dates as ISO-8601, decimals as numbers"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def encode_message(payload: Dict[str, Any]) -> str:
    """Serialize a subscriber-facing message"""
    return json.dumps(payload, default=json_default)


class ChangeRecordSource(ABC):
    """
    Read/write contract of the durable change log

    Implementations are blocking; the pipeline calls them from worker
    threads with a bounded timeout.
    """

    @abstractmethod
    def fetch_undelivered(self, after_id: int, limit: int) -> List[ChangeRecord]:
        """
        Fetch undelivered records with id greater than `after_id`

        Args:
            after_id: Current cursor position
            limit: Maximum number of records to return

        Returns:
            Records ordered ascending by id
        """
        pass

    @abstractmethod
    def mark_delivered(self, change_id: int) -> bool:
        """
        Flag a record as delivered (idempotent)

        Returns:
            True when the flag is durably set
        """
        pass

    @abstractmethod
    def max_delivered_id(self) -> int:
        """Highest delivered record id, 0 if none"""
        pass

    @abstractmethod
    def delete_delivered_older_than(self, retention_count: int) -> bool:
        """
        Delete delivered records beyond the newest `retention_count` ones

        Best-effort; returns False when nothing could be deleted.
        """
        pass


class EntityStore(ABC):
    """Read contract of the entity table used for subscriber snapshots"""

    @abstractmethod
    def list_all(self) -> List[Dict[str, Any]]:
        """Return every current entity"""
        pass


class CDCError(Exception):
    """Base exception for change feed errors"""
    pass


class CDCSetupError(CDCError):
    """Error during pipeline or schema setup"""
    pass


class CDCStreamError(CDCError):
    """Error while reading or delivering the change feed"""
    pass


class CDCPositionError(CDCError):
    """Error related to the delivery cursor"""
    pass
