"""Change Data Capture (CDC) pipeline for the order change log"""

from .base import (
    CDCError,
    CDCPositionError,
    CDCSetupError,
    CDCStreamError,
    ChangeEvent,
    ChangeOperation,
    ChangeRecord,
    ChangeRecordSource,
    EntityStore,
    encode_message,
)
from .cursor import CursorTracker
from .normalizer import EventNormalizer
from .retention import RetentionSweeper
from .poller import ChangePoller

__all__ = [
    "CDCError",
    "CDCPositionError",
    "CDCSetupError",
    "CDCStreamError",
    "ChangeEvent",
    "ChangeOperation",
    "ChangeRecord",
    "ChangeRecordSource",
    "EntityStore",
    "encode_message",
    "CursorTracker",
    "EventNormalizer",
    "RetentionSweeper",
    "ChangePoller",
]
