"""Real-time delivery to subscriber connections"""

from .broadcaster import Broadcaster, Subscriber, SubscriberConnection, SubscriberState
from .snapshot import SnapshotProvider, initial_data_message

__all__ = [
    "Broadcaster",
    "Subscriber",
    "SubscriberConnection",
    "SubscriberState",
    "SnapshotProvider",
    "initial_data_message",
]
