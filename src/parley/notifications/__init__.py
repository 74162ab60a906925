"""Question notifications and their persistence."""

from parley.notifications.registry import Notification, NotificationRegistry, NotificationStatus
from parley.notifications.store import JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "Notification",
    "NotificationRegistry",
    "NotificationStatus",
]
