from sync.conflict import ConflictResolution, Side, resolve_conflict
from sync.coordinator import SyncCoordinator
from sync.events import SyncEvent, SyncEventBus, SyncEventType, SyncObserver
from sync.queue import QueuedItem, RetryQueue, backoff_delay

__all__ = [
    "ConflictResolution",
    "Side",
    "resolve_conflict",
    "SyncCoordinator",
    "SyncEvent",
    "SyncEventBus",
    "SyncEventType",
    "SyncObserver",
    "QueuedItem",
    "RetryQueue",
    "backoff_delay",
]
