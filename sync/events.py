"""
Typed lifecycle events published by the sync coordinator
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol
import enum
import logging

from core.clock import utcnow

logger = logging.getLogger(__name__)


class SyncEventType(str, enum.Enum):
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    ARTICLE_CREATED = "article_created"
    ARTICLE_UPDATED = "article_updated"
    ARTICLE_ARCHIVED = "article_archived"
    ARTICLE_FLAGGED = "article_flagged"
    WEBHOOK_REJECTED = "webhook_rejected"


@dataclass(frozen=True)
class SyncEvent:
    type: SyncEventType
    slug: Optional[str] = None
    external_id: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


class SyncObserver(Protocol):
    async def on_sync_event(self, event: SyncEvent) -> None:
        ...


class SyncEventBus:
    """Fan events out to registered observers; observer failures are logged, never raised"""

    def __init__(self):
        self._observers: List[SyncObserver] = []

    def subscribe(self, observer: SyncObserver):
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: SyncObserver):
        if observer in self._observers:
            self._observers.remove(observer)

    async def publish(self, event: SyncEvent):
        logger.debug(f"Sync event {event.type.value} slug={event.slug} external_id={event.external_id}")
        for observer in list(self._observers):
            try:
                await observer.on_sync_event(event)
            except Exception as e:
                logger.error(
                    f"Sync observer {type(observer).__name__} failed on {event.type.value}: {e}",
                    extra={"error_context": {"event": event.type.value}}
                )
