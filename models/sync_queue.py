from sqlalchemy import Column, Integer, String, Enum, DateTime, Text, Index
from core.clock import utcnow
from models.base import Base, JSONType, SyncOperation, SyncItemState


class SyncQueueItem(Base):
    """
    One pending synchronization action.

    Purpose:
    - Durable retry queue for transient platform failures
    - Permanent record of items that exhausted their attempts

    Design:
    - Created when a sync attempt fails transiently (attempt_count starts at 1)
    - Deleted when a retry succeeds
    - Kept with state FAILED once attempts reach the configured maximum
    - IN_FLIGHT rows found at startup are reset to PENDING
    """
    __tablename__ = "sync_queue_items"

    id = Column(Integer, primary_key=True, autoincrement=True)

    operation = Column(Enum(SyncOperation), nullable=False)
    target_key = Column(String(500), nullable=False)
    payload = Column(JSONType, nullable=True)

    state = Column(Enum(SyncItemState), nullable=False, default=SyncItemState.PENDING, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_sync_queue_due", "state", "next_attempt_at"),
        Index("idx_sync_queue_target", "operation", "target_key"),
    )
