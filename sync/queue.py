"""
Durable retry queue for synchronization actions.

Items live in the `sync_queue_items` table, so pending retries survive a
restart. Only the SyncCoordinator mutates the queue.

State machine:
    pending -> in_flight -> (deleted on success | retry_scheduled | failed)
    retry_scheduled -> in_flight (when due)
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
import logging

from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.clock import utcnow
from core.config import settings
from models.base import SyncItemState, SyncOperation
from models.sync_queue import SyncQueueItem

logger = logging.getLogger(__name__)

_ACTIVE_STATES = (SyncItemState.PENDING, SyncItemState.RETRY_SCHEDULED, SyncItemState.IN_FLIGHT)
_DUE_STATES = (SyncItemState.PENDING, SyncItemState.RETRY_SCHEDULED)


class QueuedItem(BaseModel):
    """Read-only view of a queue row"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    operation: SyncOperation
    target_key: str
    payload: Optional[Dict[str, Any]] = None
    state: SyncItemState
    attempt_count: int
    next_attempt_at: datetime
    last_error: Optional[str] = None


def backoff_delay(attempts: int, base_delay: float, max_delay: float) -> float:
    """Delay before the next attempt after `attempts` failed ones"""
    exponent = max(attempts - 1, 0)
    return min(base_delay * (2 ** exponent), max_delay)


class RetryQueue:
    """
    Database-backed queue with exponential backoff and a hard attempt bound.

    The failed call that caused an enqueue counts as attempt 1. After
    `max_attempts` total attempts the item becomes FAILED and is never
    retried automatically.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.session_maker = session_maker
        self.max_attempts = max_attempts if max_attempts is not None else settings.SYNC_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else settings.SYNC_BASE_DELAY_SECONDS
        self.max_delay = max_delay if max_delay is not None else settings.SYNC_MAX_DELAY_SECONDS
        self.clock = clock

    def delay_for(self, attempts: int) -> float:
        return backoff_delay(attempts, self.base_delay, self.max_delay)

    def _state_after(self, attempts: int) -> SyncItemState:
        return SyncItemState.FAILED if attempts >= self.max_attempts else SyncItemState.RETRY_SCHEDULED

    async def enqueue(
        self,
        operation: SyncOperation,
        target_key: str,
        payload: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ) -> QueuedItem:
        """
        Queue a transiently failed action.

        An active item for the same operation and target is reused rather
        than duplicated; the reuse counts as another attempt, so its backoff
        grows and it fails once max_attempts is reached.
        """
        now = self.clock()
        async with self.session_maker() as session:
            existing = (await session.execute(
                select(SyncQueueItem).where(
                    SyncQueueItem.operation == operation,
                    SyncQueueItem.target_key == target_key,
                    SyncQueueItem.state.in_(_ACTIVE_STATES),
                )
            )).scalars().first()

            if existing is not None:
                attempts = existing.attempt_count + 1
                existing.payload = payload
                existing.attempt_count = attempts
                existing.state = self._state_after(attempts)
                existing.next_attempt_at = now + timedelta(seconds=self.delay_for(attempts))
                existing.last_error = error or existing.last_error
                existing.updated_at = now
                item = existing
            else:
                attempts = 1
                item = SyncQueueItem(
                    operation=operation,
                    target_key=target_key,
                    payload=payload,
                    attempt_count=attempts,
                    state=self._state_after(attempts),
                    next_attempt_at=now + timedelta(seconds=self.delay_for(attempts)),
                    last_error=error,
                    created_at=now,
                    updated_at=now,
                )
                session.add(item)

            await session.commit()
            await session.refresh(item)
            logger.info(
                f"Queued {operation.value} for {target_key} "
                f"(state={item.state.value}, next_attempt_at={item.next_attempt_at})"
            )
            return QueuedItem.model_validate(item)

    async def record_failure(
        self,
        operation: SyncOperation,
        target_key: str,
        payload: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ) -> QueuedItem:
        """Record a permanently failed action (non-retryable error)"""
        now = self.clock()
        async with self.session_maker() as session:
            item = SyncQueueItem(
                operation=operation,
                target_key=target_key,
                payload=payload,
                attempt_count=1,
                state=SyncItemState.FAILED,
                next_attempt_at=now,
                last_error=error,
                created_at=now,
                updated_at=now,
            )
            session.add(item)
            await session.commit()
            await session.refresh(item)
            logger.warning(f"Recorded failed {operation.value} for {target_key}: {error}")
            return QueuedItem.model_validate(item)

    async def claim_due(self, limit: Optional[int] = None) -> List[QueuedItem]:
        """Move every due item to IN_FLIGHT and return them"""
        now = self.clock()
        async with self.session_maker() as session:
            query = (
                select(SyncQueueItem)
                .where(
                    SyncQueueItem.state.in_(_DUE_STATES),
                    SyncQueueItem.next_attempt_at <= now,
                )
                .order_by(SyncQueueItem.next_attempt_at, SyncQueueItem.id)
            )
            if limit is not None:
                query = query.limit(limit)

            items = (await session.execute(query)).scalars().all()
            for item in items:
                item.state = SyncItemState.IN_FLIGHT
                item.updated_at = now
            await session.commit()
            return [QueuedItem.model_validate(item) for item in items]

    async def mark_succeeded(self, item_id: int):
        async with self.session_maker() as session:
            await session.execute(delete(SyncQueueItem).where(SyncQueueItem.id == item_id))
            await session.commit()

    async def mark_failed(self, item_id: int, error: str, retryable: bool = True) -> SyncItemState:
        """Count a failed attempt and schedule the next one, or give up"""
        now = self.clock()
        async with self.session_maker() as session:
            item = await session.get(SyncQueueItem, item_id)
            if item is None:
                return SyncItemState.FAILED

            item.attempt_count += 1
            item.last_error = error
            item.updated_at = now

            if not retryable or item.attempt_count >= self.max_attempts:
                item.state = SyncItemState.FAILED
                logger.warning(
                    f"Giving up on {item.operation.value} for {item.target_key} "
                    f"after {item.attempt_count} attempts: {error}"
                )
            else:
                delay = self.delay_for(item.attempt_count)
                item.state = SyncItemState.RETRY_SCHEDULED
                item.next_attempt_at = now + timedelta(seconds=delay)
                logger.info(
                    f"Retry {item.attempt_count}/{self.max_attempts} for {item.target_key} "
                    f"scheduled in {delay:.1f}s"
                )

            state = item.state
            await session.commit()
            return state

    async def recover_in_flight(self) -> int:
        """Reset items left IN_FLIGHT by a crashed process"""
        async with self.session_maker() as session:
            result = await session.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.state == SyncItemState.IN_FLIGHT)
                .values(state=SyncItemState.PENDING, updated_at=self.clock())
            )
            await session.commit()
            recovered = result.rowcount or 0
        if recovered:
            logger.warning(f"Recovered {recovered} in-flight sync items")
        return recovered

    async def counts(self) -> Dict[str, int]:
        async with self.session_maker() as session:
            rows = (await session.execute(
                select(SyncQueueItem.state, func.count()).group_by(SyncQueueItem.state)
            )).all()
        by_state = {state: count for state, count in rows}
        pending = sum(by_state.get(state, 0) for state in _ACTIVE_STATES)
        failed = by_state.get(SyncItemState.FAILED, 0)
        return {"pending": pending, "failed": failed, "total": pending + failed}

    async def list_items(self, state: Optional[SyncItemState] = None) -> List[QueuedItem]:
        query = select(SyncQueueItem).order_by(SyncQueueItem.id)
        if state is not None:
            query = query.where(SyncQueueItem.state == state)
        async with self.session_maker() as session:
            items = (await session.execute(query)).scalars().all()
        return [QueuedItem.model_validate(item) for item in items]

    async def clear(self, include_failed: bool = False) -> int:
        states = list(_ACTIVE_STATES)
        if include_failed:
            states.append(SyncItemState.FAILED)
        async with self.session_maker() as session:
            result = await session.execute(delete(SyncQueueItem).where(SyncQueueItem.state.in_(states)))
            await session.commit()
        logger.info(f"Cleared {result.rowcount or 0} sync queue items")
        return result.rowcount or 0
