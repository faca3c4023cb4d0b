"""
Sync coordinator - keeps the content store and the platform eventually consistent.

This module provides:
- Signed inbound webhooks (publish / update / delete)
- Outbound push of local articles
- Conflict resolution by configurable policy
- A durable retry queue drained on a periodic tick
- Typed lifecycle events for observers
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional
import asyncio
import logging

from pydantic import ValidationError as PydanticValidationError

from core.clock import utcnow
from core.config import settings
from core.exceptions import (
    ConnectionFailure,
    ContentSyncException,
    ConversionError,
    PlatformAPIError,
    RecordNotFoundError,
    ResourceNotFoundError,
    ValidationError,
    WebhookSignatureError,
    is_retryable,
)
from core.security import verify_signature
from hashnode.client import PlatformClient
from migration.engine import ensure_default_author, import_post
from migration.transformers import PostTransformer
from models.base import ArticleStatus, ConflictPolicy, EntityType, SyncItemState, SyncOperation
from repository.content_repository import ContentRepository
from schemas.platform import ExternalPost, WebhookEvent, WebhookPayload
from schemas.results import DrainResult, SyncOutcome, SyncStatus, WebhookResult
from sync.conflict import resolve_conflict
from sync.events import SyncEvent, SyncEventBus, SyncEventType
from sync.queue import QueuedItem, RetryQueue
from sync.scheduler import SyncScheduler

logger = logging.getLogger(__name__)


def _queued_outcome(item: QueuedItem) -> SyncOutcome:
    if item.state == SyncItemState.FAILED:
        return SyncOutcome.FAILED
    return SyncOutcome.RETRY_SCHEDULED


class SyncCoordinator:
    """
    Bidirectional synchronization between the content store and the platform.

    Purpose:
    - Apply platform changes announced by webhooks
    - Push local changes to the platform
    - Retry transient failures with exponential backoff

    Design:
    - Every queue mutation and record write happens under one asyncio.Lock
    - Invalid webhook signatures are rejected before the body is parsed
    - Deleted posts are archived locally, never hard-deleted
    - The drain loop is an APScheduler interval job (one tick at a time)
    """

    def __init__(
        self,
        repository: ContentRepository,
        client: PlatformClient,
        queue: RetryQueue,
        policy: Optional[ConflictPolicy] = None,
        webhook_secret: Optional[str] = None,
        event_bus: Optional[SyncEventBus] = None,
        transformer: Optional[PostTransformer] = None,
        clock: Callable[[], datetime] = utcnow,
        interval_seconds: Optional[float] = None
    ):
        self.repository = repository
        self.client = client
        self.queue = queue
        self.policy = ConflictPolicy(policy or settings.SYNC_CONFLICT_POLICY)
        self.webhook_secret = settings.HASHNODE_WEBHOOK_SECRET if webhook_secret is None else webhook_secret
        self.events = event_bus or SyncEventBus()
        self.transformer = transformer or PostTransformer()
        self.clock = clock
        self.scheduler = SyncScheduler(self.drain_queue, interval_seconds)

        self._lock = asyncio.Lock()
        self._last_sync: Optional[datetime] = None
        self._total_operations = 0
        self._rejected_webhooks = 0
        self._flagged_conflicts = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Recover crashed in-flight items and start the periodic drain"""
        await self.recover_queue()
        self.scheduler.start()
        logger.info(f"Sync coordinator started (policy={self.policy.value})")

    async def stop(self):
        self.scheduler.stop()
        logger.info("Sync coordinator stopped")

    @property
    def is_running(self) -> bool:
        return self.scheduler.running

    async def recover_queue(self) -> int:
        """Reset items left in flight by a crashed process"""
        async with self._lock:
            return await self.queue.recover_in_flight()

    async def clear_queue(self, include_failed: bool = False) -> int:
        """Drop queued items; waits for a running drain to finish first"""
        async with self._lock:
            return await self.queue.clear(include_failed=include_failed)

    async def get_status(self) -> SyncStatus:
        counts = await self.queue.counts()
        return SyncStatus(
            is_running=self.is_running,
            last_sync=self._last_sync,
            pending_operations=counts["pending"],
            failed_operations=counts["failed"],
            total_operations=self._total_operations,
            rejected_webhooks=self._rejected_webhooks,
            flagged_conflicts=self._flagged_conflicts,
        )

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_inbound_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Verify and apply one webhook delivery.

        Raises:
            WebhookSignatureError: Missing or invalid signature (nothing processed)
            ValidationError: Signed body is not a valid webhook payload
        """
        if not verify_signature(self.webhook_secret, raw_body, signature):
            self._rejected_webhooks += 1
            logger.warning("Rejected webhook with invalid signature")
            await self.events.publish(SyncEvent(SyncEventType.WEBHOOK_REJECTED, error="invalid signature"))
            raise WebhookSignatureError(
                "Invalid webhook signature",
                context={"signature_present": bool(signature)}
            )

        try:
            payload = WebhookPayload.model_validate_json(raw_body)
        except PydanticValidationError as e:
            raise ValidationError("Malformed webhook payload", original_exception=e)

        logger.info(f"Webhook {payload.event.value} for post {payload.post.id}")

        async with self._lock:
            self._total_operations += 1
            if payload.event == WebhookEvent.CONTENT_DELETED:
                result = await self._archive(payload)
            else:
                result = await self._apply_webhook(payload)
            self._last_sync = self.clock()
            return result

    async def _apply_webhook(self, payload: WebhookPayload) -> WebhookResult:
        external_id = payload.post.id
        event = payload.event.value
        queue_payload = {"event": event, "timestamp": payload.timestamp.isoformat()}

        try:
            post = await self.client.get_post(external_id)
        except (PlatformAPIError, ConnectionFailure) as e:
            if is_retryable(e):
                item = await self.queue.enqueue(SyncOperation.PULL, external_id, queue_payload, e.summary())
                return WebhookResult(
                    event=event, external_id=external_id,
                    outcome=_queued_outcome(item), detail=e.summary()
                )
            await self.queue.record_failure(SyncOperation.PULL, external_id, queue_payload, e.summary())
            return WebhookResult(
                event=event, external_id=external_id, outcome=SyncOutcome.FAILED, detail=e.summary()
            )

        if post is None:
            return WebhookResult(
                event=event, external_id=external_id,
                outcome=SyncOutcome.IGNORED, detail="post no longer exists on the platform"
            )

        outcome, slug, detail = await self._pull(post, fallback_ts=payload.timestamp)
        return WebhookResult(event=event, external_id=external_id, outcome=outcome, slug=slug, detail=detail)

    async def _find_local(self, external_id: str, slug: Optional[str]) -> Optional[Dict[str, Any]]:
        local = await self.repository.find_article_by_external_id(external_id)
        if local is None and slug:
            local = await self.repository.find_by_natural_key(EntityType.ARTICLE, slug)
        return local

    async def _pull(self, post: ExternalPost, fallback_ts: Optional[datetime] = None):
        """Create or update the local copy of a platform post"""
        if not post.title or not post.slug:
            raise ValidationError(
                "Platform post is missing title or slug",
                context={"external_id": post.id}
            )

        local = await self._find_local(post.id, post.slug)

        if local is None:
            author_email = await ensure_default_author(self.repository)
            created = await self.repository.with_transaction(
                lambda repo: import_post(repo, post, author_email, self.transformer)
            )
            await self.events.publish(SyncEvent(SyncEventType.ARTICLE_CREATED, slug=created["slug"], external_id=post.id))
            logger.info(f"Created {created['slug']} from platform post {post.id}")
            return SyncOutcome.SUCCEEDED, created["slug"], None

        resolution = resolve_conflict(local.get("updated_at"), post.updated_at or fallback_ts, self.policy)

        if resolution.flagged:
            await self.repository.update(EntityType.ARTICLE, local["slug"], {
                "needs_review": True,
                "review_reason": f"Platform post {post.id} diverged: {resolution.reason}",
                "updated_at": local["updated_at"],
            })
            self._flagged_conflicts += 1
            await self.events.publish(SyncEvent(SyncEventType.ARTICLE_FLAGGED, slug=local["slug"], external_id=post.id))
            logger.warning(f"Conflict on {local['slug']} flagged for review")
            return SyncOutcome.FLAGGED, local["slug"], resolution.reason

        if not resolution.apply_external:
            logger.info(f"Kept local copy of {local['slug']}: {resolution.reason}")
            return SyncOutcome.IGNORED, local["slug"], resolution.reason

        updated = await self.repository.with_transaction(
            lambda repo: self._apply_remote(repo, local, post)
        )
        await self.events.publish(SyncEvent(SyncEventType.ARTICLE_UPDATED, slug=updated["slug"], external_id=post.id))
        logger.info(f"Updated {updated['slug']} from platform post {post.id}")
        return SyncOutcome.SUCCEEDED, updated["slug"], resolution.reason

    async def _apply_remote(self, repo: ContentRepository, local: Dict[str, Any], post: ExternalPost):
        for tag in self.transformer.tag_records(post):
            await repo.ensure(EntityType.TAG, tag["slug"], tag)
        series = self.transformer.series_record(post)
        if series is not None:
            await repo.ensure(EntityType.SERIES, series["slug"], series)

        data = self.transformer.to_local(post)
        data.pop("author_email")
        data["needs_review"] = False
        data["review_reason"] = None
        return await repo.update(EntityType.ARTICLE, local["slug"], data)

    async def _archive(self, payload: WebhookPayload) -> WebhookResult:
        external_id = payload.post.id
        event = payload.event.value
        local = await self._find_local(external_id, payload.post.slug)
        if local is None:
            return WebhookResult(
                event=event, external_id=external_id,
                outcome=SyncOutcome.IGNORED, detail="no local copy"
            )

        await self.repository.update(EntityType.ARTICLE, local["slug"], {
            "status": ArticleStatus.ARCHIVED,
            "external_id": None,
        })
        await self.events.publish(SyncEvent(SyncEventType.ARTICLE_ARCHIVED, slug=local["slug"], external_id=external_id))
        logger.info(f"Archived {local['slug']} after platform deletion of {external_id}")
        return WebhookResult(
            event=event, external_id=external_id, outcome=SyncOutcome.SUCCEEDED, slug=local["slug"]
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def push_outbound(self, slug: str) -> SyncOutcome:
        """
        Send a local article to the platform.

        Raises:
            RecordNotFoundError: No local article with this slug
        """
        async with self._lock:
            self._total_operations += 1
            try:
                await self._push(slug)
                outcome = SyncOutcome.SUCCEEDED
            except RecordNotFoundError:
                raise
            except ConversionError as e:
                await self.queue.record_failure(SyncOperation.PUSH, slug, None, e.summary())
                outcome = SyncOutcome.FAILED
                logger.warning(f"Push of {slug} failed: {e.summary()}")
            except (PlatformAPIError, ConnectionFailure) as e:
                if is_retryable(e):
                    item = await self.queue.enqueue(SyncOperation.PUSH, slug, None, e.summary())
                    outcome = _queued_outcome(item)
                else:
                    await self.queue.record_failure(SyncOperation.PUSH, slug, None, e.summary())
                    outcome = SyncOutcome.FAILED
                logger.warning(f"Push of {slug} {outcome.value}: {e.summary()}")
            self._last_sync = self.clock()
            return outcome

    async def _push(self, slug: str):
        article = await self.repository.find_by_natural_key(EntityType.ARTICLE, slug)
        if article is None:
            raise RecordNotFoundError(f"article '{slug}' not found", context={"entity": "article", "key": slug})

        tags = []
        for tag_slug in article.get("tag_slugs") or []:
            tag = await self.repository.find_by_natural_key(EntityType.TAG, tag_slug)
            if tag is not None:
                tags.append(tag)
        series = None
        if article.get("series_slug"):
            series = await self.repository.find_by_natural_key(EntityType.SERIES, article["series_slug"])

        post_input = self.transformer.to_external(article, tags, series)

        if article.get("external_id"):
            await self.client.update_post(article["external_id"], post_input)
            logger.info(f"Updated platform post {article['external_id']} from {slug}")
        else:
            created = await self.client.create_post(post_input)
            await self.repository.update(EntityType.ARTICLE, slug, {
                "external_id": created.id,
                "updated_at": article["updated_at"],
            })
            logger.info(f"Created platform post {created.id} from {slug}")

        await self.events.publish(SyncEvent(
            SyncEventType.ARTICLE_UPDATED, slug=slug, external_id=article.get("external_id"),
            data={"direction": "push"}
        ))

    # ------------------------------------------------------------------
    # Retry queue
    # ------------------------------------------------------------------

    async def drain_queue(self) -> DrainResult:
        """One tick: attempt every due item at most once"""
        result = DrainResult()
        async with self._lock:
            items = await self.queue.claim_due()
            if not items:
                return result

            await self.events.publish(SyncEvent(SyncEventType.SYNC_STARTED, data={"items": len(items)}))

            for item in items:
                result.attempted += 1
                self._total_operations += 1
                try:
                    await self._attempt(item)
                    await self.queue.mark_succeeded(item.id)
                    result.succeeded += 1
                except Exception as e:
                    message = e.summary() if isinstance(e, ContentSyncException) else str(e)
                    retryable = is_retryable(e) or isinstance(e, ConnectionFailure)
                    state = await self.queue.mark_failed(item.id, message, retryable=retryable)
                    if state == SyncItemState.FAILED:
                        result.failed += 1
                    else:
                        result.rescheduled += 1

            self._last_sync = self.clock()

        event_type = SyncEventType.SYNC_FAILED if result.failed else SyncEventType.SYNC_COMPLETED
        await self.events.publish(SyncEvent(event_type, data=result.model_dump()))
        logger.info(
            f"Drained sync queue: attempted={result.attempted}, succeeded={result.succeeded}, "
            f"rescheduled={result.rescheduled}, failed={result.failed}"
        )
        return result

    async def _attempt(self, item: QueuedItem):
        if item.operation == SyncOperation.PUSH:
            await self._push(item.target_key)
            return

        post = await self.client.get_post(item.target_key)
        if post is None:
            raise ResourceNotFoundError(
                f"Post {item.target_key} not found on the platform",
                context={"post_id": item.target_key}
            )
        await self._pull(post)
