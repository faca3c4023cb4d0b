"""
Integration tests for bidirectional sync
"""

import asyncio
import json
import pytest
from datetime import datetime
from unittest.mock import AsyncMock
from core.clock import utcnow
from core.exceptions import (
    AuthenticationError,
    NetworkError,
    RecordNotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from core.security import compute_signature
from migration.engine import MigrationEngine
from models.base import ConflictPolicy, EntityType, SyncItemState, SyncOperation
from schemas.results import MigrationOptions, SyncOutcome
from sync.coordinator import SyncCoordinator
from sync.events import SyncEventType
from sync.queue import RetryQueue

SECRET = "sync-secret"


class EventRecorder:
    def __init__(self):
        self.events = []

    async def on_sync_event(self, event):
        self.events.append(event)

    @property
    def types(self):
        return [event.type for event in self.events]


def webhook(event: str, post_id: str, slug: str = None, timestamp: str = "2024-06-01T00:00:00Z"):
    body = json.dumps({
        "event": event,
        "post": {"id": post_id, "slug": slug},
        "publication": {"id": "pub-1"},
        "timestamp": timestamp,
    }).encode("utf-8")
    return body, compute_signature(SECRET, body)


@pytest.fixture
def queue(session_maker):
    return RetryQueue(session_maker, max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def make_coordinator(repository, fake_client, queue, recorder):
    def build(policy=ConflictPolicy.NEWEST_WINS):
        coordinator = SyncCoordinator(
            repository, fake_client, queue, policy=policy, webhook_secret=SECRET, interval_seconds=3600
        )
        coordinator.events.subscribe(recorder)
        return coordinator
    return build


@pytest.fixture
def coordinator(make_coordinator):
    return make_coordinator()


async def migrate(repository, client):
    await MigrationEngine(repository, client).migrate(MigrationOptions(batch_size=10))


# ============================================================================
# Inbound webhooks
# ============================================================================

@pytest.mark.asyncio
async def test_invalid_signature_rejected_before_processing(coordinator, repository, recorder):
    body, _ = webhook("content_published", "hn-1", "post-1")

    with pytest.raises(WebhookSignatureError):
        await coordinator.handle_inbound_webhook(body, "sha256=" + "0" * 64)
    with pytest.raises(WebhookSignatureError):
        await coordinator.handle_inbound_webhook(body, None)

    assert await repository.list_records(EntityType.ARTICLE) == []
    status = await coordinator.get_status()
    assert status.rejected_webhooks == 2
    assert recorder.types == [SyncEventType.WEBHOOK_REJECTED, SyncEventType.WEBHOOK_REJECTED]


@pytest.mark.asyncio
async def test_malformed_payload_rejected(coordinator):
    body = b'{"event": "content_published"}'

    with pytest.raises(ValidationError):
        await coordinator.handle_inbound_webhook(body, compute_signature(SECRET, body))


@pytest.mark.asyncio
async def test_published_webhook_creates_article(coordinator, repository, recorder):
    body, signature = webhook("content_published", "hn-2", "post-2")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.outcome == SyncOutcome.SUCCEEDED
    assert result.slug == "post-2"
    article = await repository.find_article_by_external_id("hn-2")
    assert article["tag_slugs"] == ["asyncio", "python"]
    assert SyncEventType.ARTICLE_CREATED in recorder.types


@pytest.mark.asyncio
async def test_platform_alias_event_names(coordinator, repository):
    body, signature = webhook("POST_PUBLISHED", "hn-1", "post-1")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.event == "content_published"
    assert result.outcome == SyncOutcome.SUCCEEDED


@pytest.mark.asyncio
async def test_newer_remote_update_applied(coordinator, repository, fake_client):
    await migrate(repository, fake_client)
    fake_client.posts["hn-1"] = fake_client.posts["hn-1"].model_copy(
        update={"title": "Remote edit", "updated_at": datetime(2024, 6, 1)}
    )
    body, signature = webhook("content_updated", "hn-1", "post-1")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.outcome == SyncOutcome.SUCCEEDED
    article = await repository.find_by_natural_key(EntityType.ARTICLE, "post-1")
    assert article["title"] == "Remote edit"
    assert article["updated_at"] == datetime(2024, 6, 1)
    assert article["author_email"] == "admin@example.com"


@pytest.mark.asyncio
async def test_newer_local_copy_kept(coordinator, repository, fake_client):
    await migrate(repository, fake_client)
    await repository.update(EntityType.ARTICLE, "post-1", {"title": "Local edit", "updated_at": utcnow()})
    fake_client.posts["hn-1"] = fake_client.posts["hn-1"].model_copy(
        update={"title": "Remote edit", "updated_at": datetime(2024, 6, 1)}
    )
    body, signature = webhook("content_updated", "hn-1", "post-1")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.outcome == SyncOutcome.IGNORED
    article = await repository.find_by_natural_key(EntityType.ARTICLE, "post-1")
    assert article["title"] == "Local edit"


@pytest.mark.asyncio
async def test_manual_policy_flags_conflict(make_coordinator, repository, fake_client, recorder):
    coordinator = make_coordinator(ConflictPolicy.MANUAL_FLAG)
    await migrate(repository, fake_client)
    before = await repository.find_by_natural_key(EntityType.ARTICLE, "post-1")
    fake_client.posts["hn-1"] = fake_client.posts["hn-1"].model_copy(
        update={"title": "Remote edit", "updated_at": datetime(2024, 6, 1)}
    )
    body, signature = webhook("content_updated", "hn-1", "post-1")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.outcome == SyncOutcome.FLAGGED
    article = await repository.find_by_natural_key(EntityType.ARTICLE, "post-1")
    assert article["title"] == "Post 1"
    assert article["needs_review"] is True
    assert "hn-1" in article["review_reason"]
    assert article["updated_at"] == before["updated_at"]
    assert (await coordinator.get_status()).flagged_conflicts == 1
    assert SyncEventType.ARTICLE_FLAGGED in recorder.types


@pytest.mark.asyncio
async def test_deleted_post_is_archived(coordinator, repository, fake_client):
    await migrate(repository, fake_client)
    body, signature = webhook("content_deleted", "hn-4", "post-4")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.outcome == SyncOutcome.SUCCEEDED
    article = await repository.find_by_natural_key(EntityType.ARTICLE, "post-4")
    assert article["status"] == "ARCHIVED"
    assert article["external_id"] is None


@pytest.mark.asyncio
async def test_delete_without_local_copy_ignored(coordinator):
    body, signature = webhook("content_deleted", "hn-404", "gone")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.outcome == SyncOutcome.IGNORED


# ============================================================================
# Retry queue
# ============================================================================

@pytest.mark.asyncio
async def test_transient_failure_is_retried(coordinator, repository, fake_client, queue):
    fake_client.get_post_errors.append(NetworkError("Request timeout"))
    body, signature = webhook("content_published", "hn-3", "post-3")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.outcome == SyncOutcome.RETRY_SCHEDULED
    assert (await coordinator.get_status()).pending_operations == 1

    drained = await coordinator.drain_queue()

    assert drained.succeeded == 1
    assert await repository.find_article_by_external_id("hn-3") is not None
    assert (await queue.counts())["total"] == 0


@pytest.mark.asyncio
async def test_retries_are_bounded(coordinator, fake_client, queue, recorder):
    fake_client.get_post_errors.extend(NetworkError("Server error") for _ in range(10))
    body, signature = webhook("content_updated", "hn-1", "post-1")

    await coordinator.handle_inbound_webhook(body, signature)
    first = await coordinator.drain_queue()
    second = await coordinator.drain_queue()
    third = await coordinator.drain_queue()

    assert first.rescheduled == 1
    assert second.failed == 1
    assert third.attempted == 0

    items = await queue.list_items()
    assert len(items) == 1
    assert items[0].state == SyncItemState.FAILED
    assert items[0].attempt_count == 3
    # One call from the webhook, two from the drains
    assert len(fake_client.get_post_errors) == 7
    assert SyncEventType.SYNC_FAILED in recorder.types


@pytest.mark.asyncio
async def test_non_retryable_failure_recorded_once(coordinator, fake_client, queue):
    fake_client.get_post_errors.append(AuthenticationError("bad token"))
    body, signature = webhook("content_published", "hn-1", "post-1")

    result = await coordinator.handle_inbound_webhook(body, signature)

    assert result.outcome == SyncOutcome.FAILED
    counts = await queue.counts()
    assert counts == {"pending": 0, "failed": 1, "total": 1}
    assert (await coordinator.drain_queue()).attempted == 0


@pytest.mark.asyncio
async def test_enqueue_reuses_active_item(queue):
    first = await queue.enqueue(SyncOperation.PUSH, "post-1", None, "timeout")
    second = await queue.enqueue(SyncOperation.PUSH, "post-1", None, "timeout again")

    assert first.id == second.id
    assert len(await queue.list_items()) == 1
    assert second.attempt_count == 2
    assert second.state == SyncItemState.RETRY_SCHEDULED
    assert second.last_error == "timeout again"

    third = await queue.enqueue(SyncOperation.PUSH, "post-1", None, "still timing out")

    assert third.id == first.id
    assert third.attempt_count == 3
    assert third.state == SyncItemState.FAILED


@pytest.mark.asyncio
async def test_enqueue_reuse_pushes_next_attempt_back(session_maker):
    now = datetime(2024, 6, 1, 12, 0, 0)
    queue = RetryQueue(session_maker, max_attempts=5, base_delay=10, max_delay=1000, clock=lambda: now)

    first = await queue.enqueue(SyncOperation.PULL, "hn-1", None, "timeout")
    second = await queue.enqueue(SyncOperation.PULL, "hn-1", None, "timeout")

    assert (first.next_attempt_at - now).total_seconds() == queue.delay_for(1)
    assert (second.next_attempt_at - now).total_seconds() == queue.delay_for(2)
    assert second.next_attempt_at > first.next_attempt_at


@pytest.mark.asyncio
async def test_recover_in_flight(queue):
    await queue.enqueue(SyncOperation.PULL, "hn-1")
    claimed = await queue.claim_due()
    assert claimed[0].state == SyncItemState.IN_FLIGHT

    assert await queue.recover_in_flight() == 1
    assert (await queue.list_items())[0].state == SyncItemState.PENDING


@pytest.mark.asyncio
async def test_clear_keeps_failed_items_unless_asked(queue):
    await queue.enqueue(SyncOperation.PULL, "hn-1")
    doomed = await queue.enqueue(SyncOperation.PUSH, "post-2")
    await queue.mark_failed(doomed.id, "rejected", retryable=False)

    assert await queue.clear() == 1
    assert [item.target_key for item in await queue.list_items()] == ["post-2"]

    assert await queue.clear(include_failed=True) == 1
    assert await queue.list_items() == []


@pytest.mark.asyncio
async def test_coordinator_clear_queue_waits_for_lock(coordinator, queue):
    await queue.enqueue(SyncOperation.PULL, "hn-1")

    async with coordinator._lock:
        pending = asyncio.ensure_future(coordinator.clear_queue())
        await asyncio.sleep(0)
        assert not pending.done()
        assert len(await queue.list_items()) == 1

    assert await pending == 1
    assert await queue.list_items() == []


@pytest.mark.asyncio
async def test_coordinator_recover_queue(coordinator, queue):
    await queue.enqueue(SyncOperation.PULL, "hn-1")
    await queue.claim_due()

    assert await coordinator.recover_queue() == 1
    assert (await queue.list_items())[0].state == SyncItemState.PENDING


# ============================================================================
# Outbound push
# ============================================================================

@pytest.mark.asyncio
async def test_push_creates_platform_post(coordinator, repository, fake_client):
    await repository.ensure(EntityType.TAG, "python", {"name": "Python", "slug": "python"})
    created = await repository.create(EntityType.ARTICLE, {
        "title": "Local only", "slug": "local-only", "content_mdx": "Body", "tag_slugs": ["python"],
    })

    outcome = await coordinator.push_outbound("local-only")

    assert outcome == SyncOutcome.SUCCEEDED
    assert fake_client.created[0].slug == "local-only"
    assert fake_client.created[0].tags[0].slug == "python"
    article = await repository.find_by_natural_key(EntityType.ARTICLE, "local-only")
    assert article["external_id"].startswith("hn-")
    assert article["updated_at"] == created["updated_at"]


@pytest.mark.asyncio
async def test_push_updates_existing_platform_post(coordinator, repository, fake_client):
    await migrate(repository, fake_client)
    await repository.update(EntityType.ARTICLE, "post-1", {"title": "Edited locally"})

    outcome = await coordinator.push_outbound("post-1")

    assert outcome == SyncOutcome.SUCCEEDED
    assert fake_client.updated[0][0] == "hn-1"
    assert fake_client.posts["hn-1"].title == "Edited locally"


@pytest.mark.asyncio
async def test_push_transient_failure_retried(coordinator, repository, fake_client):
    await repository.create(EntityType.ARTICLE, {"title": "Retry me", "slug": "retry-me"})
    fake_client.push_errors.append(NetworkError("Request timeout"))

    assert await coordinator.push_outbound("retry-me") == SyncOutcome.RETRY_SCHEDULED

    drained = await coordinator.drain_queue()

    assert drained.succeeded == 1
    assert fake_client.created[0].slug == "retry-me"


@pytest.mark.asyncio
async def test_push_unknown_article(coordinator):
    with pytest.raises(RecordNotFoundError):
        await coordinator.push_outbound("missing")


@pytest.mark.asyncio
async def test_repeated_push_failures_exhaust_queued_item(coordinator, repository, fake_client, queue):
    await repository.create(EntityType.ARTICLE, {"title": "Flaky", "slug": "flaky"})
    fake_client.push_errors.extend(NetworkError("Request timeout") for _ in range(3))

    assert await coordinator.push_outbound("flaky") == SyncOutcome.RETRY_SCHEDULED
    assert await coordinator.push_outbound("flaky") == SyncOutcome.RETRY_SCHEDULED
    assert await coordinator.push_outbound("flaky") == SyncOutcome.FAILED

    items = await queue.list_items()
    assert len(items) == 1
    assert items[0].attempt_count == 3
    assert items[0].state == SyncItemState.FAILED


# ============================================================================
# Lifecycle / operator entry point
# ============================================================================

@pytest.mark.asyncio
async def test_start_and_stop(coordinator):
    await coordinator.start()
    assert coordinator.is_running
    assert (await coordinator.get_status()).is_running is True

    await coordinator.stop()
    assert not coordinator.is_running

    await coordinator.start()
    try:
        await asyncio.sleep(0)
        assert coordinator.is_running
        assert coordinator.scheduler.scheduler.running
    finally:
        await coordinator.stop()
    assert not coordinator.is_running


@pytest.mark.asyncio
async def test_runner_sync_pass(runner, fake_client):
    await runner.migrate(backup=False)
    await runner.repository.update(EntityType.ARTICLE, "post-2", {"title": "Edited"})

    result = await runner.run_sync(push_slug="post-2")

    assert result.success is True
    assert result.data["push"]["outcome"] == "succeeded"
    assert fake_client.updated[0][0] == "hn-2"

    status = await runner.status()
    assert status.data["sync"]["total_operations"] == 1
    assert status.data["content"]["total_articles"] == 5


@pytest.mark.asyncio
async def test_runner_clear_queue_goes_through_coordinator(runner):
    await runner.queue.enqueue(SyncOperation.PULL, "hn-1")
    await runner.queue.enqueue(SyncOperation.PUSH, "post-2")
    runner.sync.clear_queue = AsyncMock(wraps=runner.sync.clear_queue)

    result = await runner.clear_queue()

    runner.sync.clear_queue.assert_awaited_once_with(include_failed=False)
    assert result.success is True
    assert result.data["removed"] == 2
    assert await runner.queue.list_items() == []
