"""
Migration engine - one-shot import of platform posts into the content store.

This module provides:
- Connection checks on both stores before any write
- Paged, batched reading from the platform
- Per-record validation, duplicate detection and conversion
- One transaction per article (article + tag links)
- Partial failure support (a bad record never stops the run)
- Dry runs that plan without writing
- Cooperative cancellation between records
"""

from typing import Optional, TYPE_CHECKING
import asyncio
import logging
import time

from core.config import settings
from core.exceptions import (
    ConnectionFailure,
    DuplicateRecordError,
    PlatformAPIError,
    PlatformConnectionError,
    RecordError,
    ValidationError,
)
from hashnode.client import PlatformClient, MAX_PAGE_SIZE
from migration.transformers import PostTransformer
from models.base import EntityType, UserRole
from repository.content_repository import ContentRepository
from schemas.platform import ExternalPost
from schemas.results import MigrationOptions, MigrationResult, PlannedAction

if TYPE_CHECKING:
    from analytics.collector import AnalyticsCollector

logger = logging.getLogger(__name__)


async def ensure_default_author(repository: ContentRepository) -> str:
    """Get or create the admin account imported articles are attributed to"""
    email = settings.DEFAULT_AUTHOR_EMAIL
    await repository.ensure(
        EntityType.USER,
        email,
        {"name": settings.DEFAULT_AUTHOR_NAME, "email": email, "role": UserRole.ADMIN},
    )
    return email


async def import_post(
    repo: ContentRepository,
    post: ExternalPost,
    author_email: Optional[str],
    transformer: PostTransformer
):
    """Tags and series (create-if-absent), then the article with its tag links"""
    for tag in transformer.tag_records(post):
        await repo.ensure(EntityType.TAG, tag["slug"], tag)

    series = transformer.series_record(post)
    if series is not None:
        await repo.ensure(EntityType.SERIES, series["slug"], series)

    article = transformer.to_local(post, author_email=author_email)
    return await repo.create(EntityType.ARTICLE, article)


class MigrationEngine:
    """
    Import every platform post exactly once.

    Responsibilities:
    - Abort on connection-level failures (either store unreachable)
    - Skip posts already present by external id or slug
    - Create missing tags and series by normalised slug
    - Report imported / skipped / failed counts with per-record errors

    Re-running a migration over the same platform content imports nothing
    new, whatever the batch size.
    """

    def __init__(
        self,
        repository: ContentRepository,
        client: PlatformClient,
        analytics: Optional["AnalyticsCollector"] = None,
        transformer: Optional[PostTransformer] = None
    ):
        self.repository = repository
        self.client = client
        self.analytics = analytics
        self.transformer = transformer or PostTransformer()

    async def migrate(
        self,
        options: Optional[MigrationOptions] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> MigrationResult:
        """
        Run the migration.

        Returns:
            MigrationResult with counts, per-record errors and (dry run) planned actions

        Raises:
            ConnectionFailure: Either store unreachable before or during the run
        """
        options = options or MigrationOptions(batch_size=settings.MIGRATION_BATCH_SIZE)
        result = MigrationResult(dry_run=options.dry_run)
        started = time.perf_counter()

        await self._test_connections()

        total = await self._count_posts(result)
        if self.analytics is not None:
            self.analytics.start_run("migration", total, batch_size=options.batch_size)

        author_email = None
        if not options.dry_run:
            author_email = await ensure_default_author(self.repository)

        page_size = min(options.batch_size, MAX_PAGE_SIZE)
        logger.info(
            f"Starting migration (dry_run={options.dry_run}, batch_size={options.batch_size}, "
            f"expected_posts={total})"
        )

        try:
            async for page in self.client.iterate_pages(page_size):
                for post in page.posts:
                    if cancel_event is not None and cancel_event.is_set():
                        result.cancelled = True
                        break
                    await self._process_post(post, options, author_email, result)

                if result.cancelled:
                    logger.warning(f"Migration cancelled after {result.processed} records")
                    break

                logger.info(
                    f"Batch complete: imported={result.imported}, skipped={result.skipped}, "
                    f"failed={result.failed}"
                )

        except ConnectionFailure:
            raise

        except PlatformAPIError as e:
            # Paging cannot continue without the platform
            raise PlatformConnectionError(
                "Platform failed while paging posts",
                context={"store": "platform", "processed": result.processed},
                original_exception=e
            )

        finally:
            result.duration_ms = (time.perf_counter() - started) * 1000
            if self.analytics is not None:
                self.analytics.stop_run()

        logger.info(
            f"Migration finished: imported={result.imported}, skipped={result.skipped}, "
            f"failed={result.failed}, duration={result.duration_ms:.0f}ms"
        )
        return result

    async def _test_connections(self):
        await self.repository.ping()
        await self.client.test_connection()
        logger.info("Both stores reachable")

    async def _count_posts(self, result: MigrationResult) -> int:
        try:
            return await self.client.count_posts()
        except PlatformAPIError as e:
            result.warnings.append(f"Could not count platform posts: {e.summary()}")
            return 0

    async def _process_post(
        self,
        post: ExternalPost,
        options: MigrationOptions,
        author_email: Optional[str],
        result: MigrationResult
    ):
        errors_before = len(result.errors)
        try:
            self._validate(post)

            existing = await self.repository.find_article_by_external_id(post.id)
            if existing is None:
                existing = await self.repository.find_by_natural_key(EntityType.ARTICLE, post.slug)

            if existing is not None:
                result.skipped += 1
                if options.dry_run:
                    result.planned.append(PlannedAction(
                        external_id=post.id, slug=post.slug, action="skip", reason="already migrated"
                    ))
                logger.debug(f"Skipping {post.slug}: already present")

            elif options.dry_run:
                result.planned.append(PlannedAction(external_id=post.id, slug=post.slug, action="create"))

            else:
                await self.repository.with_transaction(
                    lambda repo: import_post(repo, post, author_email, self.transformer)
                )
                result.imported += 1
                logger.debug(f"Imported {post.slug}")

        except ConnectionFailure:
            raise

        except DuplicateRecordError:
            # Another writer created it between lookup and insert
            result.skipped += 1

        except Exception as e:
            result.failed += 1
            message = e.summary() if isinstance(e, RecordError) else str(e)
            result.errors.append(f"{post.id}: {message}")
            if options.dry_run and isinstance(e, ValidationError):
                result.planned.append(PlannedAction(
                    external_id=post.id, slug=post.slug, action="invalid", reason=message
                ))
            logger.error(
                f"Failed to migrate post {post.id}: {message}",
                extra={"error_context": {"external_id": post.id, "slug": post.slug, "error_type": type(e).__name__}}
            )

        if self.analytics is not None:
            self.analytics.update_run(1, errors=len(result.errors) - errors_before)

    @staticmethod
    def _validate(post: ExternalPost):
        for field_name in ("title", "slug"):
            if not (getattr(post, field_name) or "").strip():
                raise ValidationError(
                    f"Missing required field '{field_name}'",
                    context={"field_name": field_name, "external_id": post.id}
                )

