"""
Snapshot store - verifiable point-in-time copies of the content store.

This module provides:
- Full, incremental and pre-operation snapshots as JSON documents on disk
- SHA-256 checksums over the canonical serialized document
- Atomic publication (temp file + os.replace)
- All-or-nothing restore inside one repository transaction
- Retention sweeps by age and count

Document layout (metadata first, compact separators):

    {"metadata": {"id", "timestamp", "kind", "description", "size",
                  "checksum", "counts", "schemaVersion"},
     "articles": [...], "tags": [...], "series": [...], "users": [...],
     "relationships": {"articleTags": [{"article", "tag"}],
                       "articleSeries": [{"article", "series"}]}}

`size` is the byte length of the serialized content sections (everything
except the metadata).

The checksum is computed over the serialized document with the checksum
field set to the empty string, then written into that field.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, timedelta
import asyncio
import hashlib
import hmac
import json
import logging
import os
import re
import uuid

from core.clock import utcnow
from core.config import settings
from core.exceptions import (
    ConnectionFailure,
    OperationCancelledError,
    RestoreError,
    SnapshotError,
    SnapshotIntegrityError,
    SnapshotNotFoundError,
)
from models.base import EntityType, SnapshotKind
from repository.content_repository import ContentRepository
from schemas.snapshot import (
    RestoredCounts,
    RestoreResult,
    RetentionResult,
    SnapshotCounts,
    SnapshotMetadata,
)

logger = logging.getLogger(__name__)

SNAPSHOT_ID_PATTERN = re.compile(r"^snapshot_\d{8}T\d{12}_[0-9a-f]{8}$")

_EMPTY_CHECKSUM = b'"checksum":""'

# Article fields carried in the relationship sections instead
_FLATTENED_FIELDS = ("tag_slugs", "series_slug")


def _json_default(value: Any):
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def serialize(document: Dict[str, Any]) -> bytes:
    """Canonical form: insertion order, compact separators, UTF-8"""
    return json.dumps(
        document, separators=(",", ":"), ensure_ascii=False, default=_json_default
    ).encode("utf-8")


def compute_checksum(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


class SnapshotStore:
    """
    Create, verify, restore and expire snapshots.

    Only this class writes to the snapshot directory. Snapshots are never
    modified after they are published.
    """

    def __init__(
        self,
        repository: ContentRepository,
        directory: Optional[str] = None,
        schema_version: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.repository = repository
        self.directory = Path(directory or settings.SNAPSHOT_DIR)
        self.schema_version = schema_version or settings.SNAPSHOT_SCHEMA_VERSION
        self.clock = clock

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _path(self, snapshot_id: str) -> Path:
        if not SNAPSHOT_ID_PATTERN.match(snapshot_id or ""):
            raise SnapshotNotFoundError(
                f"Invalid snapshot id '{snapshot_id}'",
                context={"snapshot_id": snapshot_id}
            )
        return self.directory / f"{snapshot_id}.json"

    def _existing_path(self, snapshot_id: str) -> Path:
        path = self._path(snapshot_id)
        if not path.is_file():
            raise SnapshotNotFoundError(
                f"Snapshot '{snapshot_id}' not found",
                context={"snapshot_id": snapshot_id, "directory": str(self.directory)}
            )
        return path

    def _new_id(self, timestamp: datetime) -> str:
        return f"snapshot_{timestamp.strftime('%Y%m%dT%H%M%S%f')}_{uuid.uuid4().hex[:8]}"

    def _write_atomic(self, path: Path, payload: bytes):
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + f".tmp.{uuid.uuid4().hex[:8]}")
        try:
            tmp.write_bytes(payload)
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_snapshot(
        self,
        kind: SnapshotKind = SnapshotKind.FULL,
        description: str = ""
    ) -> SnapshotMetadata:
        """
        Capture the content store and publish it as a new snapshot.

        Incremental snapshots hold only records updated since the newest
        existing snapshot; without one they capture everything.
        """
        kind = SnapshotKind(kind)
        since = None
        if kind == SnapshotKind.INCREMENTAL:
            latest = self.latest_snapshot()
            since = latest.timestamp if latest else None

        timestamp = self.clock()
        content = await self._collect(since)

        metadata = SnapshotMetadata(
            id=self._new_id(timestamp),
            timestamp=timestamp,
            kind=kind,
            description=description,
            size=len(serialize(content)),
            checksum="",
            counts=SnapshotCounts(
                articles=len(content["articles"]),
                tags=len(content["tags"]),
                series=len(content["series"]),
                users=len(content["users"]),
            ),
            schema_version=self.schema_version,
        )

        unsigned = serialize({"metadata": metadata.document_dict(), **content})
        checksum = compute_checksum(unsigned)
        payload = unsigned.replace(_EMPTY_CHECKSUM, f'"checksum":"{checksum}"'.encode("utf-8"), 1)

        self._write_atomic(self._path(metadata.id), payload)
        metadata.checksum = checksum

        logger.info(
            f"Snapshot {metadata.id} created ({kind.value}, {metadata.counts.articles} articles, "
            f"{metadata.size} bytes)"
        )
        return metadata

    async def _collect(self, since: Optional[datetime]) -> Dict[str, Any]:
        """Content sections of the document, relationships keyed by natural key"""
        articles = await self.repository.list_records(EntityType.ARTICLE, updated_since=since)
        tags = await self.repository.list_records(EntityType.TAG, updated_since=since)
        series = await self.repository.list_records(EntityType.SERIES, updated_since=since)
        users = await self.repository.list_records(EntityType.USER, updated_since=since)

        captured = {article["slug"] for article in articles}
        article_tags = [
            link for link in await self.repository.list_article_tags()
            if link["article"] in captured
        ]
        article_series = [
            {"article": article["slug"], "series": article["series_slug"]}
            for article in articles
            if article.get("series_slug")
        ]

        return {
            "articles": [
                {k: v for k, v in article.items() if k not in _FLATTENED_FIELDS}
                for article in articles
            ],
            "tags": tags,
            "series": series,
            "users": users,
            "relationships": {
                "articleTags": article_tags,
                "articleSeries": article_series,
            },
        }

    # ------------------------------------------------------------------
    # Read / verify
    # ------------------------------------------------------------------

    def list_snapshots(self) -> List[SnapshotMetadata]:
        """All readable snapshots, newest first"""
        if not self.directory.is_dir():
            return []

        snapshots = []
        for path in self.directory.glob("snapshot_*.json"):
            try:
                document = json.loads(path.read_bytes())
                snapshots.append(SnapshotMetadata.model_validate(document["metadata"]))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable snapshot {path.name}: {e}")

        snapshots.sort(key=lambda s: (s.timestamp, s.id), reverse=True)
        return snapshots

    def latest_snapshot(self) -> Optional[SnapshotMetadata]:
        snapshots = self.list_snapshots()
        return snapshots[0] if snapshots else None

    def get_metadata(self, snapshot_id: str) -> SnapshotMetadata:
        return SnapshotMetadata.model_validate(self.load_document(snapshot_id)["metadata"])

    def load_document(self, snapshot_id: str) -> Dict[str, Any]:
        path = self._existing_path(snapshot_id)
        try:
            return json.loads(path.read_bytes())
        except (OSError, ValueError) as e:
            raise SnapshotIntegrityError(
                f"Snapshot '{snapshot_id}' is unreadable",
                context={"snapshot_id": snapshot_id},
                original_exception=e
            )

    def verify(self, snapshot_id: str) -> bool:
        """Recompute the checksum over the stored bytes"""
        payload = self._existing_path(snapshot_id).read_bytes()
        try:
            stored = json.loads(payload)["metadata"]["checksum"]
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Snapshot {snapshot_id} failed verification: unparseable")
            return False

        if not isinstance(stored, str) or not stored:
            return False

        marker = f'"checksum":"{stored}"'.encode("utf-8")
        if marker not in payload:
            return False

        actual = compute_checksum(payload.replace(marker, _EMPTY_CHECKSUM, 1))
        valid = hmac.compare_digest(actual, stored)
        if not valid:
            logger.warning(f"Snapshot {snapshot_id} failed verification: checksum mismatch")
        return valid

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(
        self,
        snapshot_id: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RestoreResult:
        """
        Replace the store contents with a snapshot.

        The snapshot is verified before anything is touched, then a
        pre-operation snapshot is taken. All writes happen in one
        transaction: any failure or cancellation leaves the store exactly
        as it was.

        Raises:
            SnapshotNotFoundError: Unknown snapshot id
            SnapshotIntegrityError: Checksum mismatch (nothing mutated)
            ConnectionFailure: Content store unreachable
        """
        if not self.verify(snapshot_id):
            raise SnapshotIntegrityError(
                f"Snapshot '{snapshot_id}' failed checksum verification",
                context={"snapshot_id": snapshot_id}
            )

        document = self.load_document(snapshot_id)
        metadata = SnapshotMetadata.model_validate(document["metadata"])

        pre_restore = await self.create_snapshot(
            SnapshotKind.PRE_OPERATION, f"Pre-restore backup before {snapshot_id}"
        )
        result = RestoreResult(snapshot_id=snapshot_id, pre_restore_snapshot_id=pre_restore.id)
        logger.info(f"Restoring {snapshot_id} ({metadata.kind.value}); pre-restore snapshot {pre_restore.id}")

        try:
            result.restored = await self.repository.with_transaction(
                lambda repo: self._apply(repo, document, metadata.is_complete, cancel_event)
            )
            result.success = True
            logger.info(f"Restore of {snapshot_id} committed: {result.restored.model_dump()}")

        except ConnectionFailure:
            raise

        except OperationCancelledError:
            result.errors.append("Restore cancelled; no changes applied")
            logger.warning(f"Restore of {snapshot_id} cancelled and rolled back")

        except Exception as e:
            error = RestoreError(
                f"Restore of '{snapshot_id}' failed and was rolled back",
                context={"snapshot_id": snapshot_id},
                original_exception=e
            )
            result.errors.append(error.summary())
            logger.error(str(error), extra={"error_context": error.to_dict()})

        return result

    async def _apply(
        self,
        repo: ContentRepository,
        document: Dict[str, Any],
        complete: bool,
        cancel_event: Optional[asyncio.Event]
    ) -> RestoredCounts:
        def check_cancelled():
            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError("Restore cancelled", context={"phase": "apply"})

        counts = RestoredCounts()
        await repo.lock_for_restore()

        if complete:
            # Remove stale rows first so their natural keys cannot collide
            counts.removed += await repo.delete_missing(
                EntityType.ARTICLE, [a["slug"] for a in document.get("articles", [])]
            )
            counts.removed += await repo.delete_missing(
                EntityType.TAG, [t["slug"] for t in document.get("tags", [])]
            )
            counts.removed += await repo.delete_missing(
                EntityType.SERIES, [s["slug"] for s in document.get("series", [])]
            )

        for user in document.get("users", []):
            check_cancelled()
            await repo.upsert(EntityType.USER, user["email"], user)
            counts.users += 1

        for tag in document.get("tags", []):
            check_cancelled()
            await repo.upsert(EntityType.TAG, tag["slug"], tag)
            counts.tags += 1

        for series in document.get("series", []):
            check_cancelled()
            await repo.upsert(EntityType.SERIES, series["slug"], series)
            counts.series += 1

        relationships = document.get("relationships") or {}
        tags_by_article: Dict[str, List[str]] = {}
        for link in relationships.get("articleTags", []):
            tags_by_article.setdefault(link["article"], []).append(link["tag"])
        series_by_article = {
            link["article"]: link["series"] for link in relationships.get("articleSeries", [])
        }

        for article in document.get("articles", []):
            check_cancelled()
            slug = article["slug"]
            record = dict(article)
            record["series_slug"] = series_by_article.get(slug)
            await repo.upsert(EntityType.ARTICLE, slug, record)
            await repo.set_article_tags(slug, tags_by_article.get(slug, []))
            counts.articles += 1

        check_cancelled()
        return counts

    # ------------------------------------------------------------------
    # Delete / retention
    # ------------------------------------------------------------------

    def delete_snapshot(self, snapshot_id: str):
        path = self._existing_path(snapshot_id)
        try:
            path.unlink()
        except OSError as e:
            raise SnapshotError(
                f"Could not delete snapshot '{snapshot_id}'",
                context={"snapshot_id": snapshot_id},
                original_exception=e
            )
        logger.info(f"Snapshot {snapshot_id} deleted")

    def apply_retention(
        self,
        max_count: Optional[int] = None,
        max_age_days: Optional[int] = None
    ) -> RetentionResult:
        """Delete snapshots past the age window, then all but the newest max_count"""
        max_count = settings.SNAPSHOT_MAX_COUNT if max_count is None else max_count
        max_age_days = settings.SNAPSHOT_RETENTION_DAYS if max_age_days is None else max_age_days

        result = RetentionResult()
        cutoff = self.clock() - timedelta(days=max_age_days)

        survivors = []
        doomed = []
        for snapshot in self.list_snapshots():
            if snapshot.timestamp < cutoff:
                doomed.append(snapshot.id)
            else:
                survivors.append(snapshot.id)

        doomed.extend(survivors[max_count:])
        survivors = survivors[:max_count]

        for snapshot_id in doomed:
            try:
                self.delete_snapshot(snapshot_id)
                result.deleted.append(snapshot_id)
            except SnapshotError as e:
                result.warnings.append(e.summary())
                survivors.append(snapshot_id)
                logger.warning(f"Retention could not delete {snapshot_id}: {e.summary()}")

        result.kept = survivors
        logger.info(f"Retention sweep: deleted {len(result.deleted)}, kept {len(result.kept)}")
        return result
