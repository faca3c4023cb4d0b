"""
Operations runner - operator-facing entry points.

Each operation:
- Takes a pre-operation snapshot before anything destructive
- Drives the engine component that does the work
- Builds and saves a run report with an explicit status
- Returns an OperationResult whose `success` maps to the exit code
"""

from typing import Optional
import asyncio
import logging
import time

from sqlalchemy.ext.asyncio import async_sessionmaker

from analytics.collector import AnalyticsCollector, determine_status
from analytics.renderers import render
from analytics.report_store import ReportStore
from backup.snapshot_store import SnapshotStore
from core.config import settings
from core.database import get_session_maker
from core.exceptions import ConnectionFailure, ContentSyncException, SnapshotError
from hashnode.client import HashnodeClient, PlatformClient
from migration.engine import MigrationEngine
from models.base import RunKind, RunStatus, SnapshotKind
from repository.content_repository import SQLAlchemyContentRepository
from schemas.reports import RunReport
from schemas.results import MigrationOptions, OperationResult, SyncOutcome
from sync.coordinator import SyncCoordinator
from sync.queue import RetryQueue

logger = logging.getLogger(__name__)


def _error_message(e: Exception) -> str:
    return e.summary() if isinstance(e, ContentSyncException) else str(e)


class OperationRunner:
    """
    Wires the engine components together and exposes the operator operations.

    Purpose:
    - One place that owns the repository, platform client, snapshot store,
      migration engine, sync coordinator and analytics
    - Same behaviour behind the CLI and the HTTP API
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        client: PlatformClient,
        snapshot_dir: Optional[str] = None,
        report_dir: Optional[str] = None,
        report_formats: Optional[list] = None,
        webhook_secret: Optional[str] = None,
        sync_interval_seconds: Optional[float] = None
    ):
        self.session_maker = session_maker
        self.repository = SQLAlchemyContentRepository(session_maker)
        self.client = client
        self.snapshots = SnapshotStore(self.repository, directory=snapshot_dir)
        self.analytics = AnalyticsCollector(self.repository)
        self.reports = ReportStore(session_maker, directory=report_dir, formats=report_formats)
        self.migration = MigrationEngine(self.repository, client, analytics=self.analytics)
        self.queue = RetryQueue(session_maker)
        self.sync = SyncCoordinator(
            self.repository,
            client,
            self.queue,
            webhook_secret=webhook_secret,
            interval_seconds=sync_interval_seconds,
        )

    async def _finish(
        self,
        kind: RunKind,
        status: RunStatus,
        errors: list,
        warnings: list,
        duration_ms: float,
        succeeded: Optional[int] = None,
        failed: Optional[int] = None
    ) -> Optional[RunReport]:
        """Build and persist the run report; a reporting failure never hides the run outcome"""
        try:
            report = await self.analytics.build_report(
                kind, status, errors, warnings, duration_ms, succeeded=succeeded, failed=failed
            )
            await self.reports.save(report)
            return report
        except (ContentSyncException, OSError) as e:
            logger.error(f"Could not save {kind.value} report: {_error_message(e)}")
            warnings.append(f"Report not saved: {_error_message(e)}")
            return None

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    async def migrate(
        self,
        dry_run: bool = False,
        batch_size: Optional[int] = None,
        backup: Optional[bool] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> OperationResult:
        options = MigrationOptions(batch_size=batch_size or settings.MIGRATION_BATCH_SIZE, dry_run=dry_run)
        backup = settings.MIGRATION_BACKUP_ENABLED if backup is None else backup
        started = time.perf_counter()
        errors, warnings, data = [], [], {}

        try:
            if backup and not dry_run:
                snapshot = await self.snapshots.create_snapshot(
                    SnapshotKind.PRE_OPERATION, "Pre-migration backup"
                )
                data["pre_migration_snapshot_id"] = snapshot.id

            result = await self.migration.migrate(options, cancel_event=cancel_event)

        except (ConnectionFailure, SnapshotError) as e:
            errors.append(_error_message(e))
            logger.error(f"Migration aborted: {_error_message(e)}", extra={"error_context": e.to_dict()})
            duration_ms = (time.perf_counter() - started) * 1000
            report = await self._finish(RunKind.MIGRATION, RunStatus.FAILED, errors, warnings, duration_ms, 0, 0)
            return OperationResult(
                operation="migrate", success=False, status=RunStatus.FAILED.value,
                message="Migration aborted", report_id=report.id if report else None,
                data=data, errors=errors, warnings=warnings,
            )

        errors.extend(result.errors)
        warnings.extend(result.warnings)
        if result.cancelled:
            warnings.append("Migration cancelled before all posts were processed")

        status = determine_status(result.imported + result.skipped, result.failed)
        data.update(result.model_dump(mode="json", exclude={"errors", "warnings"}))
        data["success_rate"] = result.success_rate

        report = await self._finish(
            RunKind.MIGRATION, status, errors, warnings, result.duration_ms,
            succeeded=result.imported + result.skipped, failed=result.failed,
        )
        prefix = "Dry run" if dry_run else "Migration"
        return OperationResult(
            operation="migrate",
            success=status == RunStatus.SUCCESS and not result.cancelled,
            status=status.value,
            message=(
                f"{prefix}: {result.imported} imported, {result.skipped} skipped, "
                f"{result.failed} failed, {len(result.planned)} planned"
            ),
            report_id=report.id if report else None,
            data=data,
            errors=errors,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def backup(self, kind: str = "full", description: str = "") -> OperationResult:
        started = time.perf_counter()
        try:
            metadata = await self.snapshots.create_snapshot(SnapshotKind(kind), description)
        except (ConnectionFailure, SnapshotError, OSError, ValueError) as e:
            errors = [_error_message(e)]
            await self._finish(RunKind.BACKUP, RunStatus.FAILED, errors, [], (time.perf_counter() - started) * 1000, 0, 1)
            return OperationResult(operation="backup", success=False, status=RunStatus.FAILED.value,
                                   message="Backup failed", errors=errors)

        retention = self.snapshots.apply_retention()
        duration_ms = (time.perf_counter() - started) * 1000
        report = await self._finish(RunKind.BACKUP, RunStatus.SUCCESS, [], retention.warnings, duration_ms, 1, 0)
        return OperationResult(
            operation="backup",
            success=True,
            status=RunStatus.SUCCESS.value,
            message=f"Snapshot {metadata.id} created",
            report_id=report.id if report else None,
            data={"snapshot": metadata.document_dict(), "retention": retention.model_dump()},
            warnings=retention.warnings,
        )

    async def restore(self, snapshot_id: str, cancel_event: Optional[asyncio.Event] = None) -> OperationResult:
        started = time.perf_counter()
        try:
            result = await self.snapshots.restore(snapshot_id, cancel_event=cancel_event)
        except (ConnectionFailure, SnapshotError) as e:
            errors = [_error_message(e)]
            logger.error(f"Restore of {snapshot_id} refused: {errors[0]}")
            report = await self._finish(RunKind.RESTORE, RunStatus.FAILED, errors, [], (time.perf_counter() - started) * 1000, 0, 1)
            return OperationResult(operation="restore", success=False, status=RunStatus.FAILED.value,
                                   message="Restore failed", report_id=report.id if report else None, errors=errors)

        status = RunStatus.SUCCESS if result.success else RunStatus.FAILED
        report = await self._finish(
            RunKind.RESTORE, status, list(result.errors), list(result.warnings),
            (time.perf_counter() - started) * 1000,
            succeeded=1 if result.success else 0, failed=0 if result.success else 1,
        )
        return OperationResult(
            operation="restore",
            success=result.success,
            status=status.value,
            message=f"Restore of {snapshot_id} {'committed' if result.success else 'rolled back'}",
            report_id=report.id if report else None,
            data=result.model_dump(mode="json"),
            errors=result.errors,
            warnings=result.warnings,
        )

    async def list_snapshots(self) -> OperationResult:
        snapshots = self.snapshots.list_snapshots()
        return OperationResult(
            operation="list-backups",
            success=True,
            status=RunStatus.SUCCESS.value,
            message=f"{len(snapshots)} snapshots",
            data={"snapshots": [s.document_dict() for s in snapshots]},
        )

    async def verify(self, snapshot_id: str) -> OperationResult:
        try:
            valid = self.snapshots.verify(snapshot_id)
        except SnapshotError as e:
            return OperationResult(operation="verify", success=False, status=RunStatus.FAILED.value,
                                   message=_error_message(e), errors=[_error_message(e)])
        return OperationResult(
            operation="verify",
            success=valid,
            status=(RunStatus.SUCCESS if valid else RunStatus.FAILED).value,
            message=f"Snapshot {snapshot_id} is {'valid' if valid else 'corrupt'}",
            data={"snapshot_id": snapshot_id, "valid": valid},
        )

    async def delete_snapshot(self, snapshot_id: str) -> OperationResult:
        try:
            self.snapshots.delete_snapshot(snapshot_id)
        except SnapshotError as e:
            return OperationResult(operation="delete-backup", success=False, status=RunStatus.FAILED.value,
                                   message=_error_message(e), errors=[_error_message(e)])
        return OperationResult(operation="delete-backup", success=True, status=RunStatus.SUCCESS.value,
                               message=f"Snapshot {snapshot_id} deleted", data={"snapshot_id": snapshot_id})

    async def cleanup(self) -> OperationResult:
        retention = self.snapshots.apply_retention()
        status = RunStatus.PARTIAL if retention.warnings else RunStatus.SUCCESS
        return OperationResult(
            operation="cleanup",
            success=not retention.warnings,
            status=status.value,
            message=f"Deleted {len(retention.deleted)} snapshots, kept {len(retention.kept)}",
            data=retention.model_dump(),
            warnings=retention.warnings,
        )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    async def run_sync(self, push_slug: Optional[str] = None) -> OperationResult:
        """One sync pass: optional push of one article, then one queue drain"""
        started = time.perf_counter()
        errors, data = [], {}
        pushed, push_failed = 0, 0
        try:
            await self.sync.recover_queue()
            if push_slug:
                outcome = await self.sync.push_outbound(push_slug)
                data["push"] = {"slug": push_slug, "outcome": outcome.value}
                if outcome == SyncOutcome.FAILED:
                    push_failed = 1
                    errors.append(f"Push of {push_slug} failed permanently")
                else:
                    pushed = 1
            drained = await self.sync.drain_queue()
        except ContentSyncException as e:
            errors.append(_error_message(e))
            report = await self._finish(RunKind.SYNC, RunStatus.FAILED, errors, [], (time.perf_counter() - started) * 1000, 0, 1)
            return OperationResult(operation="sync", success=False, status=RunStatus.FAILED.value,
                                   message="Sync failed", report_id=report.id if report else None, errors=errors)

        data["drain"] = drained.model_dump()
        failed = drained.failed + push_failed
        status = determine_status(drained.succeeded + drained.rescheduled + pushed, failed)
        report = await self._finish(
            RunKind.SYNC, status, errors, [], (time.perf_counter() - started) * 1000,
            succeeded=drained.succeeded + pushed, failed=failed,
        )
        return OperationResult(
            operation="sync",
            success=status == RunStatus.SUCCESS,
            status=status.value,
            message=(
                f"Sync pass: {drained.succeeded} succeeded, {drained.rescheduled} rescheduled, "
                f"{drained.failed} failed"
            ),
            report_id=report.id if report else None,
            data=data,
            errors=errors,
        )

    async def start_sync(self) -> OperationResult:
        await self.sync.start()
        return OperationResult(operation="start-sync", success=True, status=RunStatus.SUCCESS.value,
                               message="Sync loop started")

    async def stop_sync(self):
        await self.sync.stop()

    async def clear_queue(self, include_failed: bool = False) -> OperationResult:
        removed = await self.sync.clear_queue(include_failed=include_failed)
        return OperationResult(
            operation="clear-queue",
            success=True,
            status=RunStatus.SUCCESS.value,
            message=f"Removed {removed} queued sync items",
            data={"removed": removed, "include_failed": include_failed},
        )

    # ------------------------------------------------------------------
    # Status / reports
    # ------------------------------------------------------------------

    async def status(self) -> OperationResult:
        sync_status = await self.sync.get_status()
        metrics = await self.analytics.collect_metrics()
        latest = self.snapshots.latest_snapshot()
        latest_report = await self.reports.latest()
        return OperationResult(
            operation="status",
            success=True,
            status=RunStatus.SUCCESS.value,
            message=(
                f"{metrics.total_articles} articles, {sync_status.pending_operations} pending sync items, "
                f"{sync_status.failed_operations} failed"
            ),
            data={
                "sync": sync_status.model_dump(mode="json"),
                "content": metrics.model_dump(mode="json"),
                "latest_snapshot": latest.document_dict() if latest else None,
                "latest_report_id": latest_report.id if latest_report else None,
                "analytics": self.analytics.summary(),
            },
        )

    async def report(self, fmt: str = "json") -> OperationResult:
        """Render the latest report; without one, audit the store now"""
        report = await self.reports.latest()
        if report is None:
            report = await self.analytics.build_report(RunKind.AUDIT, RunStatus.SUCCESS, duration_ms=0.0)
            await self.reports.save(report)
        try:
            content = render(report, fmt)
        except ValueError as e:
            return OperationResult(operation="report", success=False, status=RunStatus.FAILED.value,
                                   message=str(e), errors=[str(e)])
        return OperationResult(
            operation="report",
            success=True,
            status=RunStatus.SUCCESS.value,
            message=f"Report {report.id}",
            report_id=report.id,
            data={"format": fmt, "content": content},
        )


def build_runner(
    session_maker: Optional[async_sessionmaker] = None,
    client: Optional[PlatformClient] = None
) -> OperationRunner:
    """Runner wired from application settings"""
    return OperationRunner(
        session_maker=session_maker or get_session_maker(),
        client=client or HashnodeClient(),
    )
