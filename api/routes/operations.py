"""
Operator endpoints - migration, snapshots, sync and reports.

Every endpoint returns the same OperationResult the CLI prints, wrapped with
request metadata. Failed operations answer 422 (or 404 for unknown targets).
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from api.dependencies import get_runner
from core.exceptions import ContentSyncException, SnapshotIntegrityError, SnapshotNotFoundError
from models.base import EntityType
from operations.runner import OperationRunner
from schemas.api import BackupRequest, MigrateRequest, OperationResponse
from schemas.results import OperationResult
import logging
import time

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Operations"])


def _respond(request: Request, start_time: float, result: OperationResult) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "-")
    body = OperationResponse(
        request_id=request_id,
        api_latency_ms=int((time.time() - start_time) * 1000),
        result=result,
    )
    if not result.success:
        logger.warning(f"[{request_id}] {result.operation} failed: {result.message}")
    return JSONResponse(
        status_code=200 if result.success else 422,
        content=body.model_dump(mode="json"),
    )


# ============================================================================
# Migration
# ============================================================================

@router.post("/operations/migrate", response_model=OperationResponse)
async def migrate(
    request: Request,
    payload: MigrateRequest = MigrateRequest(),
    runner: OperationRunner = Depends(get_runner)
):
    """Import every platform post not yet in the content store"""
    start_time = time.time()
    result = await runner.migrate(
        dry_run=payload.dry_run,
        batch_size=payload.batch_size,
        backup=payload.backup,
    )
    return _respond(request, start_time, result)


# ============================================================================
# Snapshots
# ============================================================================

@router.get("/snapshots", response_model=OperationResponse)
async def list_snapshots(request: Request, runner: OperationRunner = Depends(get_runner)):
    start_time = time.time()
    return _respond(request, start_time, await runner.list_snapshots())


@router.post("/snapshots", response_model=OperationResponse)
async def create_snapshot(
    request: Request,
    payload: BackupRequest = BackupRequest(),
    runner: OperationRunner = Depends(get_runner)
):
    start_time = time.time()
    return _respond(request, start_time, await runner.backup(payload.kind.value, payload.description))


def _require_snapshot(runner: OperationRunner, snapshot_id: str):
    try:
        runner.snapshots.get_metadata(snapshot_id)
    except SnapshotNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.summary())
    except SnapshotIntegrityError:
        # Unreadable files still reach verify/restore, which report them as failures
        pass


@router.post("/snapshots/{snapshot_id}/verify", response_model=OperationResponse)
async def verify_snapshot(snapshot_id: str, request: Request, runner: OperationRunner = Depends(get_runner)):
    start_time = time.time()
    _require_snapshot(runner, snapshot_id)
    return _respond(request, start_time, await runner.verify(snapshot_id))


@router.post("/snapshots/{snapshot_id}/restore", response_model=OperationResponse)
async def restore_snapshot(snapshot_id: str, request: Request, runner: OperationRunner = Depends(get_runner)):
    """Replace the content store with the snapshot; all-or-nothing"""
    start_time = time.time()
    _require_snapshot(runner, snapshot_id)
    return _respond(request, start_time, await runner.restore(snapshot_id))


@router.delete("/snapshots/{snapshot_id}", response_model=OperationResponse)
async def delete_snapshot(snapshot_id: str, request: Request, runner: OperationRunner = Depends(get_runner)):
    start_time = time.time()
    _require_snapshot(runner, snapshot_id)
    return _respond(request, start_time, await runner.delete_snapshot(snapshot_id))


# ============================================================================
# Sync
# ============================================================================

@router.get("/sync/status")
async def sync_status(runner: OperationRunner = Depends(get_runner)):
    status = await runner.sync.get_status()
    return status.model_dump(mode="json")


@router.post("/sync/push/{slug}", response_model=OperationResponse)
async def push_article(slug: str, request: Request, runner: OperationRunner = Depends(get_runner)):
    """Push one local article to the platform, then drain the retry queue"""
    start_time = time.time()
    if await runner.repository.find_by_natural_key(EntityType.ARTICLE, slug) is None:
        raise HTTPException(status_code=404, detail=f"Article {slug} not found")
    return _respond(request, start_time, await runner.run_sync(push_slug=slug))


@router.post("/sync/drain", response_model=OperationResponse)
async def drain_queue(request: Request, runner: OperationRunner = Depends(get_runner)):
    start_time = time.time()
    return _respond(request, start_time, await runner.run_sync())


# ============================================================================
# Reports
# ============================================================================

@router.get("/reports/latest", response_model=OperationResponse)
async def latest_report(
    request: Request,
    format: str = Query("json", pattern="^(json|csv|html|table)$"),
    runner: OperationRunner = Depends(get_runner)
):
    start_time = time.time()
    try:
        result = await runner.report(format)
    except ContentSyncException as e:
        logger.error(f"Report rendering failed: {e.summary()}")
        raise HTTPException(status_code=503, detail="Content store unavailable")
    return _respond(request, start_time, result)
