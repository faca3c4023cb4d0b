"""
Health check endpoint with database and sync status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from api.dependencies import get_db, get_runner
from core.exceptions import ContentSyncException
from operations.runner import OperationRunner
from schemas.api import HealthCheckResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    runner: OperationRunner = Depends(get_runner)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Sync loop and retry queue status
    - Latest snapshot
    """
    db_connected = False
    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database connection failed: {str(e)}")

    sync_status = None
    if db_connected:
        try:
            sync_status = await runner.sync.get_status()
        except (ContentSyncException, SQLAlchemyError) as e:
            logger.error(f"Failed to read sync status: {str(e)}")

    latest = runner.snapshots.latest_snapshot()

    return HealthCheckResponse(
        database_connected=db_connected,
        sync_running=runner.sync.is_running,
        pending_sync_operations=sync_status.pending_operations if sync_status else 0,
        failed_sync_operations=sync_status.failed_operations if sync_status else 0,
        latest_snapshot_id=latest.id if latest else None,
        latest_snapshot_at=latest.timestamp if latest else None,
    )
