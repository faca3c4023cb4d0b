"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, Dict, Any
from datetime import datetime
from core.clock import utcnow
from models.base import SnapshotKind
from schemas.results import OperationResult


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utcnow)
    database_connected: bool
    sync_running: bool = False
    pending_sync_operations: int = 0
    failed_sync_operations: int = 0
    latest_snapshot_id: Optional[str] = None
    latest_snapshot_at: Optional[datetime] = None

    @model_validator(mode="after")
    def determine_status(self):
        """Unhealthy without a database; degraded while sync items are failing"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.failed_sync_operations > 0:
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "sync_running": True,
                "pending_sync_operations": 2,
                "failed_sync_operations": 0,
                "latest_snapshot_id": "snapshot_20240115T100000000000_1a2b3c4d",
                "latest_snapshot_at": "2024-01-15T10:00:00Z",
            }
        }
    }


# ============================================================================
# Operation Schemas
# ============================================================================

class MigrateRequest(BaseModel):
    dry_run: bool = False
    batch_size: Optional[int] = Field(None, ge=1, le=1000)
    backup: Optional[bool] = None


class BackupRequest(BaseModel):
    kind: SnapshotKind = SnapshotKind.FULL
    description: str = ""


class OperationResponse(BaseModel):
    """Operation outcome plus request metadata"""
    request_id: str
    api_latency_ms: int
    result: OperationResult


class WebhookResponse(BaseModel):
    received: bool = True
    outcome: str
    detail: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
