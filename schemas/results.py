"""
Pydantic schemas for migration, sync and operation results
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
import enum


class MigrationOptions(BaseModel):
    batch_size: int = Field(10, ge=1, le=1000)
    dry_run: bool = False


class PlannedAction(BaseModel):
    """What a dry run would have done for one record"""
    external_id: str
    slug: Optional[str] = None
    action: str  # "create" | "skip" | "invalid"
    reason: Optional[str] = None


class MigrationResult(BaseModel):
    imported: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    planned: List[PlannedAction] = Field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = False
    duration_ms: float = 0.0

    @property
    def processed(self) -> int:
        return self.imported + self.failed + self.skipped

    @property
    def success_rate(self) -> float:
        """Share of attempted records that did not fail (0 when nothing ran)"""
        if self.processed == 0:
            return 0.0
        return (self.imported + self.skipped) / self.processed * 100


class SyncOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"
    FLAGGED = "flagged"
    IGNORED = "ignored"


class WebhookResult(BaseModel):
    event: str
    external_id: str
    outcome: SyncOutcome
    slug: Optional[str] = None
    detail: Optional[str] = None


class DrainResult(BaseModel):
    attempted: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    failed: int = 0


class SyncStatus(BaseModel):
    is_running: bool = False
    last_sync: Optional[datetime] = None
    pending_operations: int = 0
    failed_operations: int = 0
    total_operations: int = 0
    rejected_webhooks: int = 0
    flagged_conflicts: int = 0


class OperationResult(BaseModel):
    """Success/failure signal for CLI-equivalent operations"""
    operation: str
    success: bool
    status: str
    message: str = ""
    report_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1
