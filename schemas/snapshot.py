"""
Pydantic schemas for snapshot documents and restore results
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from datetime import datetime
from models.base import SnapshotKind


class SnapshotCounts(BaseModel):
    articles: int = 0
    tags: int = 0
    series: int = 0
    users: int = 0


class SnapshotMetadata(BaseModel):
    """
    Metadata section of a snapshot document.

    Serialized with camelCase `schemaVersion` to match the on-disk format.
    """
    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)

    id: str
    timestamp: datetime
    kind: SnapshotKind
    description: str = ""
    size: int = 0
    checksum: str = ""
    counts: SnapshotCounts = Field(default_factory=SnapshotCounts)
    schema_version: str = Field("1.0.0", alias="schemaVersion")

    @property
    def is_complete(self) -> bool:
        """Full and pre-operation snapshots capture the whole store"""
        return self.kind in (SnapshotKind.FULL, SnapshotKind.PRE_OPERATION)

    def document_dict(self) -> dict:
        """Metadata as written into the document (camelCase, JSON types)"""
        return self.model_dump(mode="json", by_alias=True)


class RestoredCounts(BaseModel):
    articles: int = 0
    tags: int = 0
    series: int = 0
    users: int = 0
    removed: int = 0


class RestoreResult(BaseModel):
    """Outcome of a restore attempt"""
    success: bool = False
    snapshot_id: str
    pre_restore_snapshot_id: Optional[str] = None
    restored: RestoredCounts = Field(default_factory=RestoredCounts)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class RetentionResult(BaseModel):
    """Outcome of a retention sweep"""
    deleted: List[str] = Field(default_factory=list)
    kept: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
