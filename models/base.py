from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite for local runs and tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class EntityType(str, enum.Enum):
    """Content entity types managed through the repository"""
    ARTICLE = "article"
    TAG = "tag"
    SERIES = "series"
    USER = "user"


class ArticleStatus(str, enum.Enum):
    """Local article lifecycle"""
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class Visibility(str, enum.Enum):
    """Article visibility"""
    PUBLIC = "PUBLIC"
    UNLISTED = "UNLISTED"
    PRIVATE = "PRIVATE"


class UserRole(str, enum.Enum):
    """Author roles"""
    ADMIN = "ADMIN"
    EDITOR = "EDITOR"
    AUTHOR = "AUTHOR"


class RunKind(str, enum.Enum):
    """Operator-triggered run kinds"""
    MIGRATION = "migration"
    SYNC = "sync"
    BACKUP = "backup"
    RESTORE = "restore"
    AUDIT = "audit"


class RunStatus(str, enum.Enum):
    """Terminal status of a run"""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SnapshotKind(str, enum.Enum):
    """Snapshot kinds"""
    FULL = "full"
    INCREMENTAL = "incremental"
    PRE_OPERATION = "pre_operation"


class SyncOperation(str, enum.Enum):
    """Queued synchronization actions"""
    PUSH = "push"  # local -> platform, target is the local slug
    PULL = "pull"  # platform -> local, target is the external post id


class SyncItemState(str, enum.Enum):
    """Retry queue item state machine"""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


class ConflictPolicy(str, enum.Enum):
    """Which side wins when both copies of a record changed"""
    LOCAL_WINS = "local_wins"
    EXTERNAL_WINS = "external_wins"
    NEWEST_WINS = "newest_wins"
    MANUAL_FLAG = "manual_flag"
