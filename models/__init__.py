"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class and shared enums (ArticleStatus, SnapshotKind, ...)
    content: Articles, tags, series, users and the article/tag join table
    sync_queue: Durable retry queue for synchronization actions
    run_report: Audit rows for operator runs

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON on SQLite.

Usage:
    from models import Article, Tag, Series, User
    from models.base import ArticleStatus, EntityType

Relationships:
    - Article → Series (many-to-one)
    - Article → User (many-to-one, author)
    - Article ↔ Tag (many-to-many via ArticleTag)
"""

from models.base import (
    Base,
    EntityType,
    ArticleStatus,
    Visibility,
    UserRole,
    RunKind,
    RunStatus,
    SnapshotKind,
    SyncOperation,
    SyncItemState,
    ConflictPolicy,
)
from models.content import Article, ArticleTag, Series, Tag, User
from models.sync_queue import SyncQueueItem
from models.run_report import RunReportRecord

__all__ = [
    "Base",
    "EntityType",
    "ArticleStatus",
    "Visibility",
    "UserRole",
    "RunKind",
    "RunStatus",
    "SnapshotKind",
    "SyncOperation",
    "SyncItemState",
    "ConflictPolicy",
    "Article",
    "ArticleTag",
    "Series",
    "Tag",
    "User",
    "SyncQueueItem",
    "RunReportRecord",
]
