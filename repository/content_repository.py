"""
Content repository: storage of articles, tags, series and users keyed by
natural key.

The engine components only talk to `ContentRepository`; the SQLAlchemy
implementation below is the production store. Upserts are single
conditional statements (INSERT ... ON CONFLICT) so concurrent writers can
never create two rows for one natural key.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar
import enum
import logging

from pydantic import BaseModel, Field
from sqlalchemy import and_, case, delete, func, not_, select, text, true, update as sa_update
from sqlalchemy import DateTime, Enum as SAEnum, String, Text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from core.clock import parse_timestamp, utcnow
from core.exceptions import (
    DatabaseConnectionError,
    DuplicateRecordError,
    RecordError,
    RecordNotFoundError,
)
from models.base import EntityType
from models.content import Article, ArticleTag, Series, Tag, User

logger = logging.getLogger(__name__)

T = TypeVar("T")

MODELS = {
    EntityType.ARTICLE: Article,
    EntityType.TAG: Tag,
    EntityType.SERIES: Series,
    EntityType.USER: User,
}

NATURAL_KEYS = {
    EntityType.ARTICLE: "slug",
    EntityType.TAG: "slug",
    EntityType.SERIES: "slug",
    EntityType.USER: "email",
}

# Columns never copied between stores
_INTERNAL_COLUMNS = {"id", "author_id", "series_id"}


class AggregateQuery(BaseModel):
    """
    Aggregate request for one entity type.

    group_by: column name, or for articles one of "tag", "series", "author"
    count_non_null: columns counted when present and non-empty; "tags" counts
        articles having at least one tag
    averages: numeric columns, or "content_length" for articles
    """
    group_by: Optional[str] = None
    count_non_null: List[str] = Field(default_factory=list)
    averages: List[str] = Field(default_factory=list)


class AggregateResult(BaseModel):
    total: int = 0
    non_null: Dict[str, int] = Field(default_factory=dict)
    groups: Dict[str, int] = Field(default_factory=dict)
    averages: Dict[str, float] = Field(default_factory=dict)


class ContentRepository(ABC):
    """
    Storage interface consumed by the snapshot store, migration engine,
    sync coordinator and analytics collector.

    Records are exchanged as plain dictionaries. Article dictionaries carry
    their relationships by natural key: `author_email`, `series_slug` and
    `tag_slugs`.
    """

    @abstractmethod
    async def ping(self) -> None:
        """Raise DatabaseConnectionError when the store is unreachable"""

    @abstractmethod
    async def find_by_natural_key(self, entity: EntityType, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def find_article_by_external_id(self, external_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_records(
        self, entity: EntityType, updated_since: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_article_tags(self) -> List[Dict[str, str]]:
        """Join entries as {"article": slug, "tag": slug}"""

    @abstractmethod
    async def create(self, entity: EntityType, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert; raises DuplicateRecordError if the natural key exists"""

    @abstractmethod
    async def update(self, entity: EntityType, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Update in place; raises RecordNotFoundError if absent"""

    @abstractmethod
    async def upsert(self, entity: EntityType, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create or update by natural key in one conditional write"""

    @abstractmethod
    async def ensure(self, entity: EntityType, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create if absent, otherwise return the existing record untouched"""

    @abstractmethod
    async def set_article_tags(self, article_slug: str, tag_slugs: Iterable[str]) -> None:
        pass

    @abstractmethod
    async def delete_missing(self, entity: EntityType, keep_keys: Iterable[str]) -> int:
        """Delete every record whose natural key is not in keep_keys"""

    @abstractmethod
    async def lock_for_restore(self) -> None:
        """Take an exclusive multi-table lock (inside a transaction)"""

    @abstractmethod
    async def with_transaction(self, fn: Callable[["ContentRepository"], Awaitable[T]]) -> T:
        """Run fn against a transactional repository; commit on success, roll back on error"""

    @abstractmethod
    async def aggregate(self, entity: EntityType, query: AggregateQuery) -> AggregateResult:
        pass


class SQLAlchemyContentRepository(ContentRepository):
    """
    ContentRepository backed by SQLAlchemy async sessions.

    Each call opens and commits its own session, unless the repository was
    handed a session by `with_transaction`, in which case all calls share
    that session and the caller's transaction decides commit or rollback.
    """

    def __init__(self, session_maker: async_sessionmaker, session: Optional[AsyncSession] = None):
        self.session_maker = session_maker
        self._session = session

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _session_scope(self):
        if self._session is not None:
            with self._translate_errors():
                yield self._session
            return

        with self._translate_errors():
            async with self.session_maker() as session:
                try:
                    yield session
                    await session.commit()
                except BaseException:
                    await session.rollback()
                    raise

    @staticmethod
    @contextmanager
    def _translate_errors():
        """Map driver errors onto the domain exception hierarchy"""
        try:
            yield
        except IntegrityError as e:
            raise DuplicateRecordError(
                "Natural key or unique constraint violated",
                context={"operation": "write"},
                original_exception=e
            ) from e
        except (OperationalError, InterfaceError, ConnectionError, OSError) as e:
            raise DatabaseConnectionError(
                "Content store unavailable",
                context={"store": "database"},
                original_exception=e
            ) from e

    async def with_transaction(self, fn):
        if self._session is not None:
            # Nested call: join the outer transaction
            return await fn(self)

        with self._translate_errors():
            async with self.session_maker() as session:
                async with session.begin():
                    tx_repo = SQLAlchemyContentRepository(self.session_maker, session=session)
                    return await fn(tx_repo)

    async def ping(self) -> None:
        async with self._session_scope() as session:
            await session.execute(text("SELECT 1"))

    async def lock_for_restore(self) -> None:
        async with self._session_scope() as session:
            conn = await session.connection()
            if conn.dialect.name == "postgresql":
                await session.execute(text(
                    "LOCK TABLE article_tags, articles, tags, series, users IN EXCLUSIVE MODE"
                ))
            # SQLite serializes writers at the database level

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_natural_key(self, entity, key):
        model = MODELS[entity]
        key_col = getattr(model, NATURAL_KEYS[entity])
        async with self._session_scope() as session:
            row = (await session.execute(select(model).where(key_col == key))).scalar_one_or_none()
            if row is None:
                return None
            return await self._to_record(session, entity, row)

    async def find_article_by_external_id(self, external_id):
        async with self._session_scope() as session:
            row = (await session.execute(
                select(Article).where(Article.external_id == external_id)
            )).scalar_one_or_none()
            if row is None:
                return None
            return await self._to_record(session, EntityType.ARTICLE, row)

    async def list_records(self, entity, updated_since=None):
        model = MODELS[entity]
        key_col = getattr(model, NATURAL_KEYS[entity])
        query = select(model).order_by(key_col)
        if updated_since is not None:
            query = query.where(model.updated_at > updated_since)

        async with self._session_scope() as session:
            rows = (await session.execute(query)).scalars().all()
            if entity != EntityType.ARTICLE:
                return [self._columns(row) for row in rows]

            authors = await self._id_map(session, User, "email")
            series = await self._id_map(session, Series, "slug")
            tags_by_article = await self._tags_by_article(session)
            return [
                self._article_record(row, authors, series, tags_by_article)
                for row in rows
            ]

    async def list_article_tags(self):
        query = (
            select(Article.slug, Tag.slug)
            .join(ArticleTag, ArticleTag.article_id == Article.id)
            .join(Tag, Tag.id == ArticleTag.tag_id)
            .order_by(Article.slug, Tag.slug)
        )
        async with self._session_scope() as session:
            rows = (await session.execute(query)).all()
        return [{"article": article, "tag": tag} for article, tag in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, entity, data):
        model = MODELS[entity]
        key_name = NATURAL_KEYS[entity]
        async with self._session_scope() as session:
            values, tag_slugs = await self._prepare_values(session, entity, data)
            if not values.get(key_name):
                raise RecordError(
                    f"Missing natural key '{key_name}'",
                    context={"entity": entity.value}
                )
            row = model(**values)
            session.add(row)
            await session.flush()
            if tag_slugs is not None:
                await self._replace_tags(session, row.id, tag_slugs)
            return await self._to_record(session, entity, row)

    async def update(self, entity, key, data):
        model = MODELS[entity]
        key_col = getattr(model, NATURAL_KEYS[entity])
        async with self._session_scope() as session:
            row = (await session.execute(select(model).where(key_col == key))).scalar_one_or_none()
            if row is None:
                raise RecordNotFoundError(
                    f"{entity.value} '{key}' not found",
                    context={"entity": entity.value, "key": key}
                )
            values, tag_slugs = await self._prepare_values(session, entity, data)
            for name, value in values.items():
                setattr(row, name, value)
            row.updated_at = values.get("updated_at") or utcnow()
            # Always part of the SET clause, so the column's onupdate never overrides it
            flag_modified(row, "updated_at")
            await session.flush()
            if tag_slugs is not None:
                await self._replace_tags(session, row.id, tag_slugs)
            return await self._to_record(session, entity, row)

    async def upsert(self, entity, key, data):
        return await self._conditional_insert(entity, key, data, overwrite=True)

    async def ensure(self, entity, key, data):
        return await self._conditional_insert(entity, key, data, overwrite=False)

    async def _conditional_insert(self, entity, key, data, overwrite):
        model = MODELS[entity]
        key_name = NATURAL_KEYS[entity]
        async with self._session_scope() as session:
            values, tag_slugs = await self._prepare_values(session, entity, data)
            values[key_name] = key
            now = utcnow()
            values["created_at"] = values.get("created_at") or now
            values["updated_at"] = values.get("updated_at") or now

            insert = self._insert_for(await session.connection(), model)
            stmt = insert.values(**values)
            if overwrite:
                update_cols = {
                    name: stmt.excluded[name]
                    for name in values
                    if name not in (key_name, "created_at")
                }
                stmt = stmt.on_conflict_do_update(index_elements=[key_name], set_=update_cols)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=[key_name])
            await session.execute(stmt)

            key_col = getattr(model, NATURAL_KEYS[entity])
            row = (await session.execute(
                select(model).where(key_col == key).execution_options(populate_existing=True)
            )).scalar_one()
            if overwrite and tag_slugs is not None:
                await self._replace_tags(session, row.id, tag_slugs)
            return await self._to_record(session, entity, row)

    async def set_article_tags(self, article_slug, tag_slugs):
        async with self._session_scope() as session:
            article_id = (await session.execute(
                select(Article.id).where(Article.slug == article_slug)
            )).scalar_one_or_none()
            if article_id is None:
                raise RecordNotFoundError(
                    f"article '{article_slug}' not found",
                    context={"entity": "article", "key": article_slug}
                )
            await self._replace_tags(session, article_id, list(tag_slugs))

    async def delete_missing(self, entity, keep_keys):
        model = MODELS[entity]
        key_col = getattr(model, NATURAL_KEYS[entity])
        keep = list(set(keep_keys))
        condition = not_(key_col.in_(keep)) if keep else true()

        async with self._session_scope() as session:
            doomed_ids = select(model.id).where(condition)
            if entity == EntityType.ARTICLE:
                await session.execute(delete(ArticleTag).where(ArticleTag.article_id.in_(doomed_ids)))
            elif entity == EntityType.TAG:
                await session.execute(delete(ArticleTag).where(ArticleTag.tag_id.in_(doomed_ids)))
            elif entity == EntityType.SERIES:
                await session.execute(
                    sa_update(Article).where(Article.series_id.in_(doomed_ids)).values(series_id=None)
                )
            elif entity == EntityType.USER:
                await session.execute(
                    sa_update(Article).where(Article.author_id.in_(doomed_ids)).values(author_id=None)
                )
            result = await session.execute(
                delete(model).where(condition).execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def aggregate(self, entity, query):
        model = MODELS[entity]
        result = AggregateResult()

        async with self._session_scope() as session:
            result.total = (await session.execute(
                select(func.count()).select_from(model)
            )).scalar() or 0

            for field in query.count_non_null:
                result.non_null[field] = await self._count_present(session, entity, model, field)

            for field in query.averages:
                if entity == EntityType.ARTICLE and field == "content_length":
                    expr = func.avg(func.length(func.coalesce(Article.content_mdx, "")))
                else:
                    expr = func.avg(getattr(model, field))
                value = (await session.execute(select(expr))).scalar()
                result.averages[field] = float(value) if value is not None else 0.0

            if query.group_by:
                result.groups = await self._group_counts(session, entity, model, query.group_by)

        return result

    async def _count_present(self, session, entity, model, field) -> int:
        if entity == EntityType.ARTICLE and field == "tags":
            value = (await session.execute(
                select(func.count(func.distinct(ArticleTag.article_id)))
            )).scalar()
            return value or 0

        column = getattr(model, field)
        present = column.isnot(None)
        if isinstance(column.type, SAEnum) or not isinstance(column.type, (String, Text)):
            condition = present
        else:
            condition = and_(present, column != "")
        value = (await session.execute(
            select(func.sum(case((condition, 1), else_=0)))
        )).scalar()
        return int(value or 0)

    async def _group_counts(self, session, entity, model, group_by) -> Dict[str, int]:
        if entity == EntityType.ARTICLE and group_by == "tag":
            query = (
                select(Tag.name, func.count(ArticleTag.article_id))
                .join(ArticleTag, ArticleTag.tag_id == Tag.id)
                .group_by(Tag.name)
            )
        elif entity == EntityType.ARTICLE and group_by == "series":
            query = (
                select(Series.title, func.count(Article.id))
                .join(Series, Series.id == Article.series_id)
                .group_by(Series.title)
            )
        elif entity == EntityType.ARTICLE and group_by == "author":
            query = (
                select(func.coalesce(User.name, "Unknown"), func.count(Article.id))
                .outerjoin(User, User.id == Article.author_id)
                .group_by(func.coalesce(User.name, "Unknown"))
            )
        else:
            column = getattr(model, group_by)
            query = select(column, func.count()).group_by(column)

        rows = (await session.execute(query)).all()
        groups = {}
        for key, count in rows:
            label = key.value if isinstance(key, enum.Enum) else str(key)
            groups[label] = int(count)
        return groups

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_for(conn, model):
        dialect = conn.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise NotImplementedError(f"Conditional upsert not supported for dialect {dialect}")

    async def _prepare_values(self, session, entity, data):
        """Coerce a record dict into column values; resolve article relations"""
        model = MODELS[entity]
        columns = model.__table__.columns
        values = {}
        for name, value in data.items():
            if name in _INTERNAL_COLUMNS or name not in columns:
                continue
            values[name] = self._coerce(columns[name], value)

        tag_slugs = None
        if entity == EntityType.ARTICLE:
            if "author_email" in data:
                values["author_id"] = await self._resolve_id(session, User, "email", data["author_email"])
            if "series_slug" in data:
                values["series_id"] = await self._resolve_id(session, Series, "slug", data["series_slug"])
            if "tag_slugs" in data and data["tag_slugs"] is not None:
                tag_slugs = list(data["tag_slugs"])
        return values, tag_slugs

    @staticmethod
    def _coerce(column, value):
        if value is None:
            return None
        if isinstance(column.type, DateTime) and not isinstance(value, datetime):
            return parse_timestamp(value)
        if isinstance(column.type, SAEnum) and column.type.enum_class is not None:
            enum_class = column.type.enum_class
            if not isinstance(value, enum_class):
                return enum_class(value)
        return value

    @staticmethod
    async def _resolve_id(session, model, key_name, key):
        if key is None:
            return None
        found = (await session.execute(
            select(model.id).where(getattr(model, key_name) == key)
        )).scalar_one_or_none()
        if found is None:
            raise RecordNotFoundError(
                f"Referenced {model.__tablename__} '{key}' not found",
                context={"table": model.__tablename__, "key": key}
            )
        return found

    async def _replace_tags(self, session, article_id, tag_slugs):
        await session.execute(delete(ArticleTag).where(ArticleTag.article_id == article_id))
        slugs = sorted(set(tag_slugs))
        if not slugs:
            return
        tag_ids = (await session.execute(select(Tag.id, Tag.slug).where(Tag.slug.in_(slugs)))).all()
        found = {slug for _, slug in tag_ids}
        missing = [slug for slug in slugs if slug not in found]
        if missing:
            raise RecordNotFoundError(
                f"Referenced tags not found: {', '.join(missing)}",
                context={"table": "tags", "keys": missing}
            )
        for tag_id, _ in tag_ids:
            session.add(ArticleTag(article_id=article_id, tag_id=tag_id))
        await session.flush()

    @staticmethod
    def _columns(row) -> Dict[str, Any]:
        record = {}
        for column in row.__table__.columns:
            if column.name in _INTERNAL_COLUMNS:
                continue
            value = getattr(row, column.name)
            if isinstance(value, enum.Enum):
                value = value.value
            record[column.name] = value
        return record

    async def _to_record(self, session, entity, row) -> Dict[str, Any]:
        if entity != EntityType.ARTICLE:
            return self._columns(row)
        record = self._columns(row)
        record["author_email"] = None
        record["series_slug"] = None
        if row.author_id is not None:
            record["author_email"] = (await session.execute(
                select(User.email).where(User.id == row.author_id)
            )).scalar_one_or_none()
        if row.series_id is not None:
            record["series_slug"] = (await session.execute(
                select(Series.slug).where(Series.id == row.series_id)
            )).scalar_one_or_none()
        record["tag_slugs"] = sorted((await session.execute(
            select(Tag.slug)
            .join(ArticleTag, ArticleTag.tag_id == Tag.id)
            .where(ArticleTag.article_id == row.id)
        )).scalars().all())
        return record

    @staticmethod
    async def _id_map(session, model, key_name) -> Dict[int, str]:
        rows = (await session.execute(select(model.id, getattr(model, key_name)))).all()
        return {row_id: key for row_id, key in rows}

    @staticmethod
    async def _tags_by_article(session) -> Dict[int, List[str]]:
        rows = (await session.execute(
            select(ArticleTag.article_id, Tag.slug).join(Tag, Tag.id == ArticleTag.tag_id)
        )).all()
        mapping: Dict[int, List[str]] = {}
        for article_id, slug in rows:
            mapping.setdefault(article_id, []).append(slug)
        return mapping

    def _article_record(self, row, authors, series, tags_by_article) -> Dict[str, Any]:
        record = self._columns(row)
        record["author_email"] = authors.get(row.author_id)
        record["series_slug"] = series.get(row.series_id)
        record["tag_slugs"] = sorted(tags_by_article.get(row.id, []))
        return record
