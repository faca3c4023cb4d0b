from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Enum, ForeignKey, Index
)
from sqlalchemy.orm import relationship
from core.clock import utcnow
from models.base import Base, JSONType, ArticleStatus, Visibility, UserRole


class User(Base):
    """
    Article authors.

    Natural key: email
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(320), nullable=False, unique=True, index=True)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.AUTHOR)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow, index=True)

    articles = relationship("Article", back_populates="author")


class Tag(Base):
    """
    Article tags.

    Natural key: slug (normalised, so "Python" and "python" share a tag)
    """
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(200), nullable=False, unique=True, index=True)
    external_id = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow, index=True)


class Series(Base):
    """
    Article series.

    Natural key: slug
    """
    __tablename__ = "series"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False)
    slug = Column(String(500), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    external_id = Column(String(255), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow, index=True)

    articles = relationship("Article", back_populates="series")


class ArticleTag(Base):
    """Many-to-many join between articles and tags"""
    __tablename__ = "article_tags"

    article_id = Column(Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True)
    tag_id = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)


class Article(Base):
    """
    Local copy of a blog article.

    Natural keys:
    - slug: always present, unique
    - external_id: platform post id, unique when linked

    Field Mapping Strategy (platform -> local):
    - id -> external_id
    - title / subtitle / slug -> title / subtitle / slug
    - content.markdown -> content_mdx (+ derived content_json, excerpt, reading_minutes)
    - publishedAt -> published_at, status PUBLISHED (DRAFT when unpublished)
    - coverImage.url -> cover_url
    - seo.title / seo.description / ogMetaData.image -> meta_title / meta_description / og_image_url
    - tags[] -> article_tags (tag created if absent)
    - series -> series_id (series created if absent)
    """
    __tablename__ = "articles"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identity
    slug = Column(String(500), nullable=False, unique=True, index=True)
    external_id = Column(String(255), nullable=True, unique=True, index=True)

    # Content
    title = Column(String(500), nullable=False)
    subtitle = Column(String(500), nullable=True)
    excerpt = Column(Text, nullable=True)
    content_mdx = Column(Text, nullable=True)
    content_json = Column(JSONType, nullable=True)
    reading_minutes = Column(Integer, nullable=True)
    cover_url = Column(String(2048), nullable=True)

    # SEO
    meta_title = Column(String(500), nullable=True)
    meta_description = Column(Text, nullable=True)
    og_image_url = Column(String(2048), nullable=True)

    # Lifecycle
    status = Column(Enum(ArticleStatus), nullable=False, default=ArticleStatus.DRAFT, index=True)
    visibility = Column(Enum(Visibility), nullable=False, default=Visibility.PUBLIC)
    allow_comments = Column(Boolean, nullable=False, default=True)
    published_at = Column(DateTime, nullable=True, index=True)

    # Sync review flag (manual conflict policy)
    needs_review = Column(Boolean, nullable=False, default=False)
    review_reason = Column(Text, nullable=True)

    # Relationships
    author_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    series_id = Column(Integer, ForeignKey("series.id"), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow, index=True)

    author = relationship("User", back_populates="articles")
    series = relationship("Series", back_populates="articles")

    __table_args__ = (
        Index("idx_article_status_published", "status", "published_at"),
    )
