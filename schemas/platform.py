"""
Pydantic schemas for the external platform (Hashnode) boundary
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from core.clock import parse_timestamp
import enum


class ExternalTag(BaseModel):
    """Tag as delivered by the platform"""
    id: Optional[str] = None
    name: str
    slug: Optional[str] = None


class ExternalSeries(BaseModel):
    """Series as delivered by the platform"""
    id: Optional[str] = None
    name: str
    slug: Optional[str] = None


class ExternalPost(BaseModel):
    """
    A post as returned by the platform API.

    Title and slug are optional here on purpose: records missing them are
    reported as per-record validation errors by the migration engine rather
    than rejected while a whole page is parsed.
    """
    id: str
    title: Optional[str] = None
    subtitle: Optional[str] = None
    slug: Optional[str] = None
    url: Optional[str] = None
    brief: Optional[str] = None
    content_markdown: str = ""
    published_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_published: bool = True
    cover_image_url: Optional[str] = None
    tags: List[ExternalTag] = Field(default_factory=list)
    series: Optional[ExternalSeries] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    og_image_url: Optional[str] = None
    disable_comments: bool = False

    @field_validator("published_at", "updated_at", mode="before")
    @classmethod
    def parse_dates(cls, v):
        """Accept ISO strings with a trailing Z; store naive UTC"""
        return parse_timestamp(v)

    @classmethod
    def from_graphql(cls, node: Dict[str, Any]) -> "ExternalPost":
        """Build from a GraphQL `Post` node"""
        content = node.get("content") or {}
        cover = node.get("coverImage") or {}
        seo = node.get("seo") or {}
        og = node.get("ogMetaData") or {}
        preferences = node.get("preferences") or {}
        series = node.get("series")

        return cls(
            id=str(node.get("id")),
            title=node.get("title"),
            subtitle=node.get("subtitle"),
            slug=node.get("slug"),
            url=node.get("url"),
            brief=node.get("brief"),
            content_markdown=content.get("markdown") or "",
            published_at=node.get("publishedAt"),
            updated_at=node.get("updatedAt") or node.get("publishedAt"),
            is_published=node.get("isPublished", node.get("publishedAt") is not None),
            cover_image_url=cover.get("url"),
            tags=[ExternalTag(**t) for t in (node.get("tags") or []) if t and t.get("name")],
            series=ExternalSeries(**series) if series and series.get("name") else None,
            meta_title=seo.get("title"),
            meta_description=seo.get("description"),
            og_image_url=og.get("image"),
            disable_comments=bool(preferences.get("disableComments", False)),
        )


class PostPage(BaseModel):
    """One page of posts plus the cursor for the next"""
    posts: List[ExternalPost] = Field(default_factory=list)
    has_next_page: bool = False
    end_cursor: Optional[str] = None


class PostInput(BaseModel):
    """Payload for creating or updating a post on the platform"""
    title: str
    slug: str
    content_markdown: str = ""
    subtitle: Optional[str] = None
    cover_image_url: Optional[str] = None
    tags: List[ExternalTag] = Field(default_factory=list)
    series_id: Optional[str] = None
    published_at: Optional[datetime] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    og_image_url: Optional[str] = None
    disable_comments: bool = False
    hide_from_feed: bool = False


class WebhookEvent(str, enum.Enum):
    """Inbound webhook event kinds"""
    CONTENT_PUBLISHED = "content_published"
    CONTENT_UPDATED = "content_updated"
    CONTENT_DELETED = "content_deleted"


class WebhookPost(BaseModel):
    id: str
    title: Optional[str] = None
    slug: Optional[str] = None
    url: Optional[str] = None


class WebhookPublication(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None


class WebhookPayload(BaseModel):
    """Signed inbound webhook body"""
    model_config = ConfigDict(use_enum_values=False)

    event: WebhookEvent
    post: WebhookPost
    publication: Optional[WebhookPublication] = None
    timestamp: datetime

    @field_validator("event", mode="before")
    @classmethod
    def normalize_event(cls, v):
        """Accept both `content_updated` and the platform's `POST_UPDATED` spelling"""
        if isinstance(v, str):
            v = v.strip().lower()
            aliases = {
                "post_published": "content_published",
                "post_updated": "content_updated",
                "post_deleted": "content_deleted",
            }
            return aliases.get(v, v)
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_ts(cls, v):
        parsed = parse_timestamp(v)
        if parsed is None:
            raise ValueError("timestamp must be an ISO-8601 string")
        return parsed
