"""
Convert posts between the platform schema and local article records
"""

from typing import Dict, Any, Optional, List
import math
import re
from core.clock import parse_timestamp, utcnow
from core.exceptions import ConversionError
from models.base import ArticleStatus, Visibility
from schemas.platform import ExternalPost, ExternalTag, PostInput

EXCERPT_LENGTH = 160
WORDS_PER_MINUTE = 200

_MARKDOWN_MARKERS = re.compile(r"[#*`]")
_NON_WORD = re.compile(r"[^\w\s-]")
_SEPARATORS = re.compile(r"[\s_-]+")


def slugify(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace and dashes"""
    slug = _NON_WORD.sub("", (text or "").lower().strip())
    slug = _SEPARATORS.sub("-", slug)
    return slug.strip("-")


def extract_excerpt(content: str, max_length: int = EXCERPT_LENGTH) -> str:
    plain = _MARKDOWN_MARKERS.sub("", content or "").strip()
    if len(plain) > max_length:
        return plain[:max_length] + "..."
    return plain


def reading_minutes(content: str) -> int:
    words = len((content or "").split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def content_document(markdown: str) -> Dict[str, Any]:
    """Editor document wrapping the markdown body, one paragraph per block"""
    blocks = [block.strip() for block in (markdown or "").split("\n\n") if block.strip()]
    return {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": block}]}
            for block in blocks
        ],
    }


def document_markdown(document: Optional[Dict[str, Any]]) -> str:
    """Inverse of content_document for articles that carry only JSON content"""
    if not document:
        return ""
    paragraphs = []
    for node in document.get("content") or []:
        text = "".join(child.get("text", "") for child in node.get("content") or [])
        if text:
            paragraphs.append(text)
    return "\n\n".join(paragraphs)


class PostTransformer:
    """
    Map platform posts onto local records and back.

    Field Mapping (platform -> local):
    - id -> external_id
    - is_published -> status PUBLISHED, otherwise DRAFT
    - content_markdown -> content_mdx, content_json, excerpt, reading_minutes
    - brief -> excerpt when the body is empty
    - tags[].slug (or slugified name) -> tag_slugs
    - series.name (slugified) -> series_slug
    - disable_comments -> allow_comments (negated)
    """

    def tag_records(self, post: ExternalPost) -> List[Dict[str, Any]]:
        records = {}
        for tag in post.tags:
            slug = slugify(tag.slug or tag.name)
            if slug and slug not in records:
                records[slug] = {"name": tag.name, "slug": slug, "external_id": tag.id}
        return list(records.values())

    def series_record(self, post: ExternalPost) -> Optional[Dict[str, Any]]:
        if post.series is None:
            return None
        slug = slugify(post.series.slug or post.series.name)
        if not slug:
            return None
        return {"title": post.series.name, "slug": slug, "external_id": post.series.id}

    def to_local(self, post: ExternalPost, author_email: Optional[str] = None) -> Dict[str, Any]:
        """Article record for a platform post (relationships by natural key)"""
        body = post.content_markdown or ""
        series = self.series_record(post)
        status = ArticleStatus.PUBLISHED if post.is_published else ArticleStatus.DRAFT

        return {
            "title": post.title,
            "subtitle": post.subtitle,
            "slug": post.slug,
            "external_id": post.id,
            "status": status,
            "visibility": Visibility.PUBLIC,
            "excerpt": extract_excerpt(body) if body.strip() else (post.brief or ""),
            "content_mdx": body,
            "content_json": content_document(body),
            "reading_minutes": reading_minutes(body),
            "cover_url": post.cover_image_url,
            "meta_title": post.meta_title,
            "meta_description": post.meta_description,
            "og_image_url": post.og_image_url,
            "allow_comments": not post.disable_comments,
            "published_at": post.published_at if post.is_published else None,
            "updated_at": post.updated_at or utcnow(),
            "author_email": author_email,
            "series_slug": series["slug"] if series else None,
            "tag_slugs": [tag["slug"] for tag in self.tag_records(post)],
        }

    def to_external(
        self,
        article: Dict[str, Any],
        tags: Optional[List[Dict[str, Any]]] = None,
        series: Optional[Dict[str, Any]] = None
    ) -> PostInput:
        """PostInput for a local article; tags and series are the linked records"""
        for field_name in ("title", "slug"):
            if not (article.get(field_name) or "").strip():
                raise ConversionError(
                    f"Article is missing '{field_name}'",
                    context={"entity": "article", "key": article.get("slug"), "field_name": field_name}
                )

        body = article.get("content_mdx") or document_markdown(article.get("content_json"))
        visibility = article.get("visibility") or Visibility.PUBLIC

        return PostInput(
            title=article["title"],
            slug=article["slug"],
            content_markdown=body,
            subtitle=article.get("subtitle"),
            cover_image_url=article.get("cover_url"),
            tags=[
                ExternalTag(id=tag.get("external_id"), name=tag["name"], slug=tag["slug"])
                for tag in tags or []
            ],
            series_id=(series or {}).get("external_id"),
            published_at=parse_timestamp(article.get("published_at")),
            meta_title=article.get("meta_title"),
            meta_description=article.get("meta_description"),
            og_image_url=article.get("og_image_url"),
            disable_comments=not article.get("allow_comments", True),
            hide_from_feed=Visibility(visibility) != Visibility.PUBLIC,
        )
