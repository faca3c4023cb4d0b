"""
Unit tests for post transformers
"""

import pytest
from datetime import datetime
from core.exceptions import ConversionError
from migration.transformers import (
    PostTransformer,
    content_document,
    document_markdown,
    extract_excerpt,
    reading_minutes,
    slugify,
)
from models.base import ArticleStatus, Visibility
from schemas.platform import ExternalPost, ExternalSeries, ExternalTag


class TestHelpers:
    """Text helpers used during conversion"""

    def test_slugify(self):
        assert slugify("Hello, World!") == "hello-world"
        assert slugify("  Async   Python__Tips -- 2024 ") == "async-python-tips-2024"
        assert slugify("") == ""

    def test_extract_excerpt_strips_markdown(self):
        assert extract_excerpt("# Title\n\nSome **bold** `code`") == "Title\n\nSome bold code"

    def test_extract_excerpt_truncates(self):
        excerpt = extract_excerpt("word " * 100)
        assert excerpt.endswith("...")
        assert len(excerpt) == 163

    def test_reading_minutes(self):
        assert reading_minutes("") == 1
        assert reading_minutes("word " * 200) == 1
        assert reading_minutes("word " * 401) == 3

    def test_content_document_round_trip(self):
        markdown = "First paragraph.\n\nSecond paragraph."
        document = content_document(markdown)

        assert document["type"] == "doc"
        assert len(document["content"]) == 2
        assert document_markdown(document) == markdown

    def test_document_markdown_handles_empty(self):
        assert document_markdown(None) == ""
        assert document_markdown({"type": "doc", "content": []}) == ""


class TestPostTransformer:
    """Mapping between platform posts and local articles"""

    def test_to_local_published_post(self, post_factory):
        post = post_factory(7, disable_comments=True)
        article = PostTransformer().to_local(post, author_email="admin@example.com")

        assert article["slug"] == "post-7"
        assert article["external_id"] == "hn-7"
        assert article["status"] == ArticleStatus.PUBLISHED
        assert article["visibility"] == Visibility.PUBLIC
        assert article["allow_comments"] is False
        assert article["published_at"] == datetime(2024, 1, 8, 10, 0, 0)
        assert article["updated_at"] == datetime(2024, 1, 8, 12, 0, 0)
        assert article["author_email"] == "admin@example.com"
        assert article["tag_slugs"] == ["python"]
        assert article["series_slug"] is None
        assert article["content_json"]["type"] == "doc"
        assert "**" not in article["excerpt"]

    def test_to_local_draft_has_no_published_at(self, post_factory):
        post = post_factory(8, is_published=False)
        article = PostTransformer().to_local(post)

        assert article["status"] == ArticleStatus.DRAFT
        assert article["published_at"] is None

    def test_to_local_uses_brief_for_empty_body(self, post_factory):
        post = post_factory(9, content_markdown="", brief="Short brief")
        article = PostTransformer().to_local(post)

        assert article["excerpt"] == "Short brief"
        assert article["reading_minutes"] == 1

    def test_tag_records_deduplicate_by_slug(self):
        post = ExternalPost(
            id="hn-1",
            title="Tags",
            slug="tags",
            tags=[ExternalTag(name="Python"), ExternalTag(name="python"), ExternalTag(name="Web Dev")],
        )
        records = PostTransformer().tag_records(post)

        assert [r["slug"] for r in records] == ["python", "web-dev"]

    def test_series_record_slugifies_name(self):
        post = ExternalPost(id="hn-1", title="S", slug="s", series=ExternalSeries(id="s-9", name="Deep Dive"))
        record = PostTransformer().series_record(post)

        assert record == {"title": "Deep Dive", "slug": "deep-dive", "external_id": "s-9"}

    def test_to_external(self):
        article = {
            "title": "Local article",
            "slug": "local-article",
            "content_mdx": "Body",
            "visibility": "UNLISTED",
            "allow_comments": False,
            "published_at": "2024-02-01T09:00:00",
            "meta_title": "Meta",
        }
        tags = [{"name": "Python", "slug": "python", "external_id": "t-1"}]
        series = {"title": "Series", "slug": "series", "external_id": "s-1"}

        post_input = PostTransformer().to_external(article, tags, series)

        assert post_input.title == "Local article"
        assert post_input.content_markdown == "Body"
        assert post_input.hide_from_feed is True
        assert post_input.disable_comments is True
        assert post_input.series_id == "s-1"
        assert post_input.tags[0].id == "t-1"
        assert post_input.published_at == datetime(2024, 2, 1, 9, 0, 0)

    def test_to_external_falls_back_to_json_content(self):
        article = {
            "title": "JSON only",
            "slug": "json-only",
            "content_mdx": None,
            "content_json": content_document("One\n\nTwo"),
        }
        post_input = PostTransformer().to_external(article)

        assert post_input.content_markdown == "One\n\nTwo"
        assert post_input.hide_from_feed is False

    def test_to_external_requires_title(self):
        with pytest.raises(ConversionError) as exc_info:
            PostTransformer().to_external({"title": " ", "slug": "untitled"})

        assert exc_info.value.context["field_name"] == "title"
