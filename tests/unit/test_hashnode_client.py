"""
Unit tests for the Hashnode GraphQL client
"""

import json
import httpx
import pytest
from core.exceptions import (
    AuthenticationError,
    NetworkError,
    PlatformAPIError,
    PlatformConnectionError,
    PlatformValidationError,
    RateLimitError,
    ResourceNotFoundError,
    is_retryable,
)
from hashnode.client import HashnodeClient
from schemas.platform import PostInput


def post_node(index: int) -> dict:
    return {
        "id": f"hn-{index}",
        "title": f"Post {index}",
        "slug": f"post-{index}",
        "brief": "brief",
        "content": {"markdown": f"Body {index}"},
        "publishedAt": "2024-01-15T10:00:00Z",
        "updatedAt": "2024-01-16T10:00:00Z",
        "coverImage": {"url": "https://cdn.example.com/c.png"},
        "tags": [{"id": "t1", "name": "Python", "slug": "python"}],
        "series": {"id": "s1", "name": "Series", "slug": "series"},
        "seo": {"title": "SEO title", "description": "SEO description"},
        "ogMetaData": {"image": "https://cdn.example.com/og.png"},
        "preferences": {"disableComments": True},
    }


def make_client(handler, max_retries: int = 3) -> HashnodeClient:
    return HashnodeClient(
        api_url="https://gql.example.com",
        api_token="token",
        publication_id="pub-1",
        max_retries=max_retries,
        retry_delay=0,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_fetch_page_parses_posts():
    """GraphQL page is mapped onto ExternalPost models"""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"data": {"publication": {"posts": {
            "edges": [{"node": post_node(1)}, {"node": post_node(2)}],
            "pageInfo": {"hasNextPage": True, "endCursor": "cursor-2"},
        }}}})

    page = await make_client(handler).fetch_page(first=100)

    assert [p.id for p in page.posts] == ["hn-1", "hn-2"]
    assert page.has_next_page is True
    assert page.end_cursor == "cursor-2"
    # Page size is capped by the platform limit
    assert requests[0]["variables"]["first"] == 50

    post = page.posts[0]
    assert post.content_markdown == "Body 1"
    assert post.tags[0].slug == "python"
    assert post.series.name == "Series"
    assert post.meta_title == "SEO title"
    assert post.disable_comments is True
    assert post.published_at.tzinfo is None


@pytest.mark.asyncio
async def test_iterate_pages_follows_cursor():
    def handler(request: httpx.Request) -> httpx.Response:
        after = json.loads(request.content)["variables"]["after"]
        if after is None:
            body = {"edges": [{"node": post_node(1)}], "pageInfo": {"hasNextPage": True, "endCursor": "c1"}}
        else:
            body = {"edges": [{"node": post_node(2)}], "pageInfo": {"hasNextPage": False, "endCursor": None}}
        return httpx.Response(200, json={"data": {"publication": {"posts": body}}})

    ids = []
    async for page in make_client(handler).iterate_pages(page_size=1):
        ids.extend(p.id for p in page.posts)

    assert ids == ["hn-1", "hn-2"]


@pytest.mark.asyncio
async def test_server_error_retried_then_succeeds():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, json={"data": {"publication": {"posts": {"totalDocuments": 12}}}})

    assert await make_client(handler).count_posts() == 12
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_server_error_exhausts_retries():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(NetworkError) as exc_info:
        await make_client(handler, max_retries=2).count_posts()

    assert is_retryable(exc_info.value)


@pytest.mark.asyncio
async def test_unauthorized_not_retried():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(401, json={"message": "bad token"})

    with pytest.raises(AuthenticationError) as exc_info:
        await make_client(handler).count_posts()

    assert calls["count"] == 1
    assert not is_retryable(exc_info.value)


@pytest.mark.asyncio
async def test_rate_limit_uses_retry_after():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(429, headers={"Retry-After": "0"})

    with pytest.raises(RateLimitError):
        await make_client(handler, max_retries=2).count_posts()

    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_connect_error_becomes_connection_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    with pytest.raises(PlatformConnectionError):
        await make_client(handler, max_retries=2).count_posts()


@pytest.mark.asyncio
@pytest.mark.parametrize("code,error_type", [
    ("UNAUTHENTICATED", AuthenticationError),
    ("NOT_FOUND", ResourceNotFoundError),
    ("BAD_USER_INPUT", PlatformValidationError),
    ("TOO_MANY_REQUESTS", RateLimitError),
    ("INTERNAL", PlatformAPIError),
])
async def test_graphql_errors_are_mapped(code, error_type):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"errors": [{"message": "nope", "extensions": {"code": code}}]})

    with pytest.raises(error_type):
        await make_client(handler).get_post("hn-1")


@pytest.mark.asyncio
async def test_get_post_missing_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"post": None}})

    assert await make_client(handler).get_post("hn-404") is None


@pytest.mark.asyncio
async def test_test_connection_missing_publication():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"publication": None}})

    with pytest.raises(PlatformConnectionError):
        await make_client(handler).test_connection()


@pytest.mark.asyncio
async def test_test_connection_auth_failure_is_connection_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403)

    with pytest.raises(PlatformConnectionError):
        await make_client(handler).test_connection()


@pytest.mark.asyncio
async def test_create_post_sends_input():
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"data": {"publishPost": {"post": post_node(42)}}})

    created = await make_client(handler).create_post(PostInput(
        title="New", slug="new", content_markdown="Body", cover_image_url="https://cdn.example.com/x.png",
        disable_comments=True,
    ))

    assert created.id == "hn-42"
    post_input = sent[0]["variables"]["input"]
    assert post_input["publicationId"] == "pub-1"
    assert post_input["contentMarkdown"] == "Body"
    assert post_input["settings"]["disableComments"] is True
    assert post_input["coverImageOptions"] == {"coverImageURL": "https://cdn.example.com/x.png"}


@pytest.mark.asyncio
async def test_circuit_breaker_opens_after_repeated_failures():
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(401)

    client = make_client(handler)
    for _ in range(5):
        with pytest.raises(AuthenticationError):
            await client.count_posts()

    with pytest.raises(NetworkError, match="Circuit breaker"):
        await client.count_posts()
    assert calls["count"] == 5
