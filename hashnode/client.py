"""
Hashnode GraphQL client with retry logic and circuit breaker.

This module provides the external platform boundary with:
- Exponential backoff retry logic for transient failures
- Circuit breaker pattern to prevent hammering a failing platform
- Rate limit handling (HTTP 429 with Retry-After)
- Mapping of HTTP and GraphQL errors onto the exception hierarchy
- Bounded timeouts on every request
"""

import httpx
import asyncio
from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, AsyncIterator
from datetime import timedelta
from core.clock import utcnow, isoformat
from core.config import settings
from core.exceptions import (
    PlatformAPIError,
    PlatformConnectionError,
    PlatformValidationError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
    NonRetryableError,
)
from schemas.platform import ExternalPost, PostPage, PostInput
import logging

logger = logging.getLogger(__name__)

# Hashnode rejects page sizes above this
MAX_PAGE_SIZE = 50

# Backoff ceiling for in-request retries (seconds)
MAX_RETRY_DELAY = 10.0

POST_FIELDS = """
    id
    title
    subtitle
    slug
    url
    brief
    publishedAt
    updatedAt
    content { markdown }
    coverImage { url }
    tags { id name slug }
    series { id name slug }
    seo { title description }
    ogMetaData { image }
    preferences { disableComments }
"""

PUBLICATION_QUERY = """
query Publication($id: ObjectId!) {
  publication(id: $id) { id title }
}
"""

POST_COUNT_QUERY = """
query PostCount($id: ObjectId!) {
  publication(id: $id) { posts(first: 1) { totalDocuments } }
}
"""

POSTS_PAGE_QUERY = """
query PublicationPosts($id: ObjectId!, $first: Int!, $after: String) {
  publication(id: $id) {
    posts(first: $first, after: $after) {
      edges { node { %s } }
      pageInfo { hasNextPage endCursor }
    }
  }
}
""" % POST_FIELDS

POST_QUERY = """
query Post($id: ID!) {
  post(id: $id) { %s }
}
""" % POST_FIELDS

PUBLISH_POST_MUTATION = """
mutation PublishPost($input: PublishPostInput!) {
  publishPost(input: $input) { post { %s } }
}
""" % POST_FIELDS

UPDATE_POST_MUTATION = """
mutation UpdatePost($input: UpdatePostInput!) {
  updatePost(input: $input) { post { %s } }
}
""" % POST_FIELDS


class PlatformClient(ABC):
    """
    Operations the engine needs from the external platform.

    Implementations raise ConnectionFailure subclasses when the platform
    is unreachable and PlatformAPIError subclasses for rejected calls.
    """

    @abstractmethod
    async def test_connection(self) -> None:
        """Raise PlatformConnectionError when the platform cannot be reached"""

    @abstractmethod
    async def count_posts(self) -> int:
        pass

    @abstractmethod
    async def fetch_page(self, first: int, after: Optional[str] = None) -> PostPage:
        pass

    @abstractmethod
    async def get_post(self, post_id: str) -> Optional[ExternalPost]:
        pass

    @abstractmethod
    async def create_post(self, post: PostInput) -> ExternalPost:
        pass

    @abstractmethod
    async def update_post(self, post_id: str, post: PostInput) -> ExternalPost:
        pass

    async def iterate_pages(self, page_size: int) -> AsyncIterator[PostPage]:
        """Yield pages until the platform reports no next page"""
        after = None
        while True:
            page = await self.fetch_page(first=page_size, after=after)
            yield page
            if not page.has_next_page or not page.end_cursor:
                break
            after = page.end_cursor


class HashnodeClient(PlatformClient):
    """
    PlatformClient for the Hashnode GraphQL API.

    Attributes:
        max_retries: Maximum number of attempts per request (default: 3)
        retry_delay: Initial retry delay in seconds (default: 1.0)
        timeout: Request timeout in seconds (default: 30.0)
        circuit_breaker_threshold: Failures before circuit opens (default: 5)
        circuit_breaker_timeout: Seconds before circuit reset (default: 60)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        publication_id: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = api_url or settings.HASHNODE_API_URL
        self.api_token = api_token if api_token is not None else settings.HASHNODE_API_TOKEN
        self.publication_id = publication_id or settings.HASHNODE_PUBLICATION_ID
        self.max_retries = max_retries if max_retries is not None else settings.HTTP_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.HTTP_RETRY_DELAY_SECONDS
        self.timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

        # Circuit breaker state
        self._circuit_breaker_failures = 0
        self._circuit_breaker_threshold = 5
        self._circuit_breaker_open_until = None
        self._circuit_breaker_timeout = 60  # seconds

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def _is_circuit_open(self) -> bool:
        """Check if circuit breaker is open."""
        if self._circuit_breaker_open_until is None:
            return False

        if utcnow() >= self._circuit_breaker_open_until:
            logger.info("Circuit breaker reset for Hashnode")
            self._circuit_breaker_failures = 0
            self._circuit_breaker_open_until = None
            return False

        return True

    def _record_failure(self):
        """Record a failure and potentially open circuit breaker."""
        self._circuit_breaker_failures += 1

        if self._circuit_breaker_failures >= self._circuit_breaker_threshold:
            self._circuit_breaker_open_until = utcnow() + timedelta(
                seconds=self._circuit_breaker_timeout
            )
            logger.warning(
                f"Circuit breaker opened for Hashnode. "
                f"Will retry after {self._circuit_breaker_timeout} seconds."
            )

    def _record_success(self):
        """Record a successful request."""
        self._circuit_breaker_failures = 0
        self._circuit_breaker_open_until = None

    def _backoff(self, attempt: int) -> float:
        return min(self.retry_delay * (2 ** attempt), MAX_RETRY_DELAY)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": self.api_token or "",
            "Content-Type": "application/json",
        }

    async def _execute(self, operation: str, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one GraphQL operation with retry logic and exponential backoff.

        Returns:
            The `data` object of the GraphQL response

        Raises:
            PlatformConnectionError: Platform unreachable after all retries
            NetworkError: Timeouts or server errors after all retries
            RateLimitError: Still rate limited after all retries
            AuthenticationError / ResourceNotFoundError / PlatformValidationError:
                Non-retryable rejections, raised immediately
        """
        if self._is_circuit_open():
            raise NetworkError(
                "Circuit breaker is open for Hashnode",
                context={
                    "api_url": self.api_url,
                    "operation": operation,
                    "open_until": isoformat(self._circuit_breaker_open_until)
                }
            )

        context = {"api_url": self.api_url, "operation": operation}
        payload = {"query": query, "variables": variables}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(self.max_retries):
                last_attempt = attempt == self.max_retries - 1
                try:
                    logger.debug(f"{operation} attempt {attempt + 1}/{self.max_retries}")
                    response = await client.post(self.api_url, json=payload, headers=self._headers())
                except httpx.TimeoutException as e:
                    if not last_attempt:
                        delay = self._backoff(attempt)
                        logger.warning(f"Request timeout. Retrying in {delay} seconds")
                        await asyncio.sleep(delay)
                        continue
                    self._record_failure()
                    raise NetworkError(
                        f"Request timeout after {self.max_retries} retries",
                        context={**context, "timeout": self.timeout, "retry_count": attempt + 1},
                        original_exception=e
                    )
                except httpx.TransportError as e:
                    if not last_attempt:
                        delay = self._backoff(attempt)
                        logger.warning(f"Network error. Retrying in {delay} seconds")
                        await asyncio.sleep(delay)
                        continue
                    self._record_failure()
                    raise PlatformConnectionError(
                        f"Hashnode unreachable after {self.max_retries} retries",
                        context={**context, "store": "platform", "retry_count": attempt + 1},
                        original_exception=e
                    )

                if response.status_code in (401, 403):
                    self._record_failure()
                    raise AuthenticationError(
                        "Authentication failed for Hashnode",
                        context={**context, "status_code": response.status_code}
                    )

                if response.status_code == 429:
                    retry_after = self._retry_after(response, attempt)
                    if not last_attempt:
                        logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                        await asyncio.sleep(retry_after)
                        continue
                    self._record_failure()
                    raise RateLimitError(
                        "Rate limit exceeded for Hashnode",
                        context={**context, "status_code": 429, "retry_count": attempt + 1},
                        retry_after=retry_after
                    )

                if response.status_code >= 500:
                    if not last_attempt:
                        delay = self._backoff(attempt)
                        logger.warning(
                            f"Server error {response.status_code}. "
                            f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                        )
                        await asyncio.sleep(delay)
                        continue
                    self._record_failure()
                    raise NetworkError(
                        f"Server error after {self.max_retries} retries",
                        context={
                            **context,
                            "status_code": response.status_code,
                            "retry_count": attempt + 1,
                            "response_body": response.text[:500]
                        }
                    )

                if response.status_code >= 400:
                    raise PlatformValidationError(
                        f"Hashnode rejected {operation}",
                        context={
                            **context,
                            "status_code": response.status_code,
                            "response_body": response.text[:500]
                        }
                    )

                try:
                    body = response.json()
                except ValueError as e:
                    raise PlatformAPIError(
                        "Failed to parse JSON response",
                        context={**context, "response_body": response.text[:500]},
                        original_exception=e
                    )

                if body.get("errors"):
                    self._raise_graphql_error(body["errors"], context)

                self._record_success()
                return body.get("data") or {}

        # max_retries <= 0
        raise NetworkError("No request attempts configured", context=context)

    @staticmethod
    def _retry_after(response: httpx.Response, attempt: int) -> float:
        header = response.headers.get("Retry-After")
        try:
            return float(header)
        except (TypeError, ValueError):
            return min(2 ** attempt, MAX_RETRY_DELAY)

    def _raise_graphql_error(self, errors: List[Dict[str, Any]], context: Dict[str, Any]):
        """Map the first GraphQL error onto the exception hierarchy"""
        first = errors[0] or {}
        message = first.get("message", "GraphQL error")
        code = ((first.get("extensions") or {}).get("code") or "").upper()
        error_context = {**context, "graphql_code": code or None}

        if code in ("UNAUTHENTICATED", "FORBIDDEN"):
            raise AuthenticationError(message, context=error_context)
        if code == "NOT_FOUND":
            raise ResourceNotFoundError(message, context=error_context)
        if code in ("BAD_USER_INPUT", "GRAPHQL_VALIDATION_FAILED"):
            raise PlatformValidationError(message, context=error_context)
        if code == "TOO_MANY_REQUESTS":
            raise RateLimitError(message, context=error_context)
        raise PlatformAPIError(message, context=error_context)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def test_connection(self) -> None:
        try:
            data = await self._execute("Publication", PUBLICATION_QUERY, {"id": self.publication_id})
        except PlatformConnectionError:
            raise
        except (PlatformAPIError, NonRetryableError) as e:
            raise PlatformConnectionError(
                "Hashnode connection test failed",
                context={"store": "platform", "api_url": self.api_url},
                original_exception=e
            )

        if not data.get("publication"):
            raise PlatformConnectionError(
                f"Publication {self.publication_id} not found",
                context={"store": "platform", "publication_id": self.publication_id}
            )
        logger.info(f"Connected to Hashnode publication {data['publication'].get('title')}")

    async def count_posts(self) -> int:
        data = await self._execute("PostCount", POST_COUNT_QUERY, {"id": self.publication_id})
        publication = data.get("publication") or {}
        return int((publication.get("posts") or {}).get("totalDocuments") or 0)

    async def fetch_page(self, first: int, after: Optional[str] = None) -> PostPage:
        variables = {"id": self.publication_id, "first": min(first, MAX_PAGE_SIZE), "after": after}
        data = await self._execute("PublicationPosts", POSTS_PAGE_QUERY, variables)

        posts = ((data.get("publication") or {}).get("posts")) or {}
        page_info = posts.get("pageInfo") or {}
        return PostPage(
            posts=[ExternalPost.from_graphql(edge["node"]) for edge in posts.get("edges") or []],
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    async def get_post(self, post_id: str) -> Optional[ExternalPost]:
        data = await self._execute("Post", POST_QUERY, {"id": post_id})
        node = data.get("post")
        return ExternalPost.from_graphql(node) if node else None

    async def create_post(self, post: PostInput) -> ExternalPost:
        variables = {"input": self._post_input(post, publicationId=self.publication_id)}
        data = await self._execute("PublishPost", PUBLISH_POST_MUTATION, variables)
        node = ((data.get("publishPost") or {}).get("post"))
        if not node:
            raise PlatformAPIError("publishPost returned no post", context={"slug": post.slug})
        logger.info(f"Post created on Hashnode: {node.get('id')}")
        return ExternalPost.from_graphql(node)

    async def update_post(self, post_id: str, post: PostInput) -> ExternalPost:
        variables = {"input": self._post_input(post, id=post_id)}
        data = await self._execute("UpdatePost", UPDATE_POST_MUTATION, variables)
        node = ((data.get("updatePost") or {}).get("post"))
        if not node:
            raise ResourceNotFoundError(
                f"Post {post_id} not found on Hashnode",
                context={"post_id": post_id}
            )
        logger.info(f"Post updated on Hashnode: {post_id}")
        return ExternalPost.from_graphql(node)

    @staticmethod
    def _post_input(post: PostInput, **extra) -> Dict[str, Any]:
        data = {
            **extra,
            "title": post.title,
            "slug": post.slug,
            "contentMarkdown": post.content_markdown,
            "subtitle": post.subtitle,
            "tags": [
                {k: v for k, v in tag.model_dump().items() if v is not None}
                for tag in post.tags
            ],
            "seriesId": post.series_id,
            "publishedAt": isoformat(post.published_at),
            "metaTags": {
                "title": post.meta_title,
                "description": post.meta_description,
                "image": post.og_image_url,
            },
            "settings": {
                "disableComments": post.disable_comments,
                "delisted": post.hide_from_feed,
            },
        }
        if post.cover_image_url:
            data["coverImageOptions"] = {"coverImageURL": post.cover_image_url}
        return {k: v for k, v in data.items() if v is not None}
