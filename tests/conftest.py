"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from datetime import datetime
from typing import Dict, List, Optional
from core.database import create_engine, create_session_maker
from core.exceptions import ResourceNotFoundError
from hashnode.client import PlatformClient
from models import Base
from operations.runner import OperationRunner
from repository.content_repository import SQLAlchemyContentRepository
from schemas.platform import ExternalPost, ExternalSeries, ExternalTag, PostInput, PostPage

WEBHOOK_SECRET = "test-webhook-secret"


class FakePlatformClient(PlatformClient):
    """
    In-memory platform with failure injection.

    connection_error: raised by test_connection
    page_error: raised by fetch_page
    get_post_errors / push_errors: raised (in order) by the next calls
    """

    def __init__(self, posts: Optional[List[ExternalPost]] = None):
        self.posts: Dict[str, ExternalPost] = {post.id: post for post in posts or []}
        self.connection_error: Optional[Exception] = None
        self.page_error: Optional[Exception] = None
        self.get_post_errors: List[Exception] = []
        self.push_errors: List[Exception] = []
        self.page_requests = []
        self.created: List[PostInput] = []
        self.updated = []
        self._next_id = 9000

    def add(self, post: ExternalPost):
        self.posts[post.id] = post

    async def test_connection(self) -> None:
        if self.connection_error is not None:
            raise self.connection_error

    async def count_posts(self) -> int:
        return len(self.posts)

    async def fetch_page(self, first: int, after: Optional[str] = None) -> PostPage:
        self.page_requests.append((first, after))
        if self.page_error is not None:
            raise self.page_error
        ordered = list(self.posts.values())
        start = int(after) if after else 0
        chunk = ordered[start:start + first]
        end = start + len(chunk)
        return PostPage(posts=chunk, has_next_page=end < len(ordered), end_cursor=str(end))

    async def get_post(self, post_id: str) -> Optional[ExternalPost]:
        if self.get_post_errors:
            raise self.get_post_errors.pop(0)
        return self.posts.get(post_id)

    async def create_post(self, post: PostInput) -> ExternalPost:
        if self.push_errors:
            raise self.push_errors.pop(0)
        self._next_id += 1
        created = ExternalPost(
            id=f"hn-{self._next_id}",
            title=post.title,
            slug=post.slug,
            content_markdown=post.content_markdown,
            published_at=post.published_at,
        )
        self.posts[created.id] = created
        self.created.append(post)
        return created

    async def update_post(self, post_id: str, post: PostInput) -> ExternalPost:
        if self.push_errors:
            raise self.push_errors.pop(0)
        if post_id not in self.posts:
            raise ResourceNotFoundError(f"Post {post_id} not found", context={"post_id": post_id})
        updated = self.posts[post_id].model_copy(
            update={"title": post.title, "content_markdown": post.content_markdown}
        )
        self.posts[post_id] = updated
        self.updated.append((post_id, post))
        return updated


def make_post(index: int, **overrides) -> ExternalPost:
    """Platform post with realistic defaults"""
    data = {
        "id": f"hn-{index}",
        "title": f"Post {index}",
        "slug": f"post-{index}",
        "brief": f"Brief {index}",
        "content_markdown": f"# Post {index}\n\nSome **content** for post number {index}.\n\nSecond paragraph.",
        "published_at": datetime(2024, 1, 1 + index % 28, 10, 0, 0),
        "updated_at": datetime(2024, 1, 1 + index % 28, 12, 0, 0),
        "is_published": True,
        "cover_image_url": f"https://cdn.example.com/{index}.png",
        "tags": [ExternalTag(id="t-python", name="Python", slug="python")],
        "meta_title": f"Post {index} | Blog",
        "meta_description": f"All about post {index}",
    }
    data.update(overrides)
    return ExternalPost(**data)


@pytest.fixture
def post_factory():
    return make_post


@pytest.fixture
def sample_posts():
    """Five posts; two share a series, one is a draft"""
    series = ExternalSeries(id="s-1", name="Async Python", slug="async-python")
    return [
        make_post(1, series=series),
        make_post(2, series=series, tags=[ExternalTag(name="Python"), ExternalTag(name="asyncio")]),
        make_post(3, is_published=False, published_at=None),
        make_post(4, tags=[], cover_image_url=None),
        make_post(5, disable_comments=True),
    ]


@pytest.fixture
def fake_client(sample_posts):
    return FakePlatformClient(sample_posts)


@pytest.fixture
def empty_client():
    return FakePlatformClient()


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """SQLite test database, one file per test"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'content.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine):
    return create_session_maker(test_engine)


@pytest.fixture
def repository(session_maker):
    return SQLAlchemyContentRepository(session_maker)


@pytest.fixture
def snapshot_dir(tmp_path):
    return str(tmp_path / "snapshots")


@pytest.fixture
def runner(session_maker, fake_client, snapshot_dir, tmp_path):
    """Runner wired to the fake platform and the test database"""
    runner = OperationRunner(
        session_maker,
        fake_client,
        snapshot_dir=snapshot_dir,
        report_dir=str(tmp_path / "reports"),
        report_formats=["json", "html"],
        webhook_secret=WEBHOOK_SECRET,
        sync_interval_seconds=3600,
    )
    # Retries become due immediately
    runner.queue.base_delay = 0
    return runner
