"""
Shared fixtures and fakes for the archiver test suite
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from reddit_archiver.api.client import ListingPage, PostThread, parse_post
from reddit_archiver.core.base import RemoteItem, Target, TargetType
from reddit_archiver.storage.store import open_store


class FakeClock:
    """Manually advanced monotonic clock; sleep() advances it instantly"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += max(0.0, delay)
        await asyncio.sleep(0)


def post_data(post_id: str, created: datetime, author: str = "alice", **extra) -> Dict[str, Any]:
    data = {
        'id': post_id,
        'name': f"t3_{post_id}",
        'title': f"Post {post_id}",
        'author': author,
        'selftext': "hello",
        'is_self': True,
        'created_utc': created.timestamp(),
    }
    data.update(extra)
    return data


def make_post(post_id: str, created: datetime, **extra) -> RemoteItem:
    return parse_post(post_data(post_id, created, **extra))


def comment_thing(comment_id: str, parent: str, body: str = "nice", replies: Optional[List] = None,
                  author: str = "bob") -> Dict[str, Any]:
    data = {
        'id': comment_id,
        'parent_id': parent,
        'body': body,
        'author': author,
        'created_utc': datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp(),
        'replies': {'kind': 'Listing', 'data': {'children': replies}} if replies else "",
    }
    return {'kind': 't1', 'data': data}


class FakeAPI:
    """In-memory stand-in for RedditAPI"""

    def __init__(self, posts: Optional[Dict[str, List[RemoteItem]]] = None, page_size: int = 100):
        self.posts = posts or {}
        self.page_size = page_size
        self.comments: Dict[str, List[Dict[str, Any]]] = {}
        self.more: Dict[str, List[Dict[str, Any]]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.listing_errors: Dict[str, Exception] = {}
        self.more_error: Optional[Exception] = None
        self.calls: List[tuple] = []

    async def get_listing(self, target: Target, after: Optional[str] = None, limit: int = 100) -> ListingPage:
        self.calls.append(('listing', target.raw_identifier, after))
        if target.raw_identifier in self.listing_errors:
            raise self.listing_errors[target.raw_identifier]
        items = self.posts.get(target.raw_identifier, [])
        start = 0
        if after:
            ids = [item.remote_id for item in items]
            start = ids.index(after) + 1
        page = items[start:start + self.page_size]
        more = start + self.page_size < len(items)
        return ListingPage(items=list(page), after=page[-1].remote_id if page and more else None, size=len(page))

    async def get_about(self, target: Target) -> Dict[str, Any]:
        self.calls.append(('about', target.raw_identifier))
        return {'display_name': target.name}

    async def get_user(self, username: str) -> Dict[str, Any]:
        self.calls.append(('user', username))
        return self.users.get(username, {'name': username})

    async def get_post(self, post_id: str) -> PostThread:
        self.calls.append(('post', post_id))
        for items in self.posts.values():
            for item in items:
                if item.remote_id == post_id:
                    return PostThread(post=item, comments=self.comments.get(post_id, []))
        raise KeyError(post_id)

    async def get_more_children(self, post_id: str, children: List[str]) -> List[Dict[str, Any]]:
        self.calls.append(('more', post_id, tuple(children)))
        if self.more_error:
            raise self.more_error
        return self.more.get(post_id, [])

    async def get_comment_thread(self, post_id: str, comment_id: str) -> List[Dict[str, Any]]:
        self.calls.append(('thread', post_id, comment_id))
        return []

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path):
    s = await open_store(tmp_path / "db" / "archive.sqlite")
    yield s
    await s.close()


@pytest.fixture
def community():
    return Target(TargetType.COMMUNITY, "test")
