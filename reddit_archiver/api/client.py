"""
Remote API Client

Thin wrapper over the Reddit JSON endpoints used by the crawl engine.
Every call goes through the shared Scheduler so run-wide concurrency,
spacing, retry and cooldown rules apply.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from reddit_archiver.api.auth import OAuthSession
from reddit_archiver.core.base import (
    AuthRequiredError,
    ItemKind,
    RemoteItem,
    ServerError,
    Target,
    TargetType
)
from reddit_archiver.core.scheduler import Scheduler
from reddit_archiver.core.transport import Request, Transport
from reddit_archiver.utils.dates import from_epoch

PUBLIC_BASE = 'https://www.reddit.com'
OAUTH_BASE = 'https://oauth.reddit.com'
PAGE_SIZE = 100
MORE_CHILDREN_BATCH = 100
DELETED_MARKERS = ('[deleted]', '[removed]')


@dataclass
class ListingPage:
    """One page of a post listing"""
    items: List[RemoteItem]
    after: Optional[str] = None
    size: int = 0


@dataclass
class PostThread:
    """A post together with the raw top level of its comment listing"""
    post: RemoteItem
    comments: List[Dict[str, Any]] = field(default_factory=list)


def is_post_deleted(data: Dict[str, Any]) -> bool:
    if data.get('removed_by_category'):
        return True
    return data.get('author') == '[deleted]' and data.get('selftext') in DELETED_MARKERS


def is_comment_deleted(data: Dict[str, Any]) -> bool:
    return data.get('body') in DELETED_MARKERS


def parse_post(data: Dict[str, Any]) -> RemoteItem:
    return RemoteItem(
        remote_id=data['id'],
        kind=ItemKind.POST,
        created_at=from_epoch(data.get('created_utc')),
        data=data,
        author=data.get('author'),
        deleted=is_post_deleted(data)
    )


def parse_comment(data: Dict[str, Any]) -> RemoteItem:
    # Nested replies are stored as their own items
    details = {key: value for key, value in data.items() if key != 'replies'}
    return RemoteItem(
        remote_id=data['id'],
        kind=ItemKind.COMMENT,
        created_at=from_epoch(data.get('created_utc')),
        data=details,
        author=data.get('author'),
        parent_id=data.get('parent_id'),
        deleted=is_comment_deleted(data)
    )


def listing_path(target: Target) -> str:
    if target.type == TargetType.COMMUNITY:
        return f"/r/{target.name}/new.json"
    if target.type == TargetType.USER:
        return f"/user/{target.name}/submitted.json"
    raise ValueError(f"{target} has no listing")


def about_path(target: Target) -> str:
    if target.type == TargetType.COMMUNITY:
        return f"/r/{target.name}/about.json"
    if target.type == TargetType.USER:
        return f"/user/{target.name}/about.json"
    raise ValueError(f"{target} has no about page")


class RedditAPI:
    """Scheduler-gated access to listings, posts, comments and profiles"""

    def __init__(self, transport: Transport, scheduler: Scheduler, oauth: Optional[OAuthSession] = None):
        self.transport = transport
        self.scheduler = scheduler
        self.oauth = oauth
        self.logger = logging.getLogger(__name__)

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None,
                       description: Optional[str] = None) -> Any:
        query = {'raw_json': 1}
        query.update({k: v for k, v in (params or {}).items() if v is not None})

        async def call():
            headers: Dict[str, str] = {}
            base = PUBLIC_BASE
            if self.oauth:
                token = await self.oauth.get_token()
                headers['Authorization'] = f"bearer {token}"
                headers['User-Agent'] = self.oauth.user_agent
                base = OAUTH_BASE
            try:
                response = await self.transport.send(Request(url=base + path, params=query, headers=headers))
            except AuthRequiredError:
                if self.oauth:
                    self.oauth.invalidate()
                raise
            stats = response.rate_limit
            if stats:
                self.logger.debug(
                    f"Rate limit: {stats.remaining:.0f} remaining, {stats.used:.0f} used, "
                    f"reset in {stats.reset_seconds:.0f}s"
                )
            try:
                return response.json()
            except ValueError as e:
                raise ServerError(
                    f"Malformed response from {path}: {e}", status=response.status, retryable=True
                ) from e

        return await self.scheduler.schedule(call, description or path)

    async def get_listing(self, target: Target, after: Optional[str] = None,
                          limit: int = PAGE_SIZE) -> ListingPage:
        data = await self.get_json(
            listing_path(target), {'limit': limit, 'after': after},
            description=f"{target} listing"
        )
        listing = listing_data(data)
        children = listing.get('children') or []
        items = [parse_post(child['data']) for child in children if child.get('kind') == 't3']
        return ListingPage(items=items, after=listing.get('after'), size=len(children))

    async def get_about(self, target: Target) -> Dict[str, Any]:
        data = await self.get_json(about_path(target), description=f"{target} about")
        return data.get('data') or {}

    async def get_user(self, username: str) -> Dict[str, Any]:
        data = await self.get_json(f"/user/{username}/about.json", description=f"u/{username} about")
        return data.get('data') or {}

    async def get_post(self, post_id: str) -> PostThread:
        data = await self.get_json(f"/comments/{post_id}.json", description=f"p/{post_id}")
        if not isinstance(data, list) or not data:
            raise ServerError(f"Unexpected response for post {post_id}", retryable=False)

        post_children = listing_children(data[0])
        if not post_children:
            raise ServerError(f"Post {post_id} not found", status=404, retryable=False)

        comments = listing_children(data[1]) if len(data) > 1 else []
        return PostThread(post=parse_post(post_children[0]['data']), comments=comments or [])

    async def get_comment_thread(self, post_id: str, comment_id: str) -> List[Dict[str, Any]]:
        """Children of a 'continue this thread' stub"""
        data = await self.get_json(
            f"/comments/{post_id}.json", {'comment': comment_id},
            description=f"p/{post_id} thread {comment_id}"
        )
        if not isinstance(data, list) or len(data) < 2:
            return []
        return listing_children(data[1])

    async def get_more_children(self, post_id: str, children: List[str]) -> List[Dict[str, Any]]:
        """Expand a 'load more comments' stub, in batches"""
        things: List[Dict[str, Any]] = []
        for start in range(0, len(children), MORE_CHILDREN_BATCH):
            batch = children[start:start + MORE_CHILDREN_BATCH]
            data = await self.get_json('/api/morechildren.json', {
                'api_type': 'json',
                'link_id': f"t3_{post_id}",
                'children': ','.join(batch)
            }, description=f"p/{post_id} more comments")
            if not isinstance(data, dict):
                raise ServerError(f"Unexpected response expanding comments of {post_id}", retryable=False)
            things.extend(((data.get('json') or {}).get('data') or {}).get('things') or [])
        return things


def listing_data(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict) and value.get('kind') == 'Listing':
        return value.get('data') or {}
    return {}


def listing_children(value: Any) -> List[Dict[str, Any]]:
    return listing_data(value).get('children') or []
