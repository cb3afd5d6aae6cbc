"""
Crawl / Pagination Engine

Walks one traversal job at a time: listing pages for communities and
users, a single thread for posts. Every candidate item goes through the
dedup decision before anything is written. Comment trees, author
profiles and media are fetched for posts that were written.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Set

from reddit_archiver.api.client import (
    DELETED_MARKERS,
    PAGE_SIZE,
    RedditAPI,
    listing_children,
    parse_comment
)
from reddit_archiver.core.base import (
    Decision,
    ItemKind,
    JobResult,
    RemoteItem,
    Target,
    TargetStatus,
    TargetType,
    TransportError,
    TraversalJob
)
from reddit_archiver.core.config import DownloadConfig
from reddit_archiver.core.dedup import DedupPolicy, content_fingerprint, decide


class CrawlEngine:
    """
    Executes traversal jobs against the remote API and the local store

    Listing walks stop when the item limit is reached, when a page comes
    back short or without a cursor, when an item older than ``after`` is
    met, or when continue mode meets an already archived post.
    """

    def __init__(self, api: RedditAPI, store, config: DownloadConfig, media=None):
        self.api = api
        self.store = store
        self.config = config
        self.media = media
        self.policy = DedupPolicy.from_config(config)
        self.logger = logging.getLogger(__name__)
        self._authors: Set[str] = set()

        self.stats = {
            'jobs': 0,
            'pages': 0,
            'items_written': 0,
            'items_skipped': 0,
            'authors_fetched': 0,
            'media_downloaded': 0
        }

    async def run_job(self, job: TraversalJob) -> JobResult:
        target = job.target
        result = JobResult(target=target.raw_identifier)
        start_time = time.time()
        self.logger.info(f"Processing {target}")

        details: Optional[Dict[str, Any]] = None
        try:
            if target.type == TargetType.POST:
                details = await self._crawl_post(target, result)
            else:
                details = await self._crawl_listing(target, result)
        except TransportError as e:
            result.error_message = str(e)
            self._warn(result, f"{target}: {e}")
        finally:
            await self.store.save_target(target, details, create=self.config.save_target_to_db)

        if result.warnings:
            result.status = TargetStatus.PARTIAL
        result.processing_time = time.time() - start_time
        self.stats['jobs'] += 1
        self.stats['items_written'] += result.items_written
        self.stats['items_skipped'] += result.items_skipped

        self.logger.info(
            f"Finished {target}: {result.items_written} written, {result.items_skipped} skipped"
            f"{' (halted at known item)' if result.halted else ''} in {result.processing_time:.2f}s"
        )
        return result

    async def _crawl_listing(self, target: Target, result: JobResult) -> Optional[Dict[str, Any]]:
        """Walk a community or user listing, newest first"""
        scope = target.raw_identifier
        limit = self.config.limit
        after_bound = self.config.after
        before_bound = self.config.before

        about: Optional[Dict[str, Any]] = None
        try:
            about = await self.api.get_about(target)
        except TransportError as e:
            self._warn(result, f"{target}: could not fetch details: {e}")

        handled = 0
        cursor: Optional[str] = None
        while True:
            page = await self.api.get_listing(target, after=cursor, limit=PAGE_SIZE)
            self.stats['pages'] += 1

            stop = False
            for item in page.items:
                if before_bound and item.created_at >= before_bound:
                    continue
                if after_bound and item.created_at < after_bound:
                    self.logger.debug(f"{target}: reached items older than {after_bound}")
                    stop = True
                    break

                decision = await self._process_item(scope, item, result)
                handled += 1
                if decision == Decision.HALT:
                    self.logger.info(f"{target}: reached previously archived post {item.remote_id}")
                    result.halted = True
                    stop = True
                    break
                if limit and handled >= limit:
                    stop = True
                    break

            if stop or page.size < PAGE_SIZE or not page.after:
                break
            cursor = page.after

        return about

    async def _crawl_post(self, target: Target, result: JobResult) -> Dict[str, Any]:
        thread = await self.api.get_post(target.name)
        await self._process_item(target.raw_identifier, thread.post, result, comments=thread.comments)
        return thread.post.data

    async def _process_item(self, scope: str, item: RemoteItem, result: JobResult,
                            comments: Optional[List[Dict[str, Any]]] = None) -> Decision:
        existing = await self.store.get_item(scope, item.remote_id)
        decision = decide(existing, item, self.policy)
        result.items_seen += 1

        if decision in (Decision.FETCH, Decision.REPLACE):
            await self.store.save_item(scope, item, content_fingerprint(item.data))
            result.items_written += 1
            if item.kind == ItemKind.POST:
                await self._after_post_saved(scope, item, result, comments)
        else:
            result.items_skipped += 1
        return decision

    async def _after_post_saved(self, scope: str, post: RemoteItem, result: JobResult,
                                comments: Optional[List[Dict[str, Any]]]) -> None:
        if self.config.fetch_comments:
            await self._fetch_comments(scope, post.remote_id, comments, result)

        # A user's own posts all share one author, the target itself
        if self.config.fetch_post_authors and not scope.startswith(f"{TargetType.USER.prefix}/"):
            await self._fetch_author(post.author, result)

        if self.media and self.config.download_media:
            media_result = await self.media.process_post(scope, post)
            self.stats['media_downloaded'] += media_result.downloaded
            result.warnings.extend(media_result.warnings)

    async def _fetch_comments(self, scope: str, post_id: str,
                              comments: Optional[List[Dict[str, Any]]], result: JobResult) -> None:
        try:
            if comments is None:
                comments = (await self.api.get_post(post_id)).comments
        except TransportError as e:
            self._warn(result, f"{scope}: comments for post {post_id} not fetched: {e}")
            return
        await self._walk_comments(scope, post_id, comments, result)

    async def _walk_comments(self, scope: str, post_id: str, things: List[Dict[str, Any]],
                             result: JobResult) -> None:
        for thing in things:
            kind = thing.get('kind')
            data = thing.get('data') or {}

            if kind == 't1':
                # Known comments never halt anything; HALT only applies to listing walks
                await self._process_item(scope, parse_comment(data), result)
                replies = listing_children(data.get('replies'))
                if replies:
                    await self._walk_comments(scope, post_id, replies, result)

            elif kind == 'more':
                try:
                    expanded = await self._expand_more(post_id, data)
                except TransportError as e:
                    self._warn(result, f"{scope}: comment tree for post {post_id} incomplete: {e}")
                    continue
                await self._walk_comments(scope, post_id, expanded, result)

    async def _expand_more(self, post_id: str, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        children = data.get('children') or []
        if children:
            return await self.api.get_more_children(post_id, children)

        # "continue this thread": children of the parent comment
        parent_id = data.get('parent_id') or ''
        if not parent_id.startswith('t1_'):
            return []
        parent = parent_id[3:]
        thread = await self.api.get_comment_thread(post_id, parent)
        expanded: List[Dict[str, Any]] = []
        for thing in thread:
            thing_data = thing.get('data') or {}
            if thing.get('kind') == 't1' and thing_data.get('id') == parent:
                expanded.extend(listing_children(thing_data.get('replies')))
            else:
                expanded.append(thing)
        return expanded

    async def _fetch_author(self, username: Optional[str], result: JobResult) -> None:
        if not username or username in DELETED_MARKERS:
            return
        key = username.lower()
        if key in self._authors:
            return
        self._authors.add(key)

        try:
            details = await self.api.get_user(username)
        except TransportError as e:
            self._warn(result, f"u/{username}: profile not fetched: {e}")
            return
        await self.store.save_author(username, details)
        self.stats['authors_fetched'] += 1

    def _warn(self, result: JobResult, message: str) -> None:
        self.logger.warning(message)
        result.warnings.append(message)

    def get_stats(self) -> Dict[str, Any]:
        return dict(self.stats)
