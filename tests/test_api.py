"""
Tests for the remote API client and OAuth session
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from conftest import FakeClock, comment_thing, post_data
from reddit_archiver.api.auth import OAuthCredentials, OAuthSession, load_credentials
from reddit_archiver.api.client import RedditAPI, is_post_deleted, listing_path
from reddit_archiver.core.base import (
    AuthRequiredError,
    ConfigurationError,
    ServerError,
    Target,
    TargetType
)
from reddit_archiver.core.config import RequestConfig
from reddit_archiver.core.scheduler import Scheduler
from reddit_archiver.core.transport import Response

CREATED = datetime(2024, 1, 15, tzinfo=timezone.utc)


def reply(payload, status=200):
    return Response(url="https://www.reddit.com/x", status=status, headers={},
                    body=json.dumps(payload).encode('utf-8'))


def listing(children, after=None):
    return {'kind': 'Listing', 'data': {'children': children, 'after': after}}


def make_api(responses, oauth=None):
    transport = AsyncMock()
    transport.send.side_effect = responses
    scheduler = Scheduler(RequestConfig(min_time=0))
    return RedditAPI(transport, scheduler, oauth), transport


class TestRedditAPI:
    """Test suite for RedditAPI"""

    @pytest.mark.asyncio
    async def test_listing_page(self):
        api, transport = make_api([reply(listing(
            [{'kind': 't3', 'data': post_data("a1", CREATED)}, {'kind': 't3', 'data': post_data("a2", CREATED)}],
            after="t3_a2"
        ))])

        page = await api.get_listing(Target(TargetType.COMMUNITY, "python"), limit=2)

        assert [item.remote_id for item in page.items] == ["a1", "a2"]
        assert page.after == "t3_a2"
        assert page.size == 2
        request = transport.send.call_args[0][0]
        assert request.url == "https://www.reddit.com/r/python/new.json"
        assert request.params == {'raw_json': 1, 'limit': 2}

    @pytest.mark.asyncio
    async def test_post_with_comments(self):
        api, _ = make_api([reply([
            listing([{'kind': 't3', 'data': post_data("a1", CREATED)}]),
            listing([comment_thing("c1", "t3_a1")])
        ])])

        thread = await api.get_post("a1")

        assert thread.post.remote_id == "a1"
        assert thread.comments[0]['data']['id'] == "c1"

    @pytest.mark.asyncio
    async def test_missing_post(self):
        api, _ = make_api([reply([listing([]), listing([])])])

        with pytest.raises(ServerError) as exc_info:
            await api.get_post("gone")
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_more_children_batched(self, monkeypatch):
        monkeypatch.setattr('reddit_archiver.api.client.MORE_CHILDREN_BATCH', 2)
        things = {'json': {'data': {'things': [comment_thing("c9", "t3_a1")]}}}
        api, transport = make_api([reply(things), reply(things)])

        result = await api.get_more_children("a1", ["c1", "c2", "c3"])

        assert len(result) == 2
        params = [call[0][0].params for call in transport.send.call_args_list]
        assert [p['children'] for p in params] == ["c1,c2", "c3"]
        assert params[0]['link_id'] == "t3_a1"

    @pytest.mark.asyncio
    async def test_oauth_requests_use_bearer_token(self):
        oauth = AsyncMock()
        oauth.get_token.return_value = "tok"
        oauth.user_agent = "reddit-archiver/test by alice"
        api, transport = make_api([reply({'data': {'name': 'alice'}})], oauth=oauth)

        assert await api.get_user("alice") == {'name': 'alice'}

        request = transport.send.call_args[0][0]
        assert request.url.startswith("https://oauth.reddit.com/")
        assert request.headers['Authorization'] == "bearer tok"

    @pytest.mark.asyncio
    async def test_auth_failure_invalidates_token(self):
        oauth = AsyncMock()
        oauth.get_token.return_value = "tok"
        oauth.invalidate = lambda: setattr(oauth, 'invalidated', True)
        api, _ = make_api([AuthRequiredError("HTTP 401", status=401)], oauth=oauth)

        with pytest.raises(AuthRequiredError):
            await api.get_about(Target(TargetType.USER, "alice"))
        assert oauth.invalidated

    @pytest.mark.asyncio
    async def test_malformed_body_retried_then_server_error(self):
        transport = AsyncMock()
        transport.send.return_value = Response(url="https://www.reddit.com/x", status=200, headers={},
                                               body=b"<html>busy</html>")
        scheduler = Scheduler(RequestConfig(min_time=0, max_retries=2), base_retry_delay=0)
        api = RedditAPI(transport, scheduler)

        with pytest.raises(ServerError) as exc_info:
            await api.get_more_children("a1", ["c1"])

        assert "Malformed response" in str(exc_info.value)
        assert transport.send.call_count == 3
        assert scheduler.stats["retries"] == 2

    @pytest.mark.asyncio
    async def test_rate_limit_headers_logged(self):
        headers = {"x-ratelimit-remaining": "97.0", "x-ratelimit-used": "3", "x-ratelimit-reset": "412"}
        api, _ = make_api([Response(url="https://www.reddit.com/x", status=200, headers=headers,
                                    body=json.dumps({"data": {"name": "alice"}}).encode("utf-8"))])
        api.logger = Mock()

        await api.get_user("alice")

        api.logger.debug.assert_called_once_with("Rate limit: 97 remaining, 3 used, reset in 412s")

    def test_deleted_detection(self):
        assert is_post_deleted({'removed_by_category': 'moderator'})
        assert is_post_deleted({'author': '[deleted]', 'selftext': '[removed]'})
        assert not is_post_deleted({'author': '[deleted]', 'selftext': 'still here'})

    def test_user_listing_path(self):
        assert listing_path(Target(TargetType.USER, "spez")) == "/user/spez/submitted.json"


class TestOAuth:
    def credentials(self):
        return OAuthCredentials("id", "secret", "alice", "pw")

    @pytest.mark.asyncio
    async def test_token_cached_until_refresh_point(self):
        clock = FakeClock(start=0.0)
        transport = AsyncMock()
        transport.send.side_effect = [
            reply({'access_token': 'one', 'expires_in': 100}),
            reply({'access_token': 'two', 'expires_in': 100}),
        ]
        session = OAuthSession(self.credentials(), transport, clock=clock)

        assert await session.get_token() == "one"
        clock.now = 89.0
        assert await session.get_token() == "one"
        clock.now = 91.0
        assert await session.get_token() == "two"

        request = transport.send.call_args_list[0][0][0]
        assert request.method == "POST"
        assert request.data['grant_type'] == "password"
        assert request.auth.login == "id"

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        transport = AsyncMock()
        transport.send.return_value = reply({'error': 'invalid_grant'})

        with pytest.raises(AuthRequiredError):
            await OAuthSession(self.credentials(), transport).get_token()

    def test_load_credentials(self, tmp_path):
        auth_file = tmp_path / "auth.yaml"
        auth_file.write_text("client_id: id\nclient_secret: secret\nusername: alice\npassword: pw\n")

        assert load_credentials(str(auth_file)) == self.credentials()

    def test_incomplete_credentials(self, tmp_path):
        auth_file = tmp_path / "auth.json"
        auth_file.write_text(json.dumps({'client_id': 'id', 'username': 'alice'}))

        with pytest.raises(ConfigurationError) as exc_info:
            load_credentials(str(auth_file))
        assert "client_secret" in str(exc_info.value)
