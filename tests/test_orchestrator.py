"""
Tests for the archive orchestrator
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from conftest import FakeAPI, make_post
from reddit_archiver.core.base import (
    MigrationFailedError,
    StoreUnavailableError,
    Target,
    TargetStatus,
    TargetType
)
from reddit_archiver.core.config import ArchiverConfig, DownloadConfig
from reddit_archiver.core.orchestrator import ArchiveOrchestrator

CREATED = datetime(2024, 6, 1, tzinfo=timezone.utc)


def make_config(tmp_path, **download):
    download.setdefault('download_media', False)
    return ArchiverConfig(download=DownloadConfig(**download), data_dir=str(tmp_path))


def make_orchestrator(tmp_path, store, api, **download):
    return ArchiveOrchestrator(make_config(tmp_path, **download), store=store,
                               transport=AsyncMock(), api=api)


class TestArchiveOrchestrator:
    """Test suite for ArchiveOrchestrator"""

    @pytest.mark.asyncio
    async def test_invalid_target_skipped_sibling_completes(self, tmp_path, store):
        api = FakeAPI({"r/test": [make_post("a1", CREATED), make_post("a2", CREATED)]})
        orchestrator = make_orchestrator(tmp_path, store, api)

        try:
            report = await orchestrator.run(["r/test", "nonsense/thing"])
        finally:
            await orchestrator.cleanup()

        assert report.status_of("r/test") == TargetStatus.COMPLETE
        assert report.status_of("nonsense/thing") == TargetStatus.SKIPPED
        assert not report.success
        assert await store.count_items("r/test") == 2
        assert report.stats['items_written'] == 2

    @pytest.mark.asyncio
    async def test_previous_runs_saved_targets(self, tmp_path, store):
        await store.save_target(Target(TargetType.COMMUNITY, "test"))
        await store.save_target(Target(TargetType.USER, "alice"))
        api = FakeAPI({"r/test": [make_post("a1", CREATED)], "u/alice": [make_post("b1", CREATED)]})
        orchestrator = make_orchestrator(tmp_path, store, api)

        try:
            report = await orchestrator.run(["previous/r"])
        finally:
            await orchestrator.cleanup()

        assert [r.target for r in report.results] == ["r/test"]
        assert report.success
        assert await store.count_items("u/alice") == 0

    @pytest.mark.asyncio
    async def test_job_failure_isolated(self, tmp_path, store):
        api = FakeAPI({"r/good": [make_post("a1", CREATED)], "r/bad": []})
        api.listing_errors["r/bad"] = RuntimeError("disk gone")
        orchestrator = make_orchestrator(tmp_path, store, api)

        try:
            report = await orchestrator.run(["r/bad", "r/good"])
        finally:
            await orchestrator.cleanup()

        assert report.status_of("r/bad") == TargetStatus.PARTIAL
        assert report.status_of("r/good") == TargetStatus.COMPLETE
        assert report.success

    @pytest.mark.asyncio
    async def test_parallel_jobs_bounded(self, tmp_path, store):
        state = {'active': 0, 'peak': 0}
        api = FakeAPI({f"r/c{i}": [] for i in range(6)})
        original = api.get_listing

        async def slow_listing(target, after=None, limit=100):
            state['active'] += 1
            state['peak'] = max(state['peak'], state['active'])
            await asyncio.sleep(0.01)
            state['active'] -= 1
            return await original(target, after=after, limit=limit)

        api.get_listing = slow_listing
        orchestrator = make_orchestrator(tmp_path, store, api, max_parallel_jobs=2)

        try:
            report = await orchestrator.run([f"r/c{i}" for i in range(6)])
        finally:
            await orchestrator.cleanup()

        assert len(report.results) == 6
        assert state['peak'] <= 2

    @pytest.mark.asyncio
    async def test_migration_failure_is_fatal_before_traversal(self, tmp_path):
        api = FakeAPI({"r/test": [make_post("a1", CREATED)]})
        orchestrator = ArchiveOrchestrator(make_config(tmp_path), transport=AsyncMock(), api=api)

        with patch('reddit_archiver.core.orchestrator.open_store',
                   AsyncMock(side_effect=MigrationFailedError("boom", target_version="1.1.0"))):
            with pytest.raises(MigrationFailedError):
                await orchestrator.run(["r/test"])
        await orchestrator.cleanup()

        assert api.calls == []

    @pytest.mark.asyncio
    async def test_unavailable_store_is_fatal(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file")
        orchestrator = ArchiveOrchestrator(make_config(blocker), transport=AsyncMock(), api=FakeAPI())

        with pytest.raises(StoreUnavailableError):
            await orchestrator.initialize()
        await orchestrator.cleanup()

    @pytest.mark.asyncio
    async def test_summary_lists_every_target(self, tmp_path, store):
        api = FakeAPI({"r/test": [make_post("a1", CREATED)]})
        orchestrator = make_orchestrator(tmp_path, store, api)

        try:
            report = await orchestrator.run(["r/test", "bogus"])
        finally:
            await orchestrator.cleanup()

        summary = report.to_summary()
        assert [t['target'] for t in summary['targets']] == ["bogus", "r/test"]
        assert summary['duration'] is not None
