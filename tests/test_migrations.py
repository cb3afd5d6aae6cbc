"""
Tests for schema migrations

Checks ordering, exactly-once application, failure rollback and
re-attempt on the next open.
"""

import aiosqlite
import pytest

from reddit_archiver.core.base import ConfigurationError, MigrationFailedError, StoreUnavailableError
from reddit_archiver.storage.migrations import (
    MIGRATIONS,
    Migration,
    apply_migrations,
    parse_version,
    validate_migrations
)
from reddit_archiver.storage.store import open_store


def recording_chain(log, fail_at=None, versions=("1.0.0", "1.1.0", "1.2.0", "2.0.0")):
    """A migration chain whose transforms record their own version"""
    def make(version):
        async def transform(conn):
            await conn.execute(f"CREATE TABLE t_{version.replace('.', '_')} (id INTEGER)")
            if version == fail_at:
                raise RuntimeError(f"boom at {version}")
            log.append(version)
        return transform
    return tuple(Migration(v, f"step {v}", make(v)) for v in versions)


async def table_exists(store, name):
    async with store.conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ) as cursor:
        return await cursor.fetchone() is not None


class TestMigrations:
    """Test suite for the migration runner"""

    @pytest.mark.asyncio
    async def test_fresh_store_reaches_latest_version(self, tmp_path):
        store = await open_store(tmp_path / "archive.sqlite")
        try:
            assert await store.get_schema_version() == MIGRATIONS[-1].target_version
            for table in ("target", "item", "author", "media"):
                assert await table_exists(store, table)
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_applies_only_newer_migrations_in_order(self, tmp_path):
        path = tmp_path / "archive.sqlite"
        log = []
        chain = recording_chain(log)

        store = await open_store(path, migrations=chain[:2])
        await store.close()
        assert log == ["1.0.0", "1.1.0"]

        store = await open_store(path, migrations=chain)
        try:
            assert log == ["1.0.0", "1.1.0", "1.2.0", "2.0.0"]
            assert await store.get_schema_version() == "2.0.0"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_reopen_applies_nothing(self, tmp_path):
        path = tmp_path / "archive.sqlite"
        log = []
        chain = recording_chain(log)

        await (await open_store(path, migrations=chain)).close()
        await (await open_store(path, migrations=chain)).close()

        assert log == ["1.0.0", "1.1.0", "1.2.0", "2.0.0"]

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_version_and_retries_next_open(self, tmp_path):
        path = tmp_path / "archive.sqlite"
        log = []

        with pytest.raises(MigrationFailedError) as exc_info:
            await open_store(path, migrations=recording_chain(log, fail_at="1.2.0"))
        assert exc_info.value.target_version == "1.2.0"
        assert log == ["1.0.0", "1.1.0"]

        async with aiosqlite.connect(str(path)) as conn:
            async with conn.execute("SELECT version FROM schema_version") as cursor:
                assert (await cursor.fetchone())[0] == "1.1.0"
            async with conn.execute(
                "SELECT name FROM sqlite_master WHERE name = 't_1_2_0'"
            ) as cursor:
                # the failed step's partial work was rolled back
                assert await cursor.fetchone() is None

        store = await open_store(path, migrations=recording_chain(log))
        try:
            assert log == ["1.0.0", "1.1.0", "1.2.0", "2.0.0"]
            assert await store.get_schema_version() == "2.0.0"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_noop_migration_advances_version(self, tmp_path):
        async def nothing(conn):
            return None

        chain = (Migration("1.0.0", "noop", nothing),)
        store = await open_store(tmp_path / "archive.sqlite", migrations=chain)
        try:
            assert await store.get_schema_version() == "1.0.0"
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_apply_returns_applied_versions(self, tmp_path):
        async with aiosqlite.connect(str(tmp_path / "raw.sqlite"), isolation_level=None) as conn:
            assert await apply_migrations(conn) == [m.target_version for m in MIGRATIONS]
            assert await apply_migrations(conn) == []

    @pytest.mark.asyncio
    async def test_unopenable_path_is_store_unavailable(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file")

        with pytest.raises(StoreUnavailableError):
            await open_store(blocker / "archive.sqlite")


class TestMigrationTable:
    def test_shipped_table_is_valid(self):
        validate_migrations(MIGRATIONS)

    def test_duplicates_rejected(self):
        chain = recording_chain([], versions=("1.0.0", "1.0.0"))
        with pytest.raises(ConfigurationError):
            validate_migrations(chain)

    def test_out_of_order_rejected(self):
        chain = recording_chain([], versions=("1.1.0", "1.0.0"))
        with pytest.raises(ConfigurationError):
            validate_migrations(chain)

    def test_versions_compare_numerically(self):
        assert parse_version("1.10.0") > parse_version("1.9.3")
        with pytest.raises(ConfigurationError):
            parse_version("1.x")
