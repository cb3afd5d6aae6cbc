"""
Schema Migrations

A static, ordered table of schema migrations applied once when the store
is opened. Each migration runs in its own transaction and advances the
recorded schema version only after its transform succeeds.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import aiosqlite

from reddit_archiver.core.base import ConfigurationError, MigrationFailedError

logger = logging.getLogger(__name__)

Transform = Callable[[aiosqlite.Connection], Awaitable[None]]


def parse_version(version: str) -> Tuple[int, ...]:
    """Parse a dotted version like '1.1.0' into a comparable tuple"""
    try:
        parts = tuple(int(part) for part in str(version).strip().split('.'))
    except ValueError:
        raise ConfigurationError(f"Invalid schema version: {version!r}")
    if not parts:
        raise ConfigurationError(f"Invalid schema version: {version!r}")
    return parts


@dataclass(frozen=True)
class Migration:
    """One schema step: bring the store up to target_version"""
    target_version: str
    description: str
    transform: Transform

    @property
    def key(self) -> Tuple[int, ...]:
        return parse_version(self.target_version)


async def _create_baseline(conn: aiosqlite.Connection) -> None:
    await conn.execute("""
        CREATE TABLE target (
            target_id INTEGER PRIMARY KEY,
            target_type TEXT NOT NULL,
            raw_identifier TEXT NOT NULL COLLATE NOCASE,
            saved INTEGER NOT NULL DEFAULT 1,
            first_seen TEXT NOT NULL,
            last_fetched TEXT,
            details TEXT,
            UNIQUE (target_type, raw_identifier)
        )
    """)
    await conn.execute("""
        CREATE TABLE item (
            item_id INTEGER PRIMARY KEY,
            target_scope TEXT NOT NULL,
            remote_id TEXT NOT NULL,
            kind TEXT NOT NULL,
            parent_id TEXT,
            author TEXT,
            created_at TEXT NOT NULL,
            deleted_at TEXT,
            content_fingerprint TEXT NOT NULL,
            fetched_at TEXT NOT NULL,
            details TEXT,
            UNIQUE (target_scope, remote_id)
        )
    """)
    await conn.execute("CREATE INDEX idx_item_scope_created ON item (target_scope, created_at)")


async def _add_authors_and_media(conn: aiosqlite.Connection) -> None:
    await conn.execute("""
        CREATE TABLE author (
            username TEXT PRIMARY KEY COLLATE NOCASE,
            details TEXT,
            fetched_at TEXT NOT NULL
        )
    """)
    await conn.execute("""
        CREATE TABLE media (
            media_id INTEGER PRIMARY KEY,
            target_scope TEXT NOT NULL,
            remote_id TEXT NOT NULL,
            url TEXT NOT NULL,
            media_type TEXT NOT NULL,
            status TEXT NOT NULL,
            local_path TEXT,
            updated_at TEXT NOT NULL,
            UNIQUE (target_scope, remote_id, url)
        )
    """)
    await conn.execute("CREATE INDEX idx_item_author ON item (author)")


async def _confirm_indexes(conn: aiosqlite.Connection) -> None:
    # Indexes for 1.1.1 are created by the 1.1.0 step
    return None


MIGRATIONS: Tuple[Migration, ...] = (
    Migration('1.0.0', 'baseline target and item tables', _create_baseline),
    Migration('1.1.0', 'author and media tables', _add_authors_and_media),
    Migration('1.1.1', 'confirm indexes', _confirm_indexes),
)


def validate_migrations(migrations: Sequence[Migration]) -> None:
    """Reject a migration table with duplicate or out-of-order versions"""
    previous: Optional[Migration] = None
    for migration in migrations:
        if previous is not None and migration.key <= previous.key:
            if migration.key == previous.key:
                raise ConfigurationError(f"Duplicate migration version {migration.target_version}")
            raise ConfigurationError(
                f"Migration {migration.target_version} is registered after {previous.target_version}"
            )
        previous = migration


async def ensure_version_table(conn: aiosqlite.Connection) -> None:
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_version (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            version TEXT NOT NULL
        )
    """)


async def read_schema_version(conn: aiosqlite.Connection) -> Optional[str]:
    """Recorded schema version, or None for a pre-init store"""
    async with conn.execute("SELECT version FROM schema_version WHERE id = 1") as cursor:
        row = await cursor.fetchone()
    return row[0] if row else None


async def _write_schema_version(conn: aiosqlite.Connection, version: str) -> None:
    await conn.execute(
        "INSERT INTO schema_version (id, version) VALUES (1, ?) "
        "ON CONFLICT (id) DO UPDATE SET version = excluded.version",
        (version,)
    )


async def apply_migrations(conn: aiosqlite.Connection,
                           migrations: Sequence[Migration] = MIGRATIONS) -> List[str]:
    """
    Bring the store up to the newest registered schema version

    The connection must be in autocommit mode (isolation_level=None);
    transactions are managed here explicitly.

    Returns:
        Target versions applied by this call, in order

    Raises:
        ConfigurationError: the migration table is malformed
        MigrationFailedError: a transform failed; the recorded version is
            left at the last migration that succeeded
    """
    validate_migrations(migrations)
    await ensure_version_table(conn)

    current = await read_schema_version(conn)
    logger.debug(f"Schema version: {current or 'pre-init'}")
    pending = [m for m in migrations if current is None or m.key > parse_version(current)]

    applied: List[str] = []
    for migration in pending:
        try:
            await conn.execute("BEGIN IMMEDIATE")
            # Another process may have migrated while we waited for the lock
            current = await read_schema_version(conn)
            if current is not None and parse_version(current) >= migration.key:
                await conn.execute("COMMIT")
                continue

            await migration.transform(conn)
            await _write_schema_version(conn, migration.target_version)
            await conn.execute("COMMIT")
        except BaseException as e:
            if conn.in_transaction:
                await conn.execute("ROLLBACK")
            if isinstance(e, Exception):
                logger.error(f"Migration to {migration.target_version} failed: {e}")
                raise MigrationFailedError(
                    f"Migration to schema {migration.target_version} failed: {e}",
                    target_version=migration.target_version
                ) from e
            raise

        applied.append(migration.target_version)
        logger.info(f"Applied schema migration {migration.target_version}: {migration.description}")

    return applied
