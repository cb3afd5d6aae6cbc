"""
Local Archive Store

SQLite-backed persistence for targets, items, authors and media records.
The store is brought to the current schema when it is opened; writes are
serialised in-process and use immediate transactions so several archiver
processes can share one database file.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Union

import aiosqlite

from reddit_archiver.core.base import (
    RemoteItem,
    StoredItem,
    StoreUnavailableError,
    Target,
    TargetType
)
from reddit_archiver.storage.migrations import (
    MIGRATIONS,
    Migration,
    apply_migrations,
    read_schema_version
)
from reddit_archiver.utils.dates import from_db, to_db, utcnow

BUSY_TIMEOUT_MS = 30000


def _dump(details: Optional[Dict[str, Any]]) -> Optional[str]:
    if details is None:
        return None
    return json.dumps(details, sort_keys=True, separators=(',', ':'))


class Store:
    """Handle to an open, migrated archive database"""

    def __init__(self, path: Union[str, Path], conn: aiosqlite.Connection,
                 migrations: Sequence[Migration] = MIGRATIONS):
        self.path = Path(path)
        self.conn = conn
        self.migrations = tuple(migrations)
        self.logger = logging.getLogger(__name__)
        self._write_lock = asyncio.Lock()
        self.item_writes = 0

    async def close(self) -> None:
        await self.conn.close()

    async def get_schema_version(self) -> Optional[str]:
        return await read_schema_version(self.conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialised write transaction; rolled back on any error or cancellation"""
        async with self._write_lock:
            try:
                await self.conn.execute("BEGIN IMMEDIATE")
                yield self.conn
            except BaseException:
                await asyncio.shield(self._rollback())
                raise
            else:
                await self.conn.execute("COMMIT")

    async def _rollback(self) -> None:
        if self.conn.in_transaction:
            await self.conn.execute("ROLLBACK")

    # Targets

    async def save_target(self, target: Target, details: Optional[Dict[str, Any]] = None,
                          create: bool = True) -> None:
        """
        Record a fetch of target

        Sets last_fetched on an existing row. A missing row is created only
        when create is True.
        """
        now = to_db(utcnow())
        async with self.transaction() as conn:
            if create:
                await conn.execute(
                    "INSERT INTO target (target_type, raw_identifier, saved, first_seen, last_fetched, details) "
                    "VALUES (?, ?, 1, ?, ?, ?) "
                    "ON CONFLICT (target_type, raw_identifier) DO UPDATE SET "
                    "last_fetched = excluded.last_fetched, "
                    "details = COALESCE(excluded.details, target.details)",
                    (target.type.value, target.raw_identifier, now, now, _dump(details))
                )
            else:
                await conn.execute(
                    "UPDATE target SET last_fetched = ?, details = COALESCE(?, details) "
                    "WHERE target_type = ? AND raw_identifier = ?",
                    (now, _dump(details), target.type.value, target.raw_identifier)
                )

    async def get_target(self, target: Target) -> Optional[Dict[str, Any]]:
        async with self.conn.execute(
            "SELECT target_type, raw_identifier, saved, first_seen, last_fetched, details "
            "FROM target WHERE target_type = ? AND raw_identifier = ?",
            (target.type.value, target.raw_identifier)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return {
            'target_type': row[0],
            'raw_identifier': row[1],
            'saved': bool(row[2]),
            'first_seen': from_db(row[3]),
            'last_fetched': from_db(row[4]),
            'details': json.loads(row[5]) if row[5] else None
        }

    async def get_saved_targets(self, types: Iterable[TargetType]) -> List[Target]:
        """Saved targets of the given types, least recently fetched first"""
        type_values = [t.value for t in types]
        if not type_values:
            return []
        placeholders = ", ".join("?" for _ in type_values)
        async with self.conn.execute(
            f"SELECT target_type, raw_identifier FROM target "
            f"WHERE saved = 1 AND target_type IN ({placeholders}) "
            f"ORDER BY last_fetched IS NOT NULL, last_fetched, target_id",
            type_values
        ) as cursor:
            rows = await cursor.fetchall()
        return [Target(TargetType(row[0]), row[1].split('/', 1)[1]) for row in rows]

    # Items

    async def get_item(self, target_scope: str, remote_id: str) -> Optional[StoredItem]:
        async with self.conn.execute(
            "SELECT target_scope, remote_id, kind, created_at, content_fingerprint, fetched_at, "
            "deleted_at, parent_id, author, details "
            "FROM item WHERE target_scope = ? AND remote_id = ?",
            (target_scope, remote_id)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return StoredItem(
            target_scope=row[0],
            remote_id=row[1],
            kind=row[2],
            created_at=from_db(row[3]),
            content_fingerprint=row[4],
            fetched_at=from_db(row[5]),
            deleted_at=from_db(row[6]),
            parent_id=row[7],
            author=row[8],
            details=json.loads(row[9]) if row[9] else {}
        )

    async def save_item(self, target_scope: str, item: RemoteItem, fingerprint: str) -> None:
        """Insert or replace the item identified by (target_scope, remote_id)"""
        now = utcnow()
        deleted_at = to_db(now) if item.deleted else None
        async with self.transaction() as conn:
            await conn.execute(
                "INSERT INTO item (target_scope, remote_id, kind, parent_id, author, created_at, "
                "deleted_at, content_fingerprint, fetched_at, details) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (target_scope, remote_id) DO UPDATE SET "
                "kind = excluded.kind, parent_id = excluded.parent_id, author = excluded.author, "
                "created_at = excluded.created_at, deleted_at = excluded.deleted_at, "
                "content_fingerprint = excluded.content_fingerprint, "
                "fetched_at = excluded.fetched_at, details = excluded.details",
                (target_scope, item.remote_id, item.kind.value, item.parent_id, item.author,
                 to_db(item.created_at), deleted_at, fingerprint, to_db(now), _dump(item.data))
            )
        self.item_writes += 1

    async def count_items(self, target_scope: Optional[str] = None) -> int:
        if target_scope is None:
            query, params = "SELECT COUNT(*) FROM item", ()
        else:
            query, params = "SELECT COUNT(*) FROM item WHERE target_scope = ?", (target_scope,)
        async with self.conn.execute(query, params) as cursor:
            row = await cursor.fetchone()
        return row[0]

    # Authors

    async def save_author(self, username: str, details: Dict[str, Any]) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                "INSERT INTO author (username, details, fetched_at) VALUES (?, ?, ?) "
                "ON CONFLICT (username) DO UPDATE SET details = excluded.details, "
                "fetched_at = excluded.fetched_at",
                (username, _dump(details), to_db(utcnow()))
            )

    async def get_author(self, username: str) -> Optional[Dict[str, Any]]:
        async with self.conn.execute(
            "SELECT details FROM author WHERE username = ?", (username,)
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return json.loads(row[0]) if row[0] else {}

    # Media

    async def save_media(self, target_scope: str, remote_id: str, url: str, media_type: str,
                         status: str, local_path: Optional[str] = None) -> None:
        async with self.transaction() as conn:
            await conn.execute(
                "INSERT INTO media (target_scope, remote_id, url, media_type, status, local_path, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (target_scope, remote_id, url) DO UPDATE SET "
                "media_type = excluded.media_type, status = excluded.status, "
                "local_path = excluded.local_path, updated_at = excluded.updated_at",
                (target_scope, remote_id, url, media_type, status, local_path, to_db(utcnow()))
            )

    async def get_media(self, target_scope: str, remote_id: str) -> List[Dict[str, Any]]:
        async with self.conn.execute(
            "SELECT url, media_type, status, local_path FROM media "
            "WHERE target_scope = ? AND remote_id = ? ORDER BY media_id",
            (target_scope, remote_id)
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            {'url': row[0], 'media_type': row[1], 'status': row[2], 'local_path': row[3]}
            for row in rows
        ]


async def open_store(path: Union[str, Path], migrations: Sequence[Migration] = MIGRATIONS) -> Store:
    """
    Open (creating if needed) and migrate the archive database

    Raises:
        StoreUnavailableError: the database file cannot be opened
        MigrationFailedError: a schema migration failed
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(path), isolation_level=None)
    except (OSError, aiosqlite.Error) as e:
        raise StoreUnavailableError(f"Cannot open store at {path}: {e}") from e

    try:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    except aiosqlite.Error as e:
        await conn.close()
        raise StoreUnavailableError(f"Cannot open store at {path}: {e}") from e

    store = Store(path, conn, migrations)
    try:
        await apply_migrations(conn, store.migrations)
    except BaseException:
        await conn.close()
        raise
    return store
