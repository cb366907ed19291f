"""SQLite-backed persistent store for BlobDB.

Implements the BlobStore protocol using aiosqlite for async access. Each
collection is one table::

    seq      INTEGER PRIMARY KEY AUTOINCREMENT   -- insertion order
    <key>    TEXT NOT NULL UNIQUE                -- blob path
    value    BLOB NOT NULL                       -- raw bytes or JSON text
    is_json  INTEGER NOT NULL                    -- 1 if value is JSON

Upserts keep the original ``seq`` so checkpointing a queued operation
never moves it. The connection runs in autocommit mode; multi-collection
transactions are explicit ``BEGIN IMMEDIATE`` / ``COMMIT`` blocks.
"""

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

from blobdb.errors import StoreError
from blobdb.store.base import DEFAULT_COLLECTIONS

logger = logging.getLogger(__name__)


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def _check_identifier(name: str) -> str:
    """Validate a collection or column name for use in SQL.

    Raises:
        ValueError: If the name is not a plain identifier.
    """
    if not _IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid collection or key name: {name!r}")
    return name


def _encode(value: Any) -> tuple[bytes, int]:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value), 0
    return json.dumps(value, separators=(",", ":")).encode("utf-8"), 1


def _decode(data: bytes, is_json: int) -> Any:
    if is_json:
        return json.loads(data)
    return bytes(data)


class SQLiteBlobStore:
    """Persistent store backed by a local SQLite database.

    Attributes:
        db_path: Path to the SQLite database file.
        collections: Names of the tables managed by this store.
        key_column: Name of the key column in every table.
    """

    def __init__(
        self,
        db_path: str,
        collections: Iterable[str] = DEFAULT_COLLECTIONS,
        key_column: str = "path",
    ) -> None:
        """Initialize the SQLite store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Use ':memory:' for an in-memory database (useful in tests).
            collections: Collection (table) names to create and serve.
            key_column: Column name used for the blob path.

        Raises:
            ValueError: If a collection or key name is not a valid identifier.
        """
        self.db_path = db_path
        self.collections = tuple(_check_identifier(c) for c in collections)
        self.key_column = _check_identifier(key_column)
        self._db: aiosqlite.Connection | None = None
        # One connection is shared by the facade and the queue processor;
        # the lock keeps their statements from interleaving.
        self._lock = asyncio.Lock()

    async def init_db(self, collections: Iterable[str] = ()) -> None:
        """Open the database and create tables if they do not exist.

        Sets WAL journal mode, NORMAL synchronous and a 5-second busy
        timeout. Idempotent -- safe to call on every startup.

        Args:
            collections: Extra collection names to create and serve in
                addition to those given at construction.

        Raises:
            ValueError: If a collection name is not a valid identifier.
            StoreError: If the database cannot be opened or a table created.
        """
        extra = [_check_identifier(c) for c in collections]
        self.collections += tuple(c for c in dict.fromkeys(extra) if c not in self.collections)
        try:
            if self._db is None:
                self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
                await self._db.execute("PRAGMA journal_mode = WAL")
                await self._db.execute("PRAGMA synchronous = NORMAL")
                await self._db.execute("PRAGMA busy_timeout = 5000")
            async with self._lock:
                for name in self.collections:
                    await self._db.execute(
                        f"""CREATE TABLE IF NOT EXISTS "{name}" (
                                seq     INTEGER PRIMARY KEY AUTOINCREMENT,
                                "{self.key_column}" TEXT NOT NULL UNIQUE,
                                value   BLOB NOT NULL,
                                is_json INTEGER NOT NULL DEFAULT 0
                            )"""
                    )
        except aiosqlite.Error as e:
            raise StoreError(f"Cannot initialize SQLite store at {self.db_path}: {e}") from e

        logger.info(
            "SQLite store initialized at %s (collections=%s)",
            self.db_path,
            ",".join(self.collections),
        )

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _ensure_db(self) -> aiosqlite.Connection:
        """Return the active database connection or raise."""
        if self._db is None:
            raise StoreError("SQLiteBlobStore not initialized -- call init_db() first")
        return self._db

    def _table(self, collection: str) -> str:
        if collection not in self.collections:
            raise StoreError(f"Unknown collection: {collection}")
        return collection

    # -- Statement helpers (caller holds the lock) -----------------------------

    async def _get(self, db: aiosqlite.Connection, collection: str, key: str) -> Any | None:
        table = self._table(collection)
        async with db.execute(
            f'SELECT value, is_json FROM "{table}" WHERE "{self.key_column}" = ?',
            (key,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return _decode(row[0], row[1])

    async def _put(self, db: aiosqlite.Connection, collection: str, key: str, value: Any) -> None:
        table = self._table(collection)
        data, is_json = _encode(value)
        await db.execute(
            f"""INSERT INTO "{table}" ("{self.key_column}", value, is_json)
                VALUES (?, ?, ?)
                ON CONFLICT ("{self.key_column}")
                DO UPDATE SET value = excluded.value, is_json = excluded.is_json""",
            (key, data, is_json),
        )

    async def _delete(self, db: aiosqlite.Connection, collection: str, key: str) -> None:
        table = self._table(collection)
        await db.execute(f'DELETE FROM "{table}" WHERE "{self.key_column}" = ?', (key,))

    # -- Point operations ------------------------------------------------------

    async def get(self, collection: str, key: str) -> Any | None:
        """Read a single value, or None if absent."""
        db = self._ensure_db()
        async with self._lock:
            try:
                return await self._get(db, collection, key)
            except aiosqlite.Error as e:
                raise StoreError(f"SQLite error reading {collection}: {e}", path=key) from e

    async def put(self, collection: str, key: str, value: Any) -> None:
        """Write (upsert) a single value atomically."""
        db = self._ensure_db()
        async with self._lock:
            try:
                await self._put(db, collection, key, value)
            except aiosqlite.Error as e:
                logger.exception("SQLite error in put %s/%s", collection, key)
                raise StoreError(f"SQLite error writing {collection}: {e}", path=key) from e

    async def delete(self, collection: str, key: str) -> None:
        """Delete a single value. Missing keys are ignored."""
        db = self._ensure_db()
        async with self._lock:
            try:
                await self._delete(db, collection, key)
            except aiosqlite.Error as e:
                raise StoreError(f"SQLite error deleting from {collection}: {e}", path=key) from e

    async def first(self, collection: str, limit: int = 1) -> list[Any]:
        """Return the first ``limit`` values in insertion order."""
        db = self._ensure_db()
        table = self._table(collection)
        async with self._lock:
            try:
                async with db.execute(
                    f'SELECT value, is_json FROM "{table}" ORDER BY seq LIMIT ?',
                    (limit,),
                ) as cursor:
                    rows = await cursor.fetchall()
            except aiosqlite.Error as e:
                raise StoreError(f"SQLite error scanning {collection}: {e}") from e
        return [_decode(r[0], r[1]) for r in rows]

    # -- Transactions ----------------------------------------------------------

    @asynccontextmanager
    async def transaction(self, *collections: str) -> AsyncIterator["SQLiteTransaction"]:
        """Open an atomic transaction over the given collections.

        Commits on normal exit; rolls back if the block raises (including
        cancellation).

        Raises:
            StoreError: If a collection is unknown or BEGIN/COMMIT fails.
        """
        db = self._ensure_db()
        for name in collections:
            self._table(name)

        async with self._lock:
            try:
                await db.execute("BEGIN IMMEDIATE")
            except aiosqlite.Error as e:
                raise StoreError(f"Cannot begin transaction: {e}") from e

            txn = SQLiteTransaction(self, db, frozenset(collections))
            try:
                yield txn
            except BaseException:
                await self._rollback(db)
                raise

            try:
                await db.execute("COMMIT")
            except aiosqlite.Error as e:
                await self._rollback(db)
                raise StoreError(f"Cannot commit transaction: {e}") from e

    async def _rollback(self, db: aiosqlite.Connection) -> None:
        """Roll back the open transaction, logging rather than raising on failure."""
        try:
            await db.execute("ROLLBACK")
        except aiosqlite.Error:
            logger.exception("SQLite rollback failed on %s", self.db_path)


class SQLiteTransaction:
    """StoreTransaction bound to an open SQLite transaction."""

    def __init__(
        self, store: SQLiteBlobStore, db: aiosqlite.Connection, collections: frozenset[str]
    ) -> None:
        self._store = store
        self._db = db
        self._collections = collections

    def _check(self, collection: str) -> None:
        if collection not in self._collections:
            raise StoreError(f"Collection {collection} is not part of this transaction")

    async def get(self, collection: str, key: str) -> Any | None:
        self._check(collection)
        try:
            return await self._store._get(self._db, collection, key)
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite error reading {collection}: {e}", path=key) from e

    async def put(self, collection: str, key: str, value: Any) -> None:
        self._check(collection)
        try:
            await self._store._put(self._db, collection, key, value)
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite error writing {collection}: {e}", path=key) from e

    async def delete(self, collection: str, key: str) -> None:
        self._check(collection)
        try:
            await self._store._delete(self._db, collection, key)
        except aiosqlite.Error as e:
            raise StoreError(f"SQLite error deleting from {collection}: {e}", path=key) from e
