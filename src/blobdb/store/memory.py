"""In-memory persistent store for BlobDB.

Useful for testing and ephemeral deployments. Data lives as long as the
store object, so two BlobDB instances sharing one MemoryBlobStore behave
like one process restarting over the same database.
"""

import asyncio
import copy
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from typing import Any

from blobdb.errors import StoreError
from blobdb.store.base import DEFAULT_COLLECTIONS

_DELETED = object()


def _copy(value: Any) -> Any:
    # Stored dicts must not alias caller-owned objects.
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return copy.deepcopy(value)


class MemoryBlobStore:
    """In-memory store using one insertion-ordered dict per collection."""

    def __init__(self, collections: Iterable[str] = DEFAULT_COLLECTIONS) -> None:
        self.collections = tuple(collections)
        self._data: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def init_db(self, collections: Iterable[str] = ()) -> None:
        extra = dict.fromkeys(c for c in collections if c not in self.collections)
        self.collections += tuple(extra)
        for name in self.collections:
            self._data.setdefault(name, {})

    async def close(self) -> None:
        pass

    def _collection(self, name: str) -> dict[str, Any]:
        try:
            return self._data[name]
        except KeyError:
            if name in self.collections:
                raise StoreError("MemoryBlobStore not initialized -- call init_db() first")
            raise StoreError(f"Unknown collection: {name}")

    async def get(self, collection: str, key: str) -> Any | None:
        async with self._lock:
            value = self._collection(collection).get(key)
            return None if value is None else _copy(value)

    async def put(self, collection: str, key: str, value: Any) -> None:
        async with self._lock:
            self._collection(collection)[key] = _copy(value)

    async def delete(self, collection: str, key: str) -> None:
        async with self._lock:
            self._collection(collection).pop(key, None)

    async def first(self, collection: str, limit: int = 1) -> list[Any]:
        async with self._lock:
            values = list(self._collection(collection).values())[:limit]
            return [_copy(v) for v in values]

    @asynccontextmanager
    async def transaction(self, *collections: str) -> AsyncIterator["MemoryTransaction"]:
        """Stage writes and apply them all at once on normal exit."""
        for name in collections:
            self._collection(name)

        async with self._lock:
            txn = MemoryTransaction(self, frozenset(collections))
            yield txn
            # Only reached when the block did not raise. Replaying the log in
            # order matches SQLite: an upsert keeps its slot, delete-then-put
            # moves the key to the end.
            for name, key, value in txn.log:
                data = self._data[name]
                if value is _DELETED:
                    data.pop(key, None)
                else:
                    data[key] = value


class MemoryTransaction:
    """StoreTransaction that buffers writes until commit."""

    def __init__(self, store: MemoryBlobStore, collections: frozenset[str]) -> None:
        self._store = store
        self._collections = collections
        self.log: list[tuple[str, str, Any]] = []
        self._latest: dict[tuple[str, str], Any] = {}

    def _check(self, collection: str) -> None:
        if collection not in self._collections:
            raise StoreError(f"Collection {collection} is not part of this transaction")

    async def get(self, collection: str, key: str) -> Any | None:
        self._check(collection)
        if (collection, key) in self._latest:
            value = self._latest[(collection, key)]
            return None if value is _DELETED else _copy(value)
        value = self._store._data[collection].get(key)
        return None if value is None else _copy(value)

    async def put(self, collection: str, key: str, value: Any) -> None:
        self._check(collection)
        value = _copy(value)
        self.log.append((collection, key, value))
        self._latest[(collection, key)] = value

    async def delete(self, collection: str, key: str) -> None:
        self._check(collection)
        self.log.append((collection, key, _DELETED))
        self._latest[(collection, key)] = _DELETED
