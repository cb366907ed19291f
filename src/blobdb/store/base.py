"""Abstract persistent store protocol for BlobDB."""

from collections.abc import Iterable
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

# Default names for the resolved-object directory, content cache and queue.
DEFAULT_COLLECTIONS = ("blob_info", "blob_cache", "blob_queue")


class StoreTransaction(Protocol):
    """Reads and writes scoped to one atomic store transaction.

    Writes made through a transaction become visible together when the
    enclosing ``transaction()`` block exits normally, and are discarded if
    it exits with an exception. Reads observe the transaction's own writes.
    """

    async def get(self, collection: str, key: str) -> Any | None:
        """Read a value inside the transaction, or None if absent."""
        ...

    async def put(self, collection: str, key: str, value: Any) -> None:
        """Write (upsert) a value inside the transaction."""
        ...

    async def delete(self, collection: str, key: str) -> None:
        """Delete a value inside the transaction. Missing keys are ignored."""
        ...


class BlobStore(Protocol):
    """Protocol defining the local persistent store interface.

    A store exposes three named collections (content cache, resolved-object
    directory, pending-operation queue) keyed by blob path, plus atomic
    multi-collection transactions. Cache values are raw ``bytes``; the
    other collections hold JSON-compatible dicts.
    """

    async def init_db(self, collections: Iterable[str] = ()) -> None:
        """Create the collections if they do not already exist.

        Must be idempotent (safe to call on every startup).

        Args:
            collections: Extra collection names to create and serve in
                addition to those the store was constructed with.
        """
        ...

    async def close(self) -> None:
        """Release the underlying connection and resources."""
        ...

    async def get(self, collection: str, key: str) -> Any | None:
        """Read a single value.

        Args:
            collection: The collection name.
            key: The blob path.

        Returns:
            The stored value, or None if the key is absent.
        """
        ...

    async def put(self, collection: str, key: str, value: Any) -> None:
        """Write (upsert) a single value atomically.

        Overwriting an existing key keeps its position in scan order.

        Args:
            collection: The collection name.
            key: The blob path.
            value: ``bytes`` or a JSON-compatible dict.
        """
        ...

    async def delete(self, collection: str, key: str) -> None:
        """Delete a single value. Missing keys are ignored.

        Args:
            collection: The collection name.
            key: The blob path.
        """
        ...

    async def first(self, collection: str, limit: int = 1) -> list[Any]:
        """Return the first ``limit`` values in insertion order.

        Args:
            collection: The collection name.
            limit: Maximum number of values to return.

        Returns:
            Up to ``limit`` values, oldest key first.
        """
        ...

    def transaction(self, *collections: str) -> AbstractAsyncContextManager[StoreTransaction]:
        """Open an atomic transaction over the given collections.

        Usage::

            async with store.transaction(cache, queue) as txn:
                await txn.put(cache, path, content)
                await txn.put(queue, path, record)

        Args:
            collections: Names of the collections the transaction touches.

        Returns:
            An async context manager yielding a StoreTransaction.
        """
        ...
