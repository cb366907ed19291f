"""Persistent store backends for BlobDB."""

from typing import TYPE_CHECKING

from blobdb.store.base import DEFAULT_COLLECTIONS, BlobStore, StoreTransaction

if TYPE_CHECKING:
    from blobdb.config import StoreConfig

__all__ = [
    "BlobStore",
    "create_blob_store",
    "DEFAULT_COLLECTIONS",
    "StoreTransaction",
]


def create_blob_store(config: "StoreConfig") -> BlobStore:
    """Create a store instance based on configuration.

    The store is not initialized; pass it to ``BlobDB.upgrade_db()`` (or
    call ``init_db()``) before use.

    Args:
        config: The store configuration.

    Returns:
        A store instance implementing the BlobStore protocol.

    Raises:
        ValueError: If the engine is unknown or a collection name is invalid.
    """
    engine = config.engine
    names = config.names
    collections = (names.info, names.cache, names.queue)

    if engine == "sqlite":
        from blobdb.store.sqlite import SQLiteBlobStore

        return SQLiteBlobStore(config.sqlite_path, collections=collections, key_column=names.key)

    elif engine == "memory":
        from blobdb.store.memory import MemoryBlobStore

        return MemoryBlobStore(collections=collections)

    else:
        raise ValueError(f"Unknown store engine: {engine}")
