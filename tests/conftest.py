"""Shared pytest fixtures for BlobDB tests.

Most tests run against the in-memory store and remote client. A store
instance shared between two BlobDB objects stands in for a process
restart: the second instance sees exactly what the first one persisted.
"""

import logging

import pytest

from blobdb.blobdb import BlobDB
from blobdb.errors import TransferError
from blobdb.logging_config import LOGGER_NAME
from blobdb.models import PendingUpload
from blobdb.remote.memory import MemoryRemoteClient
from blobdb.store.memory import MemoryBlobStore
from blobdb.store.sqlite import SQLiteBlobStore

CONTENT = b"hello world!"  # three 4-byte chunks


class ScriptedRemote(MemoryRemoteClient):
    """MemoryRemoteClient with hooks for injecting failures and races.

    Attributes:
        advances: Number of ``advance`` calls so far.
        fail_on_advance: 1-based ``advance`` call number that raises.
        fail_paths: Paths whose ``begin_upload`` raises.
        on_advance: Awaited with the call number before each ``advance``.
        on_delete: Awaited with the path before each ``delete``.
    """

    def __init__(self, chunk_size: int = 4) -> None:
        super().__init__(chunk_size=chunk_size)
        self.advances = 0
        self.fail_on_advance: int | None = None
        self.fail_paths: set[str] = set()
        self.on_advance = None
        self.on_delete = None

    async def begin_upload(self, path, content, metadata):
        if path in self.fail_paths:
            raise TransferError("Upload rejected", path=path, code="Forbidden")
        return await super().begin_upload(path, content, metadata)

    async def advance(self, state, content):
        self.advances += 1
        if self.on_advance is not None:
            await self.on_advance(self.advances)
        if self.fail_on_advance == self.advances:
            raise TransferError("Connection reset by peer", code="ConnectionReset")
        return await super().advance(state, content)

    async def delete(self, path):
        if self.on_delete is not None:
            await self.on_delete(path)
        await super().delete(path)


class EventRecorder:
    """Collects on_error / on_complete notifications."""

    def __init__(self) -> None:
        self.errors = []
        self.completed = []

    def on_error(self, event) -> None:
        self.errors.append(event)

    def on_complete(self, event) -> None:
        self.completed.append(event)

    @property
    def completed_paths(self) -> list[str]:
        return [e.path for e in self.completed]

    @property
    def error_paths(self) -> list[str]:
        return [e.path for e in self.errors]


async def seed_upload(store, path: str, content: bytes, metadata=None, names=None) -> PendingUpload:
    """Queue an upload directly in the store, bypassing the facade."""
    info, cache, queue = names or ("blob_info", "blob_cache", "blob_queue")
    pending = PendingUpload(path=path, metadata=metadata or {})
    async with store.transaction(cache, queue) as txn:
        await txn.put(cache, path, content)
        await txn.put(queue, path, pending.to_record())
    return pending


@pytest.fixture(autouse=True)
def reset_blobdb_logger():
    """Undo configure_logging() so caplog keeps working across tests."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
async def memory_store():
    store = MemoryBlobStore()
    await store.init_db()
    yield store
    await store.close()


@pytest.fixture
async def sqlite_store(tmp_path):
    store = SQLiteBlobStore(str(tmp_path / "blobdb.db"))
    await store.init_db()
    yield store
    await store.close()


@pytest.fixture(params=["sqlite", "memory"])
async def any_store(request, tmp_path):
    """Each store adapter in turn."""
    if request.param == "sqlite":
        store = SQLiteBlobStore(str(tmp_path / "blobdb.db"))
    else:
        store = MemoryBlobStore()
    await store.init_db()
    yield store
    await store.close()


@pytest.fixture
def remote() -> ScriptedRemote:
    return ScriptedRemote(chunk_size=4)


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
async def make_db(remote, events):
    """Factory for BlobDB instances bound to a store.

    Each call returns a fresh instance, so calling it twice with the same
    store simulates a restart.
    """
    instances = []

    async def _make(store, client=None, **kwargs) -> BlobDB:
        db = BlobDB(
            client or remote,
            on_error=events.on_error,
            on_complete=events.on_complete,
            **kwargs,
        )
        await db.upgrade_db(store)
        db.set_db(store)
        instances.append(db)
        return db

    yield _make

    for instance in instances:
        await instance.close()


@pytest.fixture
async def db(make_db, memory_store) -> BlobDB:
    instance = await make_db(memory_store)
    await instance.processor.join()
    return instance
