"""BlobDB: offline-first blob storage backed by a local queue.

Writes land in the local store first and are pushed to the remote blob
service in the background. Reads prefer local content, then a recorded
remote reference, then a remote lookup.

Typical use::

    db = BlobDB(client, on_complete=print)
    await db.upgrade_db(store)
    db.set_db(store)
    url = await db.upload("photos/cat.jpg", data, {"content_type": "image/jpeg"})
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from blobdb import metrics
from blobdb.context import BlobDBContext, CompleteCallback, ErrorCallback
from blobdb.logging_config import configure_from_config
from blobdb.models import (
    DELETE,
    Pending,
    PendingDelete,
    PendingUpload,
    ResolvedObject,
    pending_from_record,
)
from blobdb.queue import QueueProcessor
from blobdb.remote import create_remote_client
from blobdb.remote.base import RemoteTransferClient
from blobdb.store import create_blob_store
from blobdb.store.base import BlobStore

if TYPE_CHECKING:
    from blobdb.config import BlobDBConfig

logger = logging.getLogger(__name__)


class BlobDB:
    """Public facade over the local store, queue processor and remote client.

    Args:
        client: Remote transfer client used for uploads, deletes and lookups.
        on_error: Called with an ErrorEvent when the queue drain halts.
        on_complete: Called with a CompleteEvent once per confirmed operation.
        blob_info_store_name: Collection holding resolved remote references.
        blob_cache_store_name: Collection holding locally cached content.
        blob_queue_store_name: Collection holding pending operations.
    """

    def __init__(
        self,
        client: RemoteTransferClient,
        on_error: ErrorCallback | None = None,
        on_complete: CompleteCallback | None = None,
        blob_info_store_name: str = "blob_info",
        blob_cache_store_name: str = "blob_cache",
        blob_queue_store_name: str = "blob_queue",
    ) -> None:
        self._ctx = BlobDBContext(
            client=client,
            info=blob_info_store_name,
            cache=blob_cache_store_name,
            queue=blob_queue_store_name,
            on_error=on_error,
            on_complete=on_complete,
        )
        self._processor = QueueProcessor(self._ctx)

    @property
    def client(self) -> RemoteTransferClient:
        return self._ctx.client

    @property
    def store(self) -> BlobStore | None:
        return self._ctx.store

    @property
    def processor(self) -> QueueProcessor:
        return self._processor

    def collection_names(self) -> tuple[str, str, str]:
        """Return the (info, cache, queue) collection names, in that order."""
        return (self._ctx.info, self._ctx.cache, self._ctx.queue)

    # -- Lifecycle -------------------------------------------------------------

    async def upgrade_db(self, store: BlobStore) -> None:
        """Create this instance's collections in ``store`` if missing."""
        await store.init_db(self.collection_names())

    def set_db(self, store: BlobStore) -> None:
        """Bind a ready store and start draining whatever is queued in it.

        Must be called from inside the event loop.
        """
        self._ctx.store = store
        self._processor.start()

    async def close(self) -> None:
        """Wait for the in-flight drain and drop all local references.

        The store and client are owned by the caller and stay open.
        """
        await self._processor.join()
        self._ctx.local_refs.clear()

    # -- Writes ----------------------------------------------------------------

    async def upload(
        self, path: str, content: bytes, metadata: dict[str, Any] | None = None
    ) -> str:
        """Cache ``content`` locally and queue it for upload.

        Any operation already queued for ``path`` is replaced.

        Args:
            path: The blob path.
            content: The bytes to store.
            metadata: Optional upload metadata for the remote client.

        Returns:
            A locally-scoped ``blob:`` reference to the content.

        Raises:
            StoreError: If the local transaction fails.
        """
        ctx = self._ctx
        store = ctx.require_store()
        data = bytes(content)
        pending = PendingUpload(path=path, metadata=dict(metadata or {}))

        async with store.transaction(ctx.cache, ctx.queue) as txn:
            await txn.put(ctx.cache, path, data)
            await txn.put(ctx.queue, path, pending.to_record())

        logger.info(
            "Queued upload of %s (%d bytes)",
            path,
            len(data),
            extra={"path": path, "action": pending.action, "op_id": pending.op_id},
        )
        self._processor.start()
        return ctx.local_refs.create(path, data)

    async def delete(self, path: str) -> None:
        """Drop local state for ``path`` and queue a remote delete.

        Returns once the local transaction commits; the remote delete
        happens in the background.

        Raises:
            StoreError: If the local transaction fails.
        """
        ctx = self._ctx
        store = ctx.require_store()
        pending = PendingDelete(path=path)

        async with store.transaction(ctx.cache, ctx.info, ctx.queue) as txn:
            await txn.delete(ctx.cache, path)
            await txn.delete(ctx.info, path)
            await txn.put(ctx.queue, path, pending.to_record())

        ctx.local_refs.revoke_path(path)
        logger.info(
            "Queued delete of %s",
            path,
            extra={"path": path, "action": pending.action, "op_id": pending.op_id},
        )
        self._processor.start()

    # -- Reads -----------------------------------------------------------------

    async def download_url(self, path: str) -> str:
        """Return the best available reference for ``path``.

        Resolution order: locally cached content (as a ``blob:``
        reference), then the recorded remote reference, then a remote
        lookup whose result is recorded for next time.

        Raises:
            NotFoundError: If nothing is known locally or remotely.
            TransferError: If the remote lookup fails.
        """
        ctx = self._ctx
        store = ctx.require_store()

        content = await store.get(ctx.cache, path)
        if content is not None:
            return ctx.local_refs.create(path, content)

        record = await store.get(ctx.info, path)
        if record is not None:
            return ResolvedObject.from_record(record).download_url

        url = await ctx.client.lookup_download_url(path)
        async with store.transaction(ctx.info, ctx.queue) as txn:
            queued = await txn.get(ctx.queue, path)
            # The object is about to go; do not record it.
            if queued is None or queued.get("action") != DELETE:
                await txn.put(ctx.info, path, ResolvedObject(path, url).to_record())
        return url

    def resolve_local(self, url: str) -> bytes:
        """Return the content behind a ``blob:`` reference from this instance.

        Raises:
            KeyError: If the reference is unknown or revoked.
        """
        return self._ctx.local_refs.resolve(url)

    def revoke_local(self, url: str) -> None:
        """Release a ``blob:`` reference. Unknown references are ignored."""
        self._ctx.local_refs.revoke(url)

    # -- Queue management ------------------------------------------------------

    def retry(self) -> asyncio.Task[None] | None:
        """Restart a halted drain from the queue head."""
        self._ctx.require_store()
        return self._processor.start()

    async def pending(self, limit: int = 100) -> list[Pending]:
        """Return up to ``limit`` queued operations, head first."""
        store = self._ctx.require_store()
        records = await store.first(self._ctx.queue, limit)
        return [pending_from_record(r) for r in records]

    async def discard(self, path: str) -> bool:
        """Drop the queued operation and cached content for ``path``.

        Used to clear an operation that keeps failing at the queue head.
        Draining restarts afterwards.

        Returns:
            True if an operation was queued for ``path``.
        """
        ctx = self._ctx
        store = ctx.require_store()

        async with store.transaction(ctx.cache, ctx.queue) as txn:
            record = await txn.get(ctx.queue, path)
            await txn.delete(ctx.queue, path)
            await txn.delete(ctx.cache, path)
        ctx.local_refs.revoke_path(path)

        if record is None:
            return False

        action = record.get("action", "unknown")
        logger.warning(
            "Discarded queued %s of %s", action, path, extra={"path": path, "action": action}
        )
        metrics.record_operation(action, "discarded")
        self._processor.start()
        return True


async def open_blobdb(
    config: "BlobDBConfig",
    on_error: ErrorCallback | None = None,
    on_complete: CompleteCallback | None = None,
) -> BlobDB:
    """Build a ready BlobDB from configuration.

    Configures logging and metrics, creates and connects the store and
    remote client, runs the schema hook and starts draining. The caller
    closes ``db.store`` and ``db.client`` when done.

    Args:
        config: The loaded BlobDB configuration.
        on_error: Called when the queue drain halts.
        on_complete: Called once per confirmed operation.

    Returns:
        A BlobDB with its store bound.
    """
    configure_from_config(config.logging)
    if config.metrics.enabled:
        metrics.init_metrics()

    store = create_blob_store(config.store)
    client = create_remote_client(config.remote)
    await client.init()

    names = config.store.names
    db = BlobDB(
        client,
        on_error=on_error,
        on_complete=on_complete,
        blob_info_store_name=names.info,
        blob_cache_store_name=names.cache,
        blob_queue_store_name=names.queue,
    )
    await db.upgrade_db(store)
    db.set_db(store)
    return db
