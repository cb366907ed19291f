"""Resumable upload state machine.

Drives one queued upload from its cached content to a confirmed remote
object. Progress is checkpointed into the queue entry after every
acknowledged chunk, so a restarted process resumes from the last
acknowledged offset instead of starting over.

Every write back into the local store first checks that the queue entry
still carries the ``op_id`` this transfer was started for. A newer upload
or delete of the same path replaces that id, and the stale transfer then
stops without touching the store.
"""

import enum
import logging
from typing import Any

from blobdb import metrics
from blobdb.context import BlobDBContext
from blobdb.errors import StoreError, TransferError
from blobdb.models import (
    ChunkContinue,
    ChunkFinish,
    Pending,
    PendingUpload,
    ResolvedObject,
)
from blobdb.store.base import StoreTransaction

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    """How a queued operation ended."""

    COMPLETED = "completed"
    SUPERSEDED = "superseded"


async def is_current(txn: StoreTransaction, queue: str, pending: Pending) -> bool:
    """Return True if ``pending`` is still the queued operation for its path."""
    record = await txn.get(queue, pending.path)
    return isinstance(record, dict) and record.get("op_id", "") == pending.op_id


class UploadStateMachine:
    """Runs queued uploads against the remote transfer client."""

    def __init__(self, ctx: BlobDBContext) -> None:
        self._ctx = ctx

    async def run(self, pending: PendingUpload) -> Outcome:
        """Upload ``pending`` to completion.

        Args:
            pending: The queued upload, possibly carrying a resume token.

        Returns:
            Outcome.COMPLETED once the resolved object is recorded, or
            Outcome.SUPERSEDED if a newer operation replaced this one.

        Raises:
            StoreError: If the cached content is missing or a store write fails.
            TransferError: If the remote client fails.
        """
        store = self._ctx.require_store()
        client = self._ctx.client
        path = pending.path

        content = await store.get(self._ctx.cache, path)
        if content is None:
            raise StoreError("No cached content for pending upload", path=path)
        if isinstance(content, str):
            content = content.encode()

        if pending.state is None:
            state = await client.begin_upload(path, content, pending.metadata)
            if not await self._checkpoint(pending, state):
                return Outcome.SUPERSEDED
            logger.info(
                "Started upload of %s (%d bytes)",
                path,
                len(content),
                extra={"path": path, "op_id": pending.op_id},
            )
        else:
            state = pending.state
            metrics.record_resume()
            logger.info(
                "Resuming upload of %s", path, extra={"path": path, "op_id": pending.op_id}
            )

        chunk = 0
        while True:
            result = await client.advance(state, content)
            chunk += 1
            metrics.record_chunk()

            if isinstance(result, ChunkFinish):
                return await self._finish(pending, result.metadata)

            if not isinstance(result, ChunkContinue):
                raise TransferError(f"Unexpected chunk result: {result!r}", path=path)

            state = result.state
            if not await self._checkpoint(pending, state):
                return Outcome.SUPERSEDED
            logger.debug(
                "Checkpointed chunk %d of %s",
                chunk,
                path,
                extra={"path": path, "op_id": pending.op_id, "chunk": chunk},
            )

    async def _checkpoint(self, pending: PendingUpload, state: Any) -> bool:
        """Persist a new resume token if the queue entry is still ours."""
        store = self._ctx.require_store()
        queue = self._ctx.queue
        async with store.transaction(queue) as txn:
            if not await is_current(txn, queue, pending):
                self._log_superseded(pending)
                return False
            await txn.put(queue, pending.path, pending.with_state(state).to_record())
        return True

    async def _finish(self, pending: PendingUpload, finish_metadata: dict[str, Any]) -> Outcome:
        """Record the resolved object and retire the queue and cache entries.

        All three writes happen in one transaction so a crash leaves either
        the pending upload (to be resumed) or the resolved object, never both
        or neither.
        """
        ctx = self._ctx
        store = ctx.require_store()
        url = ctx.client.download_url(finish_metadata)

        async with store.transaction(ctx.info, ctx.queue, ctx.cache) as txn:
            if not await is_current(txn, ctx.queue, pending):
                self._log_superseded(pending)
                return Outcome.SUPERSEDED
            await txn.put(ctx.info, pending.path, ResolvedObject(pending.path, url).to_record())
            await txn.delete(ctx.queue, pending.path)
            await txn.delete(ctx.cache, pending.path)

        ctx.local_refs.revoke_path(pending.path)
        logger.info("Upload of %s complete", pending.path, extra={"path": pending.path})
        return Outcome.COMPLETED

    @staticmethod
    def _log_superseded(pending: PendingUpload) -> None:
        logger.info(
            "Upload of %s superseded by a newer operation",
            pending.path,
            extra={"path": pending.path, "op_id": pending.op_id},
        )
