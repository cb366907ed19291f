"""Background processor for the pending-operation queue.

A single drain task works through the queue head-first, one operation at a
time. The first operation that raises halts the drain and is left at the
head, untouched, so nothing behind it runs out of order. Draining resumes
the next time ``start()`` is called.
"""

import asyncio
import logging

from blobdb import metrics
from blobdb.context import BlobDBContext
from blobdb.models import (
    CompleteEvent,
    ErrorEvent,
    Pending,
    PendingDelete,
    pending_from_record,
)
from blobdb.upload import Outcome, UploadStateMachine, is_current

logger = logging.getLogger(__name__)


class QueueProcessor:
    """Single-flight drain loop over the pending-operation queue.

    Attributes:
        running: True while a drain task is active.
    """

    def __init__(self, ctx: BlobDBContext) -> None:
        self._ctx = ctx
        self._uploads = UploadStateMachine(ctx)
        self._running = False
        self._wake = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> asyncio.Task[None] | None:
        """Begin draining the queue unless a drain is already running.

        Must be called from inside the event loop.

        Returns:
            The new drain task, or None if one was already running.
        """
        if self._running:
            # Make the active drain look at the queue once more before it
            # exits, in case the caller enqueued behind its last read.
            self._wake = True
            return None

        self._running = True
        self._wake = False
        try:
            task = asyncio.get_running_loop().create_task(self._drain())
        except RuntimeError:
            self._running = False
            raise
        self._task = task
        return task

    async def join(self) -> None:
        """Wait until no drain task is running."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def _drain(self) -> None:
        ctx = self._ctx
        halted: ErrorEvent | None = None
        try:
            while True:
                self._wake = False
                path = ""
                action = "unknown"
                try:
                    store = ctx.require_store()
                    records = await store.first(ctx.queue, 1)
                    if not records:
                        if self._wake:
                            continue
                        break
                    record = records[0]
                    if isinstance(record, dict):
                        path = str(record.get("path", ""))
                        action = str(record.get("action", "unknown"))
                    pending = pending_from_record(record)
                    outcome = await self._execute(pending)
                except Exception as e:
                    logger.exception(
                        "Queue halted: %s of %s failed",
                        action,
                        path,
                        extra={"path": path, "action": action},
                    )
                    metrics.record_operation(action, "error")
                    metrics.record_halt()
                    halted = ErrorEvent(path=path, error=e)
                    break

                metrics.record_operation(action, outcome.value)
                if outcome is Outcome.COMPLETED:
                    await ctx.notify_complete(CompleteEvent(path=pending.path))
        finally:
            self._running = False

        # Reported after the flag is cleared so the callback can call start().
        if halted is not None:
            await ctx.notify_error(halted)

    async def _execute(self, pending: Pending) -> Outcome:
        if isinstance(pending, PendingDelete):
            return await self._delete(pending)
        return await self._uploads.run(pending)

    async def _delete(self, pending: PendingDelete) -> Outcome:
        """Delete the remote object, then retire the queue entry.

        Retiring also drops any resolved object recorded for the path while
        the delete was queued.
        """
        ctx = self._ctx
        store = ctx.require_store()

        await ctx.client.delete(pending.path)

        async with store.transaction(ctx.info, ctx.queue) as txn:
            if not await is_current(txn, ctx.queue, pending):
                logger.info(
                    "Delete of %s superseded by a newer operation",
                    pending.path,
                    extra={"path": pending.path, "op_id": pending.op_id},
                )
                return Outcome.SUPERSEDED
            await txn.delete(ctx.info, pending.path)
            await txn.delete(ctx.queue, pending.path)

        logger.info("Remote delete of %s complete", pending.path, extra={"path": pending.path})
        return Outcome.COMPLETED
