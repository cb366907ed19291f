"""Shared collaborators passed to the queue processor and upload state machine."""

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from blobdb.local_refs import LocalReferenceRegistry
from blobdb.models import CompleteEvent, ErrorEvent
from blobdb.remote.base import RemoteTransferClient
from blobdb.store.base import BlobStore

logger = logging.getLogger(__name__)

# Callbacks may be plain functions or coroutine functions.
ErrorCallback = Callable[[ErrorEvent], Any]
CompleteCallback = Callable[[CompleteEvent], Any]


@dataclass
class BlobDBContext:
    """Everything a BlobDB instance owns, in one place.

    Attributes:
        client: The remote transfer client.
        info: Name of the resolved-object collection.
        cache: Name of the content cache collection.
        queue: Name of the pending-operation collection.
        on_error: Called when a queue drain halts.
        on_complete: Called when an operation is confirmed remotely.
        store: The bound store; None until ``BlobDB.set_db()``.
        local_refs: Live ``blob:`` references handed out by this instance.
    """

    client: RemoteTransferClient
    info: str
    cache: str
    queue: str
    on_error: ErrorCallback | None = None
    on_complete: CompleteCallback | None = None
    store: BlobStore | None = None
    local_refs: LocalReferenceRegistry = field(default_factory=LocalReferenceRegistry)

    def require_store(self) -> BlobStore:
        if self.store is None:
            raise RuntimeError("No store bound -- call set_db() before using BlobDB")
        return self.store

    async def notify_error(self, event: ErrorEvent) -> None:
        await self._invoke(self.on_error, event)

    async def notify_complete(self, event: CompleteEvent) -> None:
        await self._invoke(self.on_complete, event)

    async def _invoke(self, callback: Callable[[Any], Any] | None, event: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            # A broken callback must not wedge the drain loop.
            logger.exception("%s callback failed for %s", type(event).__name__, event.path)
