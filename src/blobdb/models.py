"""Data model types for BlobDB.

These dataclasses represent the records kept in the local store (pending
operations and resolved objects), the notifications delivered to callers,
and the per-chunk results returned by a remote transfer client.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Union

from blobdb.errors import StoreError

UPLOAD = "upload"
DELETE = "delete"


def new_op_id() -> str:
    """Return a fresh identifier for an enqueued operation."""
    return uuid.uuid4().hex


@dataclass
class PendingUpload:
    """A queued upload of the cached content at ``path``.

    Attributes:
        path: The blob path.
        metadata: User-supplied upload metadata passed to the remote client.
        state: Opaque resumable-state token, None until the transfer starts.
        op_id: Identifier minted when the operation was enqueued.
    """

    path: str
    metadata: dict[str, Any] = field(default_factory=dict)
    state: Any = None
    op_id: str = field(default_factory=new_op_id)

    action = UPLOAD

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "path": self.path,
            "action": UPLOAD,
            "metadata": self.metadata,
            "op_id": self.op_id,
        }
        if self.state is not None:
            record["state"] = self.state
        return record

    def with_state(self, state: Any) -> PendingUpload:
        """Return a copy of this operation carrying a new resume token."""
        return PendingUpload(
            path=self.path, metadata=self.metadata, state=state, op_id=self.op_id
        )


@dataclass
class PendingDelete:
    """A queued remote delete of ``path``.

    Attributes:
        path: The blob path.
        op_id: Identifier minted when the operation was enqueued.
    """

    path: str
    op_id: str = field(default_factory=new_op_id)

    action = DELETE

    def to_record(self) -> dict[str, Any]:
        return {"path": self.path, "action": DELETE, "op_id": self.op_id}


Pending = Union[PendingUpload, PendingDelete]


def pending_from_record(record: dict[str, Any]) -> Pending:
    """Rebuild a pending operation from its stored record.

    Args:
        record: A dict previously produced by ``to_record()``.

    Returns:
        The matching PendingUpload or PendingDelete.

    Raises:
        StoreError: If the record has an unknown action or no path.
    """
    path = record.get("path")
    if not isinstance(path, str):
        raise StoreError(f"Queue record has no path: {record!r}")
    action = record.get("action")
    op_id = record.get("op_id", "")
    if action == UPLOAD:
        return PendingUpload(
            path=path,
            metadata=record.get("metadata") or {},
            state=record.get("state"),
            op_id=op_id,
        )
    if action == DELETE:
        return PendingDelete(path=path, op_id=op_id)
    raise StoreError(f"Unknown queue action: {action!r}", path=path)


@dataclass
class ResolvedObject:
    """A path whose content has a confirmed remote download reference.

    Attributes:
        path: The blob path.
        download_url: The remote, cacheable download reference.
    """

    path: str
    download_url: str

    def to_record(self) -> dict[str, Any]:
        return {"path": self.path, "download_url": self.download_url}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ResolvedObject:
        return cls(path=record["path"], download_url=record["download_url"])


@dataclass
class ErrorEvent:
    """Delivered to ``on_error`` when a queue drain halts."""

    path: str
    error: BaseException


@dataclass
class CompleteEvent:
    """Delivered to ``on_complete`` once an operation is confirmed remotely."""

    path: str


@dataclass
class ChunkContinue:
    """One chunk was acknowledged and more remain.

    Attributes:
        state: The updated resume token to persist.
    """

    state: Any


@dataclass
class ChunkFinish:
    """The final chunk was acknowledged and the object is committed remotely.

    Attributes:
        metadata: Remote object metadata, used to derive the download URL.
    """

    metadata: dict[str, Any]


ChunkResult = Union[ChunkContinue, ChunkFinish]
