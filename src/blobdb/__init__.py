"""BlobDB: offline-first blob storage with resumable background upload."""

from blobdb.blobdb import BlobDB, open_blobdb
from blobdb.errors import BlobDBError, NotFoundError, StoreError, TransferError
from blobdb.models import (
    ChunkContinue,
    ChunkFinish,
    CompleteEvent,
    ErrorEvent,
    PendingDelete,
    PendingUpload,
    ResolvedObject,
)

__version__ = "0.1.0"

__all__ = [
    "BlobDB",
    "BlobDBError",
    "ChunkContinue",
    "ChunkFinish",
    "CompleteEvent",
    "ErrorEvent",
    "NotFoundError",
    "open_blobdb",
    "PendingDelete",
    "PendingUpload",
    "ResolvedObject",
    "StoreError",
    "TransferError",
]
