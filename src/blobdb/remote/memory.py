"""In-memory remote transfer client for BlobDB.

Implements the RemoteTransferClient protocol against a dictionary held in
the client itself. Used by the test suite and for local development when
no real blob service is available.

Upload sessions follow the usual resumable-upload contract: the server
keeps the bytes received so far and the client's resume token records the
last acknowledged offset. A chunk re-sent from that offset (after a crash
between acknowledgement and checkpoint) replaces whatever the server held
past it.
"""

import hashlib
import logging
import uuid
from typing import Any
from urllib.parse import quote

from blobdb.errors import NotFoundError, TransferError
from blobdb.models import ChunkContinue, ChunkFinish, ChunkResult

logger = logging.getLogger(__name__)

# Default chunk size: 256 KB
_CHUNK_SIZE = 256 * 1024


class MemoryRemoteClient:
    """Remote client that stores committed objects in memory.

    Attributes:
        bucket: Name reported in finish metadata and download URLs.
        chunk_size: Bytes sent per ``advance`` call.
        online: When False every remote call raises TransferError, which
            simulates lost connectivity.
        chunk_log: ``(path, offset, length)`` for every chunk received.
        deleted: Paths passed to ``delete``, in call order.
    """

    def __init__(self, bucket: str = "blobdb", chunk_size: int = _CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.bucket = bucket
        self.chunk_size = chunk_size
        self.online = True
        self.chunk_log: list[tuple[str, int, int]] = []
        self.deleted: list[str] = []

        # path -> (data, finish metadata)
        self._objects: dict[str, tuple[bytes, dict[str, Any]]] = {}
        # upload_id -> {"path", "metadata", "received"}
        self._sessions: dict[str, dict[str, Any]] = {}
        # upload_id -> finish metadata, so a replayed final chunk is idempotent
        self._completed: dict[str, dict[str, Any]] = {}
        self._generation = 0

    def _check_online(self, path: str | None = None) -> None:
        if not self.online:
            raise TransferError("Remote service unreachable", path=path, code="Offline")

    async def init(self) -> None:
        logger.info("Memory remote client initialized (bucket=%s)", self.bucket)

    async def close(self) -> None:
        pass

    async def begin_upload(self, path: str, content: bytes, metadata: dict[str, Any]) -> Any:
        """Open an upload session and return its initial resume token."""
        self._check_online(path)
        upload_id = uuid.uuid4().hex
        self._sessions[upload_id] = {
            "path": path,
            "metadata": dict(metadata),
            "received": bytearray(),
        }
        return {"upload_id": upload_id, "offset": 0}

    async def advance(self, state: Any, content: bytes) -> ChunkResult:
        """Send one chunk starting at the token's acknowledged offset.

        Raises:
            TransferError: If offline, the session is unknown, or the token
                claims more bytes than the server holds.
        """
        self._check_online()
        upload_id = state.get("upload_id")
        if upload_id in self._completed:
            return ChunkFinish(dict(self._completed[upload_id]))
        session = self._sessions.get(upload_id)
        if session is None:
            raise TransferError(f"Unknown upload session: {upload_id}", code="NoSuchUpload")

        path = session["path"]
        offset = int(state.get("offset", 0))
        received: bytearray = session["received"]
        if offset > len(received):
            raise TransferError(
                f"Resume offset {offset} is past the {len(received)} bytes received",
                path=path,
                code="InvalidOffset",
            )

        chunk = content[offset : offset + self.chunk_size]
        del received[offset:]
        received.extend(chunk)
        self.chunk_log.append((path, offset, len(chunk)))

        new_offset = offset + len(chunk)
        if new_offset < len(content):
            return ChunkContinue({"upload_id": upload_id, "offset": new_offset})

        return ChunkFinish(self._commit(upload_id))

    def _commit(self, upload_id: str) -> dict[str, Any]:
        """Turn a finished session into a committed object."""
        session = self._sessions.pop(upload_id)
        data = bytes(session["received"])
        self._generation += 1
        finish = {
            "bucket": self.bucket,
            "name": session["path"],
            "size": len(data),
            "md5Hash": hashlib.md5(data).hexdigest(),
            "generation": str(self._generation),
            "contentType": session["metadata"].get("content_type", "application/octet-stream"),
        }
        self._objects[session["path"]] = (data, finish)
        self._completed[upload_id] = finish
        return dict(finish)

    async def delete(self, path: str) -> None:
        """Delete a committed object. Missing objects are ignored."""
        self._check_online(path)
        self._objects.pop(path, None)
        self.deleted.append(path)

    async def lookup_download_url(self, path: str) -> str:
        """Return the download URL of a committed object.

        Raises:
            NotFoundError: If nothing is committed at ``path``.
        """
        self._check_online(path)
        if path not in self._objects:
            raise NotFoundError(path)
        return self.download_url(self._objects[path][1])

    def download_url(self, metadata: dict[str, Any]) -> str:
        name = quote(metadata["name"], safe="")
        return f"memory://{metadata['bucket']}/{name}?generation={metadata['generation']}"

    # -- Inspection helpers ----------------------------------------------------

    def get_object(self, path: str) -> bytes:
        """Return the committed bytes at ``path``.

        Raises:
            NotFoundError: If nothing is committed at ``path``.
        """
        if path not in self._objects:
            raise NotFoundError(path)
        return self._objects[path][0]

    def put_object(self, path: str, data: bytes) -> dict[str, Any]:
        """Commit an object directly, bypassing the upload protocol."""
        upload_id = uuid.uuid4().hex
        self._sessions[upload_id] = {"path": path, "metadata": {}, "received": bytearray(data)}
        return self._commit(upload_id)

    @property
    def open_sessions(self) -> int:
        return len(self._sessions)
