"""Abstract remote transfer client protocol for BlobDB."""

from typing import Any, Protocol

from blobdb.models import ChunkResult


class RemoteTransferClient(Protocol):
    """Protocol defining the remote blob service interface.

    Uploads are chunked and resumable: ``begin_upload`` returns an opaque,
    JSON-serialisable resume token and each ``advance`` call sends one
    chunk. BlobDB persists the token between calls and never looks inside
    it.
    """

    async def init(self) -> None:
        """Connect to the remote service."""
        ...

    async def close(self) -> None:
        """Release resources held by the client."""
        ...

    async def begin_upload(self, path: str, content: bytes, metadata: dict[str, Any]) -> Any:
        """Start a chunked upload.

        Args:
            path: The blob path.
            content: The full content to upload.
            metadata: User-supplied upload metadata.

        Returns:
            The initial resume token. No chunk has been sent yet.

        Raises:
            TransferError: If the remote service rejects the upload.
        """
        ...

    async def advance(self, state: Any, content: bytes) -> ChunkResult:
        """Send the next chunk of an upload.

        Args:
            state: The most recently persisted resume token.
            content: The full content being uploaded.

        Returns:
            ChunkContinue with the next token, or ChunkFinish with the
            committed object's metadata.

        Raises:
            TransferError: If the chunk could not be delivered.
        """
        ...

    async def delete(self, path: str) -> None:
        """Delete the remote object at ``path``.

        Deleting a path that does not exist is not an error.

        Raises:
            TransferError: If the remote service could not be reached.
        """
        ...

    async def lookup_download_url(self, path: str) -> str:
        """Fetch the download URL of an existing remote object.

        Raises:
            NotFoundError: If no object exists at ``path``.
            TransferError: If the remote service could not be reached.
        """
        ...

    def download_url(self, metadata: dict[str, Any]) -> str:
        """Derive a stable download URL from finish metadata.

        Pure: performs no I/O and returns the same URL for the same input.
        """
        ...
