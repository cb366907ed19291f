"""Error definitions for BlobDB."""


class BlobDBError(Exception):
    """A BlobDB error with a machine-readable code.

    Attributes:
        code: Short error code string (e.g. "TransferError", "NotFound").
        message: Human-readable error description.
        path: The blob path the error relates to, if any.
    """

    def __init__(self, code: str, message: str, path: str | None = None) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
            path: Optional blob path the error relates to.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} (path={self.path})"
        return self.message


class TransferError(BlobDBError):
    """The remote service rejected, timed out, or dropped a transfer."""

    def __init__(
        self, message: str = "Remote transfer failed.", path: str | None = None, code: str = ""
    ) -> None:
        super().__init__(code=code or "TransferError", message=message, path=path)


class StoreError(BlobDBError):
    """A local store transaction failed or the store is unavailable."""

    def __init__(self, message: str = "Local store operation failed.", path: str | None = None) -> None:
        super().__init__(code="StoreError", message=message, path=path)


class NotFoundError(BlobDBError):
    """The remote service has no object at the requested path."""

    def __init__(self, path: str = "") -> None:
        super().__init__(
            code="NotFound",
            message="The specified blob does not exist.",
            path=path or None,
        )
