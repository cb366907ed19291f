"""Remote transfer clients for BlobDB."""

from typing import TYPE_CHECKING

from blobdb.remote.base import RemoteTransferClient

if TYPE_CHECKING:
    from blobdb.config import RemoteConfig

__all__ = [
    "create_remote_client",
    "RemoteTransferClient",
]


def create_remote_client(config: "RemoteConfig") -> RemoteTransferClient:
    """Create a remote transfer client based on configuration.

    The client is not connected; call ``init()`` before use.

    Args:
        config: The remote configuration.

    Returns:
        A client implementing the RemoteTransferClient protocol.

    Raises:
        ValueError: If the backend is unknown or required config is missing.
    """
    backend = config.backend

    if backend == "memory":
        from blobdb.remote.memory import MemoryRemoteClient

        return MemoryRemoteClient(bucket=config.memory_bucket, chunk_size=config.chunk_size)

    elif backend == "s3":
        from blobdb.remote.s3 import S3RemoteClient

        if not config.s3_bucket:
            raise ValueError("remote.s3.bucket is required when backend is 's3'")
        return S3RemoteClient(
            bucket_name=config.s3_bucket,
            region=config.s3_region,
            prefix=config.s3_prefix,
            chunk_size=config.chunk_size,
            endpoint_url=config.s3_endpoint_url,
            public_base_url=config.s3_public_base_url,
            access_key_id=config.s3_access_key_id,
            secret_access_key=config.s3_secret_access_key,
        )

    else:
        raise ValueError(f"Unknown remote backend: {backend}")
