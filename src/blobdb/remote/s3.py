"""AWS S3 remote transfer client for BlobDB.

Drives S3 native multipart uploads via aiobotocore: one ``advance`` call
uploads one part, and one more call after the last part completes the
upload. The resume token carries everything needed to continue after a
restart::

    {"upload_id": ..., "key": ..., "offset": ..., "part_number": ...,
     "parts": [{"PartNumber": 1, "ETag": "..."}, ...]}

Once every part is up the token also holds ``completing`` and
``expected_etag``, the ETag S3 assigns to the completed object.

Re-uploading a part under the same part number replaces it, so a chunk
re-sent after a crash is harmless.

Key mapping:
    Objects:  {prefix}{path}

Credentials are resolved via the standard AWS credential chain
(env vars, ~/.aws/credentials, IAM role, etc.) unless given explicitly.
"""

import hashlib
import logging
from typing import Any
from urllib.parse import quote

from aiobotocore.session import AioSession
from botocore.exceptions import BotoCoreError, ClientError

from blobdb.errors import NotFoundError, TransferError
from blobdb.models import ChunkContinue, ChunkFinish, ChunkResult

logger = logging.getLogger(__name__)

# S3 rejects non-final parts smaller than 5 MiB.
MIN_PART_SIZE = 5 * 1024 * 1024

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

# Upload metadata key -> create_multipart_upload parameter
_METADATA_PARAMS = {
    "content_type": "ContentType",
    "cache_control": "CacheControl",
    "content_disposition": "ContentDisposition",
    "content_encoding": "ContentEncoding",
    "custom": "Metadata",
}


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def _multipart_etag(parts: list[dict[str, Any]]) -> str:
    """Compute the ETag S3 gives an object completed from ``parts``.

    That is the md5 of the concatenated binary part digests, suffixed with
    the part count. Returns an empty string when a part ETag is not a plain
    md5 (SSE-KMS, SSE-C), since the result cannot be predicted then.
    """
    ordered = sorted(parts, key=lambda p: p["PartNumber"])
    try:
        digests = b"".join(bytes.fromhex(p["ETag"].strip('"')) for p in ordered)
    except ValueError:
        return ""
    return f"{hashlib.md5(digests).hexdigest()}-{len(ordered)}"


class S3RemoteClient:
    """Remote client that uploads to an AWS S3 (or compatible) bucket.

    Attributes:
        bucket_name: The S3 bucket name.
        region: The AWS region for the bucket.
        prefix: Key prefix for every blob path.
        chunk_size: Bytes per uploaded part (at least 5 MiB).
        endpoint_url: Custom endpoint for S3-compatible services.
        public_base_url: Base URL used for download URLs, if set.
    """

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        prefix: str = "",
        chunk_size: int = MIN_PART_SIZE,
        endpoint_url: str = "",
        public_base_url: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
    ) -> None:
        if chunk_size < MIN_PART_SIZE:
            logger.warning(
                "chunk_size %d is below the S3 minimum part size, using %d",
                chunk_size,
                MIN_PART_SIZE,
            )
            chunk_size = MIN_PART_SIZE
        self.bucket_name = bucket_name
        self.region = region
        self.prefix = prefix
        self.chunk_size = chunk_size
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self._session = AioSession()
        self._client = None
        self._client_ctx = None

    def _s3_key(self, path: str) -> str:
        """Map a blob path to an S3 key."""
        return f"{self.prefix}{path}"

    async def init(self) -> None:
        """Create the aiobotocore S3 client and verify the bucket exists.

        Raises:
            ValueError: If the bucket does not exist or is inaccessible.
        """
        client_kwargs: dict = {"region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url

        if self.access_key_id and self.secret_access_key:
            session = AioSession()
            session.set_credentials(self.access_key_id, self.secret_access_key)
            self._session = session
        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        try:
            await self._client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None
            raise ValueError(
                f"Cannot access S3 bucket '{self.bucket_name}': {_error_code(e)}"
            ) from e

        logger.info(
            "S3 remote client initialized: bucket=%s region=%s prefix='%s'",
            self.bucket_name,
            self.region,
            self.prefix,
        )

    async def close(self) -> None:
        """Close the aiobotocore client session."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    async def _call(self, operation: str, path: str, **kwargs: Any) -> Any:
        """Invoke an S3 operation, mapping botocore failures to TransferError."""
        if self._client is None:
            raise TransferError("S3 client not initialized -- call init() first", path=path)
        try:
            return await getattr(self._client, operation)(**kwargs)
        except ClientError as e:
            code = _error_code(e)
            raise TransferError(f"S3 {operation} failed: {code}", path=path, code=code) from e
        except BotoCoreError as e:
            raise TransferError(f"S3 {operation} failed: {e}", path=path) from e

    async def begin_upload(self, path: str, content: bytes, metadata: dict[str, Any]) -> Any:
        """Create an S3 multipart upload and return the initial resume token."""
        key = self._s3_key(path)
        params: dict[str, Any] = {"Bucket": self.bucket_name, "Key": key}
        for name, param in _METADATA_PARAMS.items():
            if metadata.get(name):
                params[param] = metadata[name]

        resp = await self._call("create_multipart_upload", path, **params)
        logger.debug("Started S3 multipart upload %s for %s", resp["UploadId"], key)
        return {
            "upload_id": resp["UploadId"],
            "key": key,
            "offset": 0,
            "part_number": 1,
            "parts": [],
        }

    async def advance(self, state: Any, content: bytes) -> ChunkResult:
        """Upload the next part, or complete the upload once every part is up.

        Uploading the last part returns a ``ChunkContinue`` whose token holds
        the ETag S3 will assign to the completed object. Completion happens
        on the following call, so that ETag is checkpointed before
        ``complete_multipart_upload`` runs.
        """
        if state.get("completing"):
            return await self._complete(state, content)

        key = state["key"]
        upload_id = state["upload_id"]
        offset = int(state["offset"])
        part_number = int(state["part_number"])

        chunk = content[offset : offset + self.chunk_size]
        resp = await self._call(
            "upload_part",
            key,
            Bucket=self.bucket_name,
            Key=key,
            UploadId=upload_id,
            PartNumber=part_number,
            Body=chunk,
        )

        parts = [p for p in state["parts"] if p["PartNumber"] != part_number]
        parts.append({"PartNumber": part_number, "ETag": resp["ETag"]})

        new_offset = offset + len(chunk)
        next_state = {
            "upload_id": upload_id,
            "key": key,
            "offset": new_offset,
            "part_number": part_number + 1,
            "parts": parts,
        }
        if new_offset >= len(content):
            next_state["completing"] = True
            next_state["expected_etag"] = _multipart_etag(parts)
        return ChunkContinue(next_state)

    async def _complete(self, state: Any, content: bytes) -> ChunkResult:
        key = state["key"]
        try:
            done = await self._call(
                "complete_multipart_upload",
                key,
                Bucket=self.bucket_name,
                Key=key,
                UploadId=state["upload_id"],
                MultipartUpload={"Parts": state["parts"]},
            )
        except TransferError as e:
            if e.code == "NoSuchUpload":
                # Completed before the finish was checkpointed locally.
                finished = await self._already_complete(
                    key, state.get("expected_etag", ""), len(content)
                )
                if finished is not None:
                    return ChunkFinish(finished)
            raise
        return ChunkFinish(
            {
                "bucket": self.bucket_name,
                "key": key,
                "etag": done.get("ETag", "").strip('"'),
                "size": len(content),
            }
        )

    async def _already_complete(
        self, key: str, expected_etag: str, size: int
    ) -> dict[str, Any] | None:
        """Return finish metadata if ``key`` holds the object this upload produced.

        Only an ETag match counts: an aborted upload can leave an older
        object of the same size at the key.
        """
        if not expected_etag:
            return None
        try:
            head = await self._call("head_object", key, Bucket=self.bucket_name, Key=key)
        except TransferError as e:
            if e.code in _NOT_FOUND_CODES:
                return None
            raise
        if head.get("ETag", "").strip('"') != expected_etag:
            logger.warning(
                "Multipart upload for %s is gone and the object at the key is not its result",
                key,
            )
            return None
        return {
            "bucket": self.bucket_name,
            "key": key,
            "etag": expected_etag,
            "size": size,
        }

    async def delete(self, path: str) -> None:
        """Delete an object. S3 does not error on missing keys."""
        key = self._s3_key(path)
        await self._call("delete_object", path, Bucket=self.bucket_name, Key=key)

    async def lookup_download_url(self, path: str) -> str:
        """Confirm the object exists and return its download URL.

        Raises:
            NotFoundError: If the object does not exist.
        """
        key = self._s3_key(path)
        try:
            await self._call("head_object", path, Bucket=self.bucket_name, Key=key)
        except TransferError as e:
            if e.code in _NOT_FOUND_CODES:
                raise NotFoundError(path) from e
            raise
        return self.download_url({"bucket": self.bucket_name, "key": key})

    def download_url(self, metadata: dict[str, Any]) -> str:
        key = quote(metadata["key"])
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{metadata['bucket']}/{key}"
        return f"https://{metadata['bucket']}.s3.{self.region}.amazonaws.com/{key}"
