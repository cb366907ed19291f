"""Unit tests for the S3 remote transfer client.

All tests use mocked aiobotocore; no real AWS credentials or network
access required. The mock S3 client is injected directly onto
client._client to bypass session creation.
"""

import hashlib
from unittest.mock import AsyncMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from blobdb.errors import NotFoundError, TransferError
from blobdb.models import ChunkContinue, ChunkFinish
from blobdb.remote.s3 import MIN_PART_SIZE, S3RemoteClient


def _client_error(code: str, message: str = "error") -> ClientError:
    """Create a botocore ClientError with the given error code."""
    return ClientError(
        {"Error": {"Code": code, "Message": message}},
        "TestOperation",
    )


def _make_client(bucket="test-bucket", region="us-east-1", prefix="", **kwargs):
    """Create an S3RemoteClient with a mock client (skip init)."""
    client = S3RemoteClient(bucket_name=bucket, region=region, prefix=prefix, **kwargs)
    client._client = AsyncMock()
    client._client_ctx = AsyncMock()
    return client


def _content(parts: float) -> bytes:
    return b"x" * int(MIN_PART_SIZE * parts)


_ETAG_1 = hashlib.md5(b"part one").hexdigest()
_ETAG_2 = hashlib.md5(b"part two").hexdigest()
_MULTIPART_ETAG = (
    hashlib.md5(bytes.fromhex(_ETAG_1) + bytes.fromhex(_ETAG_2)).hexdigest() + "-2"
)


class TestInit:
    """Tests for construction, init() and close()."""

    def test_chunk_size_clamped_to_minimum(self):
        client = S3RemoteClient(bucket_name="b", chunk_size=1024)
        assert client.chunk_size == MIN_PART_SIZE

    def test_large_chunk_size_kept(self):
        client = S3RemoteClient(bucket_name="b", chunk_size=MIN_PART_SIZE * 2)
        assert client.chunk_size == MIN_PART_SIZE * 2

    async def test_init_verifies_bucket(self):
        """init() calls head_bucket to verify the bucket exists."""
        with patch("blobdb.remote.s3.AioSession") as mock_session_cls:
            mock_client = AsyncMock()
            mock_ctx = AsyncMock()
            mock_ctx.__aenter__ = AsyncMock(return_value=mock_client)
            mock_ctx.__aexit__ = AsyncMock(return_value=False)
            mock_session_cls.return_value.create_client.return_value = mock_ctx

            client = S3RemoteClient(bucket_name="my-bucket", region="us-west-2")
            await client.init()

            mock_client.head_bucket.assert_awaited_once_with(Bucket="my-bucket")
            mock_session_cls.return_value.create_client.assert_called_once_with(
                "s3", region_name="us-west-2"
            )
            await client.close()
            mock_ctx.__aexit__.assert_awaited_once()

    async def test_init_passes_endpoint_and_credentials(self):
        with patch("blobdb.remote.s3.AioSession") as mock_session_cls:
            mock_ctx = AsyncMock()
            mock_ctx.__aenter__ = AsyncMock(return_value=AsyncMock())
            mock_session_cls.return_value.create_client.return_value = mock_ctx

            client = S3RemoteClient(
                bucket_name="b",
                endpoint_url="http://localhost:9000",
                access_key_id="AK",
                secret_access_key="SK",
            )
            await client.init()

            mock_session_cls.return_value.set_credentials.assert_called_once_with("AK", "SK")
            mock_session_cls.return_value.create_client.assert_called_once_with(
                "s3", region_name="us-east-1", endpoint_url="http://localhost:9000"
            )

    async def test_init_raises_on_missing_bucket(self):
        """init() raises ValueError if the bucket doesn't exist."""
        with patch("blobdb.remote.s3.AioSession") as mock_session_cls:
            mock_client = AsyncMock()
            mock_client.head_bucket = AsyncMock(side_effect=_client_error("404", "Not Found"))
            mock_ctx = AsyncMock()
            mock_ctx.__aenter__ = AsyncMock(return_value=mock_client)
            mock_ctx.__aexit__ = AsyncMock(return_value=False)
            mock_session_cls.return_value.create_client.return_value = mock_ctx

            client = S3RemoteClient(bucket_name="missing")
            with pytest.raises(ValueError, match="missing"):
                await client.init()
            assert client._client is None

    async def test_call_before_init_raises(self):
        client = S3RemoteClient(bucket_name="b")
        with pytest.raises(TransferError):
            await client.delete("p")


class TestBeginUpload:
    """Tests for begin_upload()."""

    async def test_creates_multipart_upload(self):
        client = _make_client(prefix="blobs/")
        client._client.create_multipart_upload.return_value = {"UploadId": "up-1"}

        state = await client.begin_upload("a/b", b"data", {})

        client._client.create_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket", Key="blobs/a/b"
        )
        assert state == {
            "upload_id": "up-1",
            "key": "blobs/a/b",
            "offset": 0,
            "part_number": 1,
            "parts": [],
        }

    async def test_maps_metadata(self):
        client = _make_client()
        client._client.create_multipart_upload.return_value = {"UploadId": "up-1"}

        await client.begin_upload(
            "p",
            b"data",
            {
                "content_type": "image/png",
                "cache_control": "max-age=60",
                "custom": {"owner": "me"},
                "ignored": "value",
            },
        )

        client._client.create_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket",
            Key="p",
            ContentType="image/png",
            CacheControl="max-age=60",
            Metadata={"owner": "me"},
        )

    async def test_client_error_becomes_transfer_error(self):
        client = _make_client()
        client._client.create_multipart_upload.side_effect = _client_error("AccessDenied")
        with pytest.raises(TransferError) as exc_info:
            await client.begin_upload("p", b"data", {})
        assert exc_info.value.code == "AccessDenied"
        assert exc_info.value.path == "p"

    async def test_botocore_error_becomes_transfer_error(self):
        client = _make_client()
        client._client.create_multipart_upload.side_effect = EndpointConnectionError(
            endpoint_url="https://s3.amazonaws.com"
        )
        with pytest.raises(TransferError):
            await client.begin_upload("p", b"data", {})


class TestAdvance:
    """Tests for advance()."""

    def _state(self, offset=0, part_number=1, parts=None):
        return {
            "upload_id": "up-1",
            "key": "p",
            "offset": offset,
            "part_number": part_number,
            "parts": parts or [],
        }

    def _completing_state(self, size):
        return {
            "upload_id": "up-1",
            "key": "p",
            "offset": size,
            "part_number": 3,
            "parts": [
                {"PartNumber": 1, "ETag": f'"{_ETAG_1}"'},
                {"PartNumber": 2, "ETag": f'"{_ETAG_2}"'},
            ],
            "completing": True,
            "expected_etag": _MULTIPART_ETAG,
        }

    async def test_uploads_one_part_and_continues(self):
        client = _make_client()
        client._client.upload_part.return_value = {"ETag": '"etag1"'}
        content = _content(1.5)

        result = await client.advance(self._state(), content)

        assert isinstance(result, ChunkContinue)
        kwargs = client._client.upload_part.await_args.kwargs
        assert kwargs["PartNumber"] == 1
        assert kwargs["UploadId"] == "up-1"
        assert len(kwargs["Body"]) == MIN_PART_SIZE
        assert result.state["offset"] == MIN_PART_SIZE
        assert result.state["part_number"] == 2
        assert result.state["parts"] == [{"PartNumber": 1, "ETag": '"etag1"'}]
        client._client.complete_multipart_upload.assert_not_awaited()

    async def test_last_part_checkpoints_before_completing(self):
        """Uploading the last part records the expected ETag without completing."""
        client = _make_client()
        client._client.upload_part.return_value = {"ETag": f'"{_ETAG_2}"'}
        content = _content(1.5)
        state = self._state(
            offset=MIN_PART_SIZE,
            part_number=2,
            parts=[{"PartNumber": 1, "ETag": f'"{_ETAG_1}"'}],
        )

        result = await client.advance(state, content)

        assert isinstance(result, ChunkContinue)
        assert len(client._client.upload_part.await_args.kwargs["Body"]) == MIN_PART_SIZE // 2
        assert result.state["completing"] is True
        assert result.state["offset"] == len(content)
        assert result.state["expected_etag"] == _MULTIPART_ETAG
        client._client.complete_multipart_upload.assert_not_awaited()

    async def test_completing_state_completes_upload(self):
        client = _make_client()
        client._client.complete_multipart_upload.return_value = {"ETag": f'"{_MULTIPART_ETAG}"'}
        content = _content(1.5)

        result = await client.advance(self._completing_state(len(content)), content)

        assert isinstance(result, ChunkFinish)
        client._client.upload_part.assert_not_awaited()
        client._client.complete_multipart_upload.assert_awaited_once_with(
            Bucket="test-bucket",
            Key="p",
            UploadId="up-1",
            MultipartUpload={
                "Parts": [
                    {"PartNumber": 1, "ETag": f'"{_ETAG_1}"'},
                    {"PartNumber": 2, "ETag": f'"{_ETAG_2}"'},
                ]
            },
        )
        assert result.metadata == {
            "bucket": "test-bucket",
            "key": "p",
            "etag": _MULTIPART_ETAG,
            "size": len(content),
        }

    async def test_empty_content_uploads_one_part(self):
        client = _make_client()
        client._client.upload_part.return_value = {"ETag": f'"{_ETAG_1}"'}

        result = await client.advance(self._state(), b"")

        assert isinstance(result, ChunkContinue)
        assert client._client.upload_part.await_args.kwargs["Body"] == b""
        assert result.state["completing"] is True

    async def test_resent_part_replaces_previous_etag(self):
        """Re-uploading a part number after a crash keeps one entry for it."""
        client = _make_client()
        client._client.upload_part.return_value = {"ETag": '"new"'}
        state = self._state(parts=[{"PartNumber": 1, "ETag": '"old"'}])

        result = await client.advance(state, _content(2))

        assert result.state["parts"] == [{"PartNumber": 1, "ETag": '"new"'}]

    async def test_no_such_upload_after_completion(self):
        """A replayed completion finishes when the object carries the expected ETag."""
        client = _make_client()
        content = _content(1.5)
        client._client.complete_multipart_upload.side_effect = _client_error("NoSuchUpload")
        client._client.head_object.return_value = {
            "ContentLength": len(content),
            "ETag": f'"{_MULTIPART_ETAG}"',
        }

        result = await client.advance(self._completing_state(len(content)), content)

        assert isinstance(result, ChunkFinish)
        assert result.metadata == {
            "bucket": "test-bucket",
            "key": "p",
            "etag": _MULTIPART_ETAG,
            "size": len(content),
        }

    async def test_aborted_upload_over_same_size_object_raises(self):
        """An older object of the same size is not taken as this upload's result."""
        client = _make_client()
        content = _content(1.5)
        client._client.complete_multipart_upload.side_effect = _client_error("NoSuchUpload")
        client._client.head_object.return_value = {
            "ContentLength": len(content),
            "ETag": '"old"',
        }

        with pytest.raises(TransferError) as exc_info:
            await client.advance(self._completing_state(len(content)), content)
        assert exc_info.value.code == "NoSuchUpload"

    async def test_aborted_upload_before_last_part_raises(self):
        """NoSuchUpload on a part never consults the object at the key."""
        client = _make_client()
        client._client.upload_part.side_effect = _client_error("NoSuchUpload")
        client._client.head_object.return_value = {"ContentLength": 10, "ETag": '"old"'}

        with pytest.raises(TransferError) as exc_info:
            await client.advance(self._state(), b"x" * 10)
        assert exc_info.value.code == "NoSuchUpload"
        client._client.head_object.assert_not_awaited()

    async def test_no_such_upload_and_no_object_raises(self):
        client = _make_client()
        client._client.complete_multipart_upload.side_effect = _client_error("NoSuchUpload")
        client._client.head_object.side_effect = _client_error("404")
        with pytest.raises(TransferError) as exc_info:
            await client.advance(self._completing_state(10), b"x" * 10)
        assert exc_info.value.code == "NoSuchUpload"

    async def test_unverifiable_etag_raises_without_head(self):
        """Part ETags that are not md5 digests leave nothing to compare against."""
        client = _make_client()
        client._client.complete_multipart_upload.side_effect = _client_error("NoSuchUpload")
        state = self._completing_state(10)
        state["expected_etag"] = ""
        with pytest.raises(TransferError):
            await client.advance(state, b"x" * 10)
        client._client.head_object.assert_not_awaited()

    async def test_other_errors_propagate(self):
        client = _make_client()
        client._client.upload_part.side_effect = _client_error("SlowDown")
        with pytest.raises(TransferError) as exc_info:
            await client.advance(self._state(), _content(0.5))
        assert exc_info.value.code == "SlowDown"
        client._client.head_object.assert_not_awaited()


class TestDeleteAndLookup:
    """Tests for delete(), lookup_download_url() and download_url()."""

    async def test_delete(self):
        client = _make_client(prefix="blobs/")
        await client.delete("a/b")
        client._client.delete_object.assert_awaited_once_with(
            Bucket="test-bucket", Key="blobs/a/b"
        )

    async def test_delete_error(self):
        client = _make_client()
        client._client.delete_object.side_effect = _client_error("AccessDenied")
        with pytest.raises(TransferError):
            await client.delete("p")

    async def test_lookup_existing(self):
        client = _make_client(region="eu-west-1")
        client._client.head_object.return_value = {"ContentLength": 3}
        url = await client.lookup_download_url("a/b")
        assert url == "https://test-bucket.s3.eu-west-1.amazonaws.com/a/b"

    @pytest.mark.parametrize("code", ["404", "NoSuchKey", "NotFound"])
    async def test_lookup_missing(self, code):
        client = _make_client()
        client._client.head_object.side_effect = _client_error(code)
        with pytest.raises(NotFoundError):
            await client.lookup_download_url("missing")

    async def test_lookup_other_error(self):
        client = _make_client()
        client._client.head_object.side_effect = _client_error("403")
        with pytest.raises(TransferError):
            await client.lookup_download_url("p")

    def test_download_url_public_base(self):
        client = _make_client(public_base_url="https://cdn.example.com/")
        url = client.download_url({"bucket": "test-bucket", "key": "a/b c.png"})
        assert url == "https://cdn.example.com/a/b%20c.png"

    def test_download_url_endpoint(self):
        client = _make_client(endpoint_url="http://localhost:9000")
        url = client.download_url({"bucket": "test-bucket", "key": "a/b"})
        assert url == "http://localhost:9000/test-bucket/a/b"

    def test_download_url_aws(self):
        client = _make_client()
        url = client.download_url({"bucket": "test-bucket", "key": "a/b"})
        assert url == "https://test-bucket.s3.us-east-1.amazonaws.com/a/b"
