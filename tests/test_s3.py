"""
Tests for the S3 storage client.

boto3.client is patched; no network access.
"""

import io
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from bucketsyncd.connections.s3 import S3StorageClient
from bucketsyncd.exceptions import StorageError
from bucketsyncd.sync.types import Remote


def _client_error(code, status):
    return ClientError({"Error": {"Code": code}, "ResponseMetadata": {"HTTPStatusCode": status}}, "HeadObject")


@pytest.fixture
def boto_client():
    mock = MagicMock()
    with patch("boto3.client", return_value=mock) as factory:
        mock.factory = factory
        yield mock


class TestConstruction:
    """Tests for endpoint handling and lazy client creation."""

    def test_endpoint_url_secure(self):
        assert S3StorageClient("store.lan", "a", "s").endpoint_url == "https://store.lan"

    def test_endpoint_url_insecure(self):
        assert S3StorageClient("store.lan:9000", "a", "s", secure=False).endpoint_url == "http://store.lan:9000"

    def test_endpoint_url_explicit(self):
        assert S3StorageClient("http://10.0.0.1:9000", "a", "s").endpoint_url == "http://10.0.0.1:9000"

    def test_from_remote(self):
        remote = Remote(name="m", endpoint="store.lan", access_key="AK", secret_key="SK", secure=False)
        client = S3StorageClient.from_remote(remote)
        assert client.endpoint_url == "http://store.lan"
        assert S3StorageClient.from_remote(remote, secure=True).endpoint_url == "https://store.lan"

    def test_lazy_client(self, boto_client):
        client = S3StorageClient("store.lan", "AK", "SK", region="eu-west-1")
        boto_client.factory.assert_not_called()

        assert client.client is boto_client
        assert client.client is boto_client
        boto_client.factory.assert_called_once()
        args, kwargs = boto_client.factory.call_args
        assert args == ("s3",)
        assert kwargs["endpoint_url"] == "https://store.lan"
        assert kwargs["aws_access_key_id"] == "AK"
        assert kwargs["aws_secret_access_key"] == "SK"
        assert kwargs["region_name"] == "eu-west-1"

    def test_repr_hides_keys(self):
        assert "SK" not in repr(S3StorageClient("store.lan", "AK", "SK"))


class TestOperations:
    """Tests for object operations."""

    @pytest.mark.asyncio
    async def test_put(self, boto_client):
        client = S3StorageClient("store.lan", "AK", "SK")
        body = io.BytesIO(b"hello")

        assert await client.put("bucket", "out/report.csv", body, 5) == 5
        boto_client.put_object.assert_called_once_with(
            Bucket="bucket", Key="out/report.csv", Body=body, ContentLength=5
        )

    @pytest.mark.asyncio
    async def test_get(self, boto_client):
        boto_client.get_object.return_value = {"Body": io.BytesIO(b"payload")}
        client = S3StorageClient("store.lan", "AK", "SK")
        assert await client.get("b", "k") == b"payload"

    @pytest.mark.asyncio
    async def test_download(self, boto_client, tmp_path):
        boto_client.get_object.return_value = {"Body": io.BytesIO(b"hello"), "ContentLength": 5}
        target = tmp_path / "a b.txt"
        target.write_bytes(b"old content that is longer")

        client = S3StorageClient("store.lan", "AK", "SK")
        assert await client.download("b", "a b.txt", target) == 5
        assert target.read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_download_copies_exact_size(self, boto_client, tmp_path):
        boto_client.get_object.return_value = {"Body": io.BytesIO(b"hello world"), "ContentLength": 5}
        target = tmp_path / "f"
        await S3StorageClient("store.lan", "AK", "SK").download("b", "f", target)
        assert target.read_bytes() == b"hello"

    @pytest.mark.asyncio
    async def test_download_short_read(self, boto_client, tmp_path):
        boto_client.get_object.return_value = {"Body": io.BytesIO(b"hel"), "ContentLength": 5}
        with pytest.raises(StorageError, match="short read"):
            await S3StorageClient("store.lan", "AK", "SK").download("b", "f", tmp_path / "f")

    @pytest.mark.asyncio
    async def test_download_short_read_keeps_existing_file(self, boto_client, tmp_path):
        boto_client.get_object.return_value = {"Body": io.BytesIO(b"par"), "ContentLength": 10}
        target = tmp_path / "report.csv"
        target.write_bytes(b"good old content")

        with pytest.raises(StorageError, match="short read"):
            await S3StorageClient("store.lan", "AK", "SK").download("b", "report.csv", target)

        assert target.read_bytes() == b"good old content"
        assert list(tmp_path.iterdir()) == [target]

    @pytest.mark.asyncio
    async def test_download_missing_directory(self, boto_client, tmp_path):
        boto_client.get_object.return_value = {"Body": io.BytesIO(b"hello"), "ContentLength": 5}
        with pytest.raises(OSError):
            await S3StorageClient("store.lan", "AK", "SK").download("b", "f", tmp_path / "missing" / "f")

    @pytest.mark.asyncio
    async def test_exists(self, boto_client):
        client = S3StorageClient("store.lan", "AK", "SK")
        assert await client.exists("b", "k") is True

        boto_client.head_object.side_effect = _client_error("404", 404)
        assert await client.exists("b", "k") is False

    @pytest.mark.asyncio
    async def test_exists_other_error(self, boto_client):
        boto_client.head_object.side_effect = _client_error("AccessDenied", 403)
        with pytest.raises(StorageError):
            await S3StorageClient("store.lan", "AK", "SK").exists("b", "k")

    @pytest.mark.asyncio
    async def test_delete(self, boto_client):
        await S3StorageClient("store.lan", "AK", "SK").delete("b", "k")
        boto_client.delete_object.assert_called_once_with(Bucket="b", Key="k")

    @pytest.mark.asyncio
    async def test_list(self, boto_client):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "out/a"}, {"Key": "out/b"}]},
            {"Contents": [{"Key": "out/c"}]},
            {},
        ]
        boto_client.get_paginator.return_value = paginator

        keys = await S3StorageClient("store.lan", "AK", "SK").list("b", "out/")
        assert keys == ["out/a", "out/b", "out/c"]
        paginator.paginate.assert_called_once_with(Bucket="b", Prefix="out/")

    @pytest.mark.asyncio
    async def test_botocore_errors_wrapped(self, boto_client):
        boto_client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://store.lan")
        with pytest.raises(StorageError) as exc_info:
            await S3StorageClient("store.lan", "AK", "SK").put("b", "k", io.BytesIO(b""), 0)
        assert exc_info.value.operation == "put"
        assert exc_info.value.location == "b/k"

    @pytest.mark.asyncio
    async def test_close_resets_client(self, boto_client):
        client = S3StorageClient("store.lan", "AK", "SK")
        async with client:
            _ = client.client
        assert client._client is None
