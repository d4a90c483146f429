"""
S3-compatible storage client.

Provides a lazily created boto3 client for MinIO / AWS style endpoints.
boto3 is blocking, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, BinaryIO

from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from bucketsyncd.connections.storage import StorageClient, copy_exact, replace_on_success
from bucketsyncd.exceptions import StorageError
from bucketsyncd.sync.types import Remote
from bucketsyncd.utils.logging import get_logger

logger = get_logger("bucketsyncd.connections.s3")

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


class S3StorageClient(StorageClient):
    """
    S3 client wrapper for whole-object transfers.

    Args:
        endpoint: Host (optionally ``host:port``) or full URL of the endpoint
        access_key: Access key id
        secret_key: Secret access key
        secure: Use https when ``endpoint`` carries no scheme
        region: Optional region name
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        *,
        secure: bool = True,
        region: str | None = None,
    ):
        self.endpoint = endpoint
        self.secure = secure
        self.region = region
        self._access_key = access_key
        self._secret_key = secret_key
        self._client = None

    @classmethod
    def from_remote(cls, remote: Remote, *, secure: bool | None = None) -> S3StorageClient:
        """Build a client for a configured remote; ``secure`` overrides the remote's setting."""
        return cls(
            remote.endpoint,
            remote.access_key,
            remote.secret_key,
            secure=remote.secure if secure is None else secure,
        )

    @property
    def endpoint_url(self) -> str:
        if "://" in self.endpoint:
            return self.endpoint
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.endpoint}"

    def _get_client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "endpoint_url": self.endpoint_url,
            "aws_access_key_id": self._access_key,
            "aws_secret_access_key": self._secret_key,
            # MinIO and most self-hosted stores only do path-style addressing
            "config": BotoConfig(s3={"addressing_style": "path"}),
        }
        if self.region:
            kwargs["region_name"] = self.region
        return kwargs

    @property
    def client(self):
        """
        Get boto3 S3 client (lazy initialization).

        Returns:
            boto3.client('s3') instance
        """
        if self._client is None:
            import boto3

            self._client = boto3.client("s3", **self._get_client_kwargs())
        return self._client

    async def put(self, bucket: str, key: str, fileobj: BinaryIO, size: int) -> int:
        def _put() -> int:
            self.client.put_object(Bucket=bucket, Key=key, Body=fileobj, ContentLength=size)
            return size

        return await self._call("put", bucket, key, _put)

    async def get(self, bucket: str, key: str) -> bytes:
        def _get() -> bytes:
            response = self.client.get_object(Bucket=bucket, Key=key)
            with response["Body"] as body:
                return body.read()

        return await self._call("get", bucket, key, _get)

    async def download(self, bucket: str, key: str, local_path: str | Path) -> int:
        location = f"{bucket}/{key}"

        def _download() -> int:
            response = self.client.get_object(Bucket=bucket, Key=key)
            size = int(response["ContentLength"])
            with response["Body"] as body, replace_on_success(local_path) as f:
                return copy_exact(body, f, size, location=location)

        return await self._call("download", bucket, key, _download)

    async def exists(self, bucket: str, key: str) -> bool:
        def _exists() -> bool:
            try:
                self.client.head_object(Bucket=bucket, Key=key)
                return True
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code")
                http_status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
                if error_code in _NOT_FOUND_CODES or http_status == 404:
                    return False
                raise

        return await self._call("exists", bucket, key, _exists)

    async def delete(self, bucket: str, key: str) -> None:
        def _delete() -> None:
            self.client.delete_object(Bucket=bucket, Key=key)

        await self._call("delete", bucket, key, _delete)

    async def list(self, bucket: str, prefix: str = "") -> list[str]:
        def _list() -> list[str]:
            paginator = self.client.get_paginator("list_objects_v2")
            keys: list[str] = []
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
            return keys

        return await self._call("list", bucket, prefix, _list)

    async def _call(self, operation: str, bucket: str, key: str, func):
        try:
            return await asyncio.to_thread(func)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(operation, f"{bucket}/{key}", str(e), cause=e) from e

    async def close(self) -> None:
        # boto3 clients don't require explicit closing, reset for consistency
        self._client = None

    def __repr__(self) -> str:
        return f"S3StorageClient(endpoint='{self.endpoint_url}')"
