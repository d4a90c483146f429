"""
Storage client base class.

Storage clients move whole objects between local files and a remote
container: an S3 bucket or a WebDAV collection tree.
"""

from __future__ import annotations

import contextlib
import os
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO, Protocol

from bucketsyncd.exceptions import StorageError

CHUNK_SIZE = 64 * 1024

# Suffix of in-progress downloads; outbound watchers never upload these
PARTIAL_SUFFIX = ".bsd-partial"


class StorageClient(ABC):
    """
    Capability interface over an object store or WebDAV endpoint.

    ``bucket`` names the container (S3 bucket); backends without containers
    treat it as a leading path segment and accept an empty string.

    All methods are coroutines. Backend failures raise StorageError; local
    filesystem failures surface as OSError.
    """

    @abstractmethod
    async def put(self, bucket: str, key: str, fileobj: BinaryIO, size: int) -> int:
        """Stream ``size`` bytes from ``fileobj`` to ``bucket/key``; return bytes sent."""
        ...

    @abstractmethod
    async def get(self, bucket: str, key: str) -> bytes:
        """Return the full object body."""
        ...

    @abstractmethod
    async def download(self, bucket: str, key: str, local_path: str | Path) -> int:
        """
        Fetch ``bucket/key`` into ``local_path``.

        Exactly the object size reported by the backend is copied. The body lands
        in a partial file that replaces ``local_path`` only once complete, so a
        failed download leaves an existing file untouched. The parent directory
        must already exist.

        Returns:
            Number of bytes written
        """
        ...

    @abstractmethod
    async def exists(self, bucket: str, key: str) -> bool: ...

    @abstractmethod
    async def delete(self, bucket: str, key: str) -> None: ...

    @abstractmethod
    async def list(self, bucket: str, prefix: str = "") -> list[str]:
        """List object keys (S3) or file names (WebDAV) under ``prefix``."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None

    async def __aenter__(self) -> StorageClient:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class _Readable(Protocol):
    def read(self, size: int = ..., /) -> bytes: ...


def copy_exact(reader: _Readable, writer: BinaryIO, size: int, *, location: str) -> int:
    """
    Copy exactly ``size`` bytes from ``reader`` to ``writer``.

    Raises:
        StorageError: If the reader ends before ``size`` bytes
    """
    remaining = size
    while remaining > 0:
        chunk = reader.read(min(CHUNK_SIZE, remaining))
        if not chunk:
            raise StorageError("download", location, f"short read: got {size - remaining} of {size} bytes")
        writer.write(chunk)
        remaining -= len(chunk)
    return size


@contextlib.contextmanager
def replace_on_success(local_path: str | Path) -> Iterator[BinaryIO]:
    """
    Write to a hidden sibling of ``local_path`` and rename it into place.

    The rename happens only if the block completes; on any error the partial
    file is removed and an existing ``local_path`` is left untouched.

    Usage:
        with replace_on_success("/data/in/report.csv") as f:
            copy_exact(body, f, size, location="bucket/report.csv")
    """
    directory, name = os.path.split(os.fspath(local_path))
    partial = os.path.join(directory, f".{name}.{uuid.uuid4().hex[:8]}{PARTIAL_SUFFIX}")
    try:
        with open(partial, "xb") as f:
            yield f
        os.replace(partial, local_path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(partial)
        raise
