"""
Source pattern and destination URI handling for outbound workflows.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import unquote, urlsplit

from bucketsyncd.connections.webdav import is_webdav_scheme

OBJECT_STORE_SCHEMES = ("s3", "http", "https")


def split_source(source: str) -> tuple[str, str]:
    """
    Split a source pattern into the directory to watch and a filename glob.

    >>> split_source("/tmp/watch/*.csv")
    ('/tmp/watch', '*.csv')
    """
    directory, pattern = os.path.split(source)
    return directory or ".", pattern or "*"


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    parts = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.DOTALL)


def matches_glob(pattern: str, filename: str) -> bool:
    """
    Shell-style match: ``*`` any run of characters, ``?`` exactly one.

    Every other character, ``[`` included, must match literally.
    """
    return _compile_glob(pattern).fullmatch(filename) is not None


@dataclass(frozen=True)
class ObjectStoreDestination:
    """``s3://host/bucket/prefix`` or ``http(s)://host/bucket/prefix``."""

    uri: str
    host: str
    netloc: str
    secure: bool
    bucket: str
    prefix: str = ""

    def key_for(self, filename: str) -> str:
        return f"{self.prefix}/{filename}" if self.prefix else filename

    def describe(self, filename: str) -> str:
        return f"s3://{self.netloc}/{self.bucket}/{self.key_for(filename)}"


@dataclass(frozen=True)
class WebDAVDestination:
    """``webdav[s]://user:pass@host/path``; credentials stay in ``uri``."""

    uri: str
    host: str
    path: str

    def path_for(self, filename: str) -> str:
        return f"{self.path.rstrip('/')}/{filename}"

    def describe(self, filename: str) -> str:
        return f"webdav://{self.host}{self.path_for(filename)}"


Destination = ObjectStoreDestination | WebDAVDestination


def _host(netloc: str) -> str:
    """Host part of a netloc, case preserved (urlsplit().hostname lowercases)."""
    hostport = netloc.rpartition("@")[2]
    if hostport.startswith("["):
        return hostport[1 : hostport.find("]")]
    return hostport.partition(":")[0]


def parse_destination(uri: str) -> Destination:
    """
    Parse an outbound destination URI.

    Object-store paths are split on ``/``: the first non-empty segment is the
    bucket, the remaining ones form the key prefix.

    Raises:
        ValueError: Unknown scheme, missing host or missing bucket
    """
    parts = urlsplit(uri)
    scheme = parts.scheme.lower()
    host = _host(parts.netloc)
    if not host:
        raise ValueError(f"destination '{uri}' has no host")

    if is_webdav_scheme(scheme):
        return WebDAVDestination(uri=uri, host=host, path=unquote(parts.path) or "/")

    if scheme not in OBJECT_STORE_SCHEMES:
        raise ValueError(f"unsupported destination scheme '{parts.scheme}' in '{uri}'")

    segments = [unquote(s) for s in parts.path.split("/") if s]
    if not segments:
        raise ValueError(f"invalid S3 path '{parts.path}' in '{uri}': no bucket")

    netloc = f"{host}:{parts.port}" if parts.port else host
    return ObjectStoreDestination(
        uri=uri,
        host=host,
        netloc=netloc,
        secure=scheme != "http",
        bucket=segments[0],
        prefix="/".join(segments[1:]),
    )
