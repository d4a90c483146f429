"""
Storage backends and credential lookup.
"""

from bucketsyncd.connections.credentials import CredentialResolver
from bucketsyncd.connections.s3 import S3StorageClient
from bucketsyncd.connections.storage import StorageClient
from bucketsyncd.connections.webdav import WebDAVClient, is_webdav_scheme, parse_webdav_url

__all__ = [
    "CredentialResolver",
    "S3StorageClient",
    "StorageClient",
    "WebDAVClient",
    "is_webdav_scheme",
    "parse_webdav_url",
]
