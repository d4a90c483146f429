"""
bucketsyncd - Bidirectional sync between local directories and object stores.

Outbound workflows watch a directory and upload matching files to S3 or
WebDAV; inbound workflows consume bucket notifications from AMQP and
download the referenced objects.
"""

__version__ = "0.1.0"

# Configuration
from bucketsyncd.config import load_config, parse_config

# Storage
from bucketsyncd.connections import CredentialResolver, S3StorageClient, StorageClient, WebDAVClient

# Retry
from bucketsyncd.core.retry import BackoffRetrier, RetryPolicy

# Exceptions
from bucketsyncd.exceptions import (
    BrokerError,
    BucketSyncError,
    ConfigurationError,
    CredentialsNotFoundError,
    NotificationDecodeError,
    RetryError,
    RetryExhaustedError,
    StorageError,
    WatchError,
)

# Service
from bucketsyncd.service import SyncService, run_service, serve

# Types
from bucketsyncd.sync.types import (
    AckPolicy,
    InboundState,
    InboundWorkflow,
    OutboundWorkflow,
    Remote,
    SyncConfig,
)

__all__ = [
    "__version__",
    "AckPolicy",
    "BackoffRetrier",
    "BrokerError",
    "BucketSyncError",
    "ConfigurationError",
    "CredentialResolver",
    "CredentialsNotFoundError",
    "InboundState",
    "InboundWorkflow",
    "NotificationDecodeError",
    "OutboundWorkflow",
    "Remote",
    "RetryError",
    "RetryExhaustedError",
    "RetryPolicy",
    "S3StorageClient",
    "StorageClient",
    "StorageError",
    "SyncConfig",
    "SyncService",
    "WatchError",
    "WebDAVClient",
    "load_config",
    "parse_config",
    "run_service",
    "serve",
]
