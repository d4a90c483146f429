"""
Sync subsystem: outbound (filesystem -> remote) and inbound (broker -> filesystem) pipelines.

Pipelines live in ``bucketsyncd.sync.outbound`` and ``bucketsyncd.sync.inbound``;
only the shared types are re-exported here.
"""

from bucketsyncd.sync.types import (
    AckPolicy,
    FileEvent,
    FileOperation,
    InboundState,
    InboundWorkflow,
    OutboundWorkflow,
    Remote,
    SyncConfig,
    SyncStatus,
)

__all__ = [
    "AckPolicy",
    "FileEvent",
    "FileOperation",
    "InboundState",
    "InboundWorkflow",
    "OutboundWorkflow",
    "Remote",
    "SyncConfig",
    "SyncStatus",
]
