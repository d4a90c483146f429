"""
Type definitions for sync workflows, remotes and per-event outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class AckPolicy(str, Enum):
    """When an inbound delivery is acknowledged."""

    # Acknowledge once every record has been handled, successful or not
    ALWAYS = "always"
    # Acknowledge only if every record was downloaded, otherwise requeue
    ON_SUCCESS = "on_success"


@dataclass(frozen=True)
class Remote:
    """A named object-store endpoint with its credentials."""

    name: str
    endpoint: str
    access_key: str
    secret_key: str
    secure: bool = True

    def __repr__(self) -> str:
        return f"Remote(name={self.name!r}, endpoint={self.endpoint!r})"


@dataclass(frozen=True)
class OutboundWorkflow:
    """
    Local directory -> remote destination rule.

    ``process_with`` is kept from the configuration but never executed.
    """

    name: str
    source: str
    destination: str
    description: str = ""
    sensitive: bool = False
    process_with: str | None = None
    # 1 means a failed upload waits for the next write event
    upload_attempts: int = 1


@dataclass(frozen=True)
class InboundWorkflow:
    """Broker queue -> local directory rule."""

    name: str
    source: str
    exchange: str
    queue: str
    remote: str
    destination: str
    description: str = ""
    ack_policy: AckPolicy = AckPolicy.ALWAYS


@dataclass(frozen=True)
class SyncConfig:
    """Everything the supervisor needs to run."""

    remotes: tuple[Remote, ...] = ()
    outbound: tuple[OutboundWorkflow, ...] = ()
    inbound: tuple[InboundWorkflow, ...] = ()
    log_level: str = "info"
    log_json: bool = False
    log_file: str | None = None


class FileOperation(str, Enum):
    """Filesystem change kinds delivered by the watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"
    MOVED = "moved"
    CLOSED = "closed"
    OPENED = "opened"


@dataclass(frozen=True)
class FileEvent:
    path: str
    operation: FileOperation
    # Target of a move
    dest_path: str | None = None


class InboundState(str, Enum):
    """Connection lifecycle of an inbound pipeline."""

    CONNECTING = "connecting"
    BOUND = "bound"
    CONSUMING = "consuming"
    CONNECTION_LOST = "connection_lost"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (InboundState.FAILED, InboundState.CLOSED)


class SyncStatus(str, Enum):
    UPLOADED = "uploaded"
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one filesystem event in an outbound pipeline."""

    status: SyncStatus
    path: str
    destination: str | None = None
    size: int = 0
    reason: str | None = None


@dataclass(frozen=True)
class RecordResult:
    """Outcome of one notification record in an inbound pipeline."""

    status: SyncStatus
    bucket: str
    key: str
    local_path: str | None = None
    size: int = 0
    reason: str | None = None


@dataclass
class MessageResult:
    """Outcome of one broker delivery."""

    records: list[RecordResult] = field(default_factory=list)
    acknowledged: bool = False
    requeued: bool = False
    rejected: bool = False
    reason: str | None = None

    @property
    def all_succeeded(self) -> bool:
        return all(r.status == SyncStatus.DOWNLOADED for r in self.records)
