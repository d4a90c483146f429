"""
Outbound pipeline: local directory -> object store / WebDAV.

A watchdog observer thread forwards filesystem events into an asyncio queue;
one worker task per workflow handles them in arrival order. Only content
writes are propagated: creates, renames, deletes and attribute changes never
trigger an upload, which keeps files written by inbound pipelines (renamed or
freshly created) from bouncing straight back out.

watchdog reports attribute changes (chmod, chown) as modifications too, so a
modified event only counts as a write when the file's (mtime, size) differs
from the last one seen for that path.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from typing import Any, BinaryIO

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from bucketsyncd.connections.credentials import CredentialResolver
from bucketsyncd.connections.s3 import S3StorageClient
from bucketsyncd.connections.storage import PARTIAL_SUFFIX, StorageClient
from bucketsyncd.connections.webdav import WebDAVClient
from bucketsyncd.core.retry import BackoffRetrier, RetryPolicy
from bucketsyncd.exceptions import CredentialsNotFoundError, RetryExhaustedError, StorageError, WatchError
from bucketsyncd.sync.destinations import (
    ObjectStoreDestination,
    WebDAVDestination,
    matches_glob,
    parse_destination,
    split_source,
)
from bucketsyncd.sync.types import FileEvent, FileOperation, OutboundWorkflow, SyncStatus, UploadResult
from bucketsyncd.utils.logging import get_logger, workflow_context

logger = get_logger("bucketsyncd.sync.outbound")

# watchdog event_type -> FileOperation; unlisted types (closed_no_write) are dropped
_OPERATIONS = {
    "created": FileOperation.CREATED,
    "modified": FileOperation.MODIFIED,
    "deleted": FileOperation.DELETED,
    "moved": FileOperation.MOVED,
    "closed": FileOperation.CLOSED,
    "opened": FileOperation.OPENED,
}

S3Factory = Callable[..., StorageClient]
WebDAVFactory = Callable[[str], tuple[StorageClient, str]]


class _EventForwarder(FileSystemEventHandler):
    """Runs on the observer thread; hands file events to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue[FileEvent]):
        super().__init__()
        self._loop = loop
        self._queue = queue

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        operation = _OPERATIONS.get(event.event_type)
        if operation is None:
            return
        dest = getattr(event, "dest_path", "")
        file_event = FileEvent(
            path=os.fsdecode(event.src_path),
            operation=operation,
            dest_path=os.fsdecode(dest) if dest else None,
        )
        self._loop.call_soon_threadsafe(self._queue.put_nowait, file_event)


class OutboundPipeline:
    """
    Mirror one local directory's matching files to a remote destination.

    Args:
        workflow: Outbound workflow definition
        credentials: Resolver used to match the destination host to a remote
        s3_factory: ``(endpoint, access_key, secret_key, secure=...) -> StorageClient``
        webdav_factory: ``(uri) -> (StorageClient, remote_path)``
        observer_factory: watchdog observer constructor
        retrier: Backoff retrier for uploads (defaults to
            ``workflow.upload_attempts`` attempts)
    """

    def __init__(
        self,
        workflow: OutboundWorkflow,
        credentials: CredentialResolver,
        *,
        s3_factory: S3Factory | None = None,
        webdav_factory: WebDAVFactory | None = None,
        observer_factory: Callable[[], Any] | None = None,
        retrier: BackoffRetrier | None = None,
    ):
        self.workflow = workflow
        self.credentials = credentials
        self.watch_dir, self.pattern = split_source(workflow.source)
        self._s3_factory = s3_factory or S3StorageClient
        self._webdav_factory = webdav_factory or WebDAVClient.from_url
        self._observer_factory = observer_factory or Observer
        self._retrier = retrier or BackoffRetrier(RetryPolicy(max_attempts=max(1, workflow.upload_attempts)))
        self._queue: asyncio.Queue[FileEvent] | None = None
        self._observer: Any = None
        self._task: asyncio.Task | None = None
        # absolute path -> (st_mtime_ns, st_size) of the last uploaded or pre-existing content
        self._signatures: dict[str, tuple[int, int]] = {}
        self.stats = {status: 0 for status in (SyncStatus.UPLOADED, SyncStatus.SKIPPED, SyncStatus.FAILED)}

    @property
    def name(self) -> str:
        return self.workflow.name

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """
        Install the directory watch and start the event worker.

        Raises:
            WatchError: The directory cannot be watched
        """
        with workflow_context(self.name):
            logger.info(f"configuring watcher for '{self.workflow.description}'")
            logger.debug(f"watching folder '{self.watch_dir}' for files matching '{self.pattern}'")
            if self.workflow.process_with:
                logger.warning(
                    f"process_with '{self.workflow.process_with}' is not supported, files are uploaded unmodified"
                )

            if not os.path.isdir(self.watch_dir):
                raise WatchError(self.name, self.watch_dir, "not a directory")
            try:
                self._snapshot()
            except OSError as e:
                raise WatchError(self.name, self.watch_dir, str(e)) from e

            loop = asyncio.get_running_loop()
            self._queue = asyncio.Queue()
            observer = self._observer_factory()
            try:
                observer.schedule(_EventForwarder(loop, self._queue), self.watch_dir, recursive=False)
                observer.start()
            except OSError as e:
                raise WatchError(self.name, self.watch_dir, str(e)) from e
            self._observer = observer
            self._task = asyncio.create_task(self._consume(), name=f"outbound:{self.name}")

    async def stop(self) -> None:
        """Release the watch and abandon pending events."""
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        with workflow_context(self.name):
            logger.debug("watcher stopped")

    async def _consume(self) -> None:
        assert self._queue is not None
        with workflow_context(self.name):
            while True:
                event = await self._queue.get()
                try:
                    await self.handle_event(event)
                except Exception:
                    logger.exception(f"unexpected error handling event for '{event.path}'")

    async def handle_event(self, event: FileEvent) -> UploadResult:
        """
        Filter one filesystem event and upload the file if it qualifies.

        Never raises for event-local problems; the returned result says what
        happened.
        """
        logger.debug(f"event {event.operation.value} '{event.path}'")

        if event.operation == FileOperation.MOVED and event.dest_path:
            self._remember(event.dest_path)
        if event.operation != FileOperation.MODIFIED:
            return self._skip(event, "ignoring unimportant event type")

        filename = os.path.basename(event.path)
        if filename.endswith(PARTIAL_SUFFIX):
            return self._skip(event, "ignoring in-progress download")
        if not matches_glob(self.pattern, filename):
            return self._skip(event, "ignoring write event due to glob mismatch")

        try:
            f = open(event.path, "rb")
        except OSError as e:
            return self._fail(event, None, f"failed to open file '{filename}': {e}")

        with f:
            try:
                st = os.fstat(f.fileno())
                destination = parse_destination(self.workflow.destination)
            except (OSError, ValueError) as e:
                return self._fail(event, None, str(e))

            signature = (st.st_mtime_ns, st.st_size)
            if self._signatures.get(os.path.abspath(event.path)) == signature:
                return self._skip(event, "ignoring attribute-only change")

            if isinstance(destination, WebDAVDestination):
                result = await self._upload_webdav(event, f, st.st_size, filename, destination)
            else:
                result = await self._upload_object(event, f, st.st_size, filename, destination)

        if result.status == SyncStatus.UPLOADED:
            self._signatures[os.path.abspath(event.path)] = signature
        return result

    def _snapshot(self) -> None:
        """Record the signature of every matching file already in the watched folder."""
        with os.scandir(self.watch_dir) as entries:
            for entry in entries:
                if entry.is_file(follow_symlinks=True) and matches_glob(self.pattern, entry.name):
                    st = entry.stat()
                    self._signatures[os.path.abspath(entry.path)] = (st.st_mtime_ns, st.st_size)

    def _remember(self, path: str) -> None:
        # Renamed-in files (finished downloads) are known content, not writes
        try:
            st = os.stat(path)
        except OSError as e:
            logger.debug(f"cannot stat renamed file '{path}': {e}")
            return
        self._signatures[os.path.abspath(path)] = (st.st_mtime_ns, st.st_size)

    async def _upload_object(
        self,
        event: FileEvent,
        f: BinaryIO,
        size: int,
        filename: str,
        destination: ObjectStoreDestination,
    ) -> UploadResult:
        target = destination.describe(filename)
        try:
            remote = self.credentials.require_by_endpoint(destination.host)
        except CredentialsNotFoundError as e:
            return self._fail(event, target, f"no credentials found: {e}")

        key = destination.key_for(filename)
        logger.debug(f"uploading '{event.path}' to bucket '{destination.bucket}' as '{key}'")
        client = self._s3_factory(destination.netloc, remote.access_key, remote.secret_key, secure=destination.secure)
        try:
            async with client:
                sent = await self._put(client, destination.bucket, key, f, size)
        except (StorageError, RetryExhaustedError, OSError) as e:
            return self._fail(event, target, f"failed to upload file to S3: {e}")

        logger.info(f"uploaded '{event.path}' to '{target}' ({sent} bytes)")
        return self._done(event, target, sent)

    async def _upload_webdav(
        self,
        event: FileEvent,
        f: BinaryIO,
        size: int,
        filename: str,
        destination: WebDAVDestination,
    ) -> UploadResult:
        target = destination.describe(filename)
        try:
            client, _ = self._webdav_factory(destination.uri)
        except ValueError as e:
            return self._fail(event, target, str(e))

        try:
            async with client:
                sent = await self._put(client, "", destination.path_for(filename), f, size)
        except (StorageError, RetryExhaustedError, OSError) as e:
            return self._fail(event, target, f"failed to upload file to WebDAV: {e}")

        logger.info(f"uploaded '{event.path}' to '{target}' ({sent} bytes)")
        return self._done(event, target, sent)

    async def _put(self, client: StorageClient, bucket: str, key: str, f: BinaryIO, size: int) -> int:
        async def attempt() -> int:
            f.seek(0)
            return await client.put(bucket, key, f, size)

        return await self._retrier.execute(attempt, operation_name=f"upload '{key}'")

    def _skip(self, event: FileEvent, reason: str) -> UploadResult:
        logger.debug(f"{reason}: '{event.path}' ({event.operation.value})")
        self.stats[SyncStatus.SKIPPED] += 1
        return UploadResult(SyncStatus.SKIPPED, event.path, reason=reason)

    def _fail(self, event: FileEvent, target: str | None, reason: str) -> UploadResult:
        logger.error(reason)
        self.stats[SyncStatus.FAILED] += 1
        return UploadResult(SyncStatus.FAILED, event.path, destination=target, reason=reason)

    def _done(self, event: FileEvent, target: str, size: int) -> UploadResult:
        self.stats[SyncStatus.UPLOADED] += 1
        return UploadResult(SyncStatus.UPLOADED, event.path, destination=target, size=size)
