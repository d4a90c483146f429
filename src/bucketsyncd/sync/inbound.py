"""
Inbound pipeline: broker notifications -> local files.

Each workflow owns one AMQP connection and walks this state machine::

    connecting -> bound -> consuming -> connection_lost -> reconnecting -> bound ...
                                                        \\-> closed (shutdown requested)
    connecting / reconnecting -- retries exhausted --> failed
    bound      -- bind / consume error ----------------> failed

Deliveries of one connection are handled sequentially by a dedicated worker
task; a reconnect cancels the old worker before the new one starts, so a
closed connection is never used to settle a message.

Requires: pip install aio-pika
"""

from __future__ import annotations

import asyncio
import os
import posixpath
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import aio_pika
from aio_pika.exceptions import AMQPError, MessageProcessError

from bucketsyncd.connections.credentials import CredentialResolver
from bucketsyncd.connections.s3 import S3StorageClient
from bucketsyncd.connections.storage import StorageClient
from bucketsyncd.core.retry import BackoffRetrier
from bucketsyncd.exceptions import (
    BrokerError,
    CredentialsNotFoundError,
    NotificationDecodeError,
    RetryExhaustedError,
    StorageError,
)
from bucketsyncd.sync.notifications import NotificationRecord, decode_notification, decode_object_key
from bucketsyncd.sync.types import (
    AckPolicy,
    InboundState,
    InboundWorkflow,
    MessageResult,
    RecordResult,
    Remote,
    SyncStatus,
)
from bucketsyncd.utils.logging import get_logger, workflow_context

logger = get_logger("bucketsyncd.sync.inbound")

CLIENT_CONNECTION_NAME = "bucketsyncd"
CONSUMER_TAG = "bucketsyncd"

# Errors aio-pika raises for a dead or refusing broker
_BROKER_ERRORS = (AMQPError, ConnectionError, asyncio.TimeoutError)
_SETTLE_ERRORS = (AMQPError, MessageProcessError, ConnectionError, RuntimeError)

Connect = Callable[..., Awaitable[Any]]
StorageFactory = Callable[[Remote], StorageClient | Awaitable[StorageClient]]


def redact_url(url: str) -> str:
    """Replace the password of a URL with ``xxxxx`` for logging."""
    parts = urlsplit(url)
    if parts.password is None:
        return url
    userinfo, _, hostport = parts.netloc.rpartition("@")
    user = userinfo.partition(":")[0]
    return urlunsplit(parts._replace(netloc=f"{user}:xxxxx@{hostport}"))


@dataclass
class _Session:
    """One live broker connection and the worker consuming from it."""

    connection: Any
    closed: asyncio.Event = field(default_factory=asyncio.Event)
    deliveries: asyncio.Queue = field(default_factory=asyncio.Queue)
    worker: asyncio.Task | None = None


class InboundPipeline:
    """
    Consume object-created notifications and download the objects.

    Args:
        workflow: Inbound workflow definition
        credentials: Resolver used to look up ``workflow.remote``
        connect: Broker dial coroutine (defaults to ``aio_pika.connect``)
        storage_factory: ``(remote) -> StorageClient``
        retrier: Backoff retrier shared by dialing and client construction
    """

    def __init__(
        self,
        workflow: InboundWorkflow,
        credentials: CredentialResolver,
        *,
        connect: Connect | None = None,
        storage_factory: StorageFactory | None = None,
        retrier: BackoffRetrier | None = None,
    ):
        self.workflow = workflow
        self.credentials = credentials
        self._connect = connect or aio_pika.connect
        self._storage_factory = storage_factory or S3StorageClient.from_remote
        self._retrier = retrier or BackoffRetrier()
        self._stopping = asyncio.Event()
        self._session: _Session | None = None
        self._run_task: asyncio.Task | None = None
        self.state = InboundState.CONNECTING
        self.state_history: list[InboundState] = [InboundState.CONNECTING]
        # Number of times the pipeline entered the consuming state
        self.connections_established = 0

    @property
    def name(self) -> str:
        return self.workflow.name

    def _set_state(self, state: InboundState) -> None:
        if state == self.state:
            return
        logger.debug(f"state {self.state.value} -> {state.value}")
        self.state = state
        self.state_history.append(state)

    async def run(self) -> InboundState:
        """
        Top-level task of the workflow.

        Returns when the workflow is closed or has failed; failures never
        propagate to sibling workflows.
        """
        if self._stopping.is_set():
            return self.state
        self._run_task = asyncio.current_task()
        with workflow_context(self.name):
            logger.info(
                f"configuring AMQP client for '{self.workflow.description}'",
                extra={
                    "source": redact_url(self.workflow.source),
                    "exchange": self.workflow.exchange,
                    "queue": self.workflow.queue,
                },
            )
            try:
                session = await self._open_session(reconnect=False)
                while session is not None:
                    if not await self._wait_for_close(session):
                        break
                    await self._release(session)
                    self._set_state(InboundState.CONNECTION_LOST)
                    if self._stopping.is_set():
                        break
                    logger.warning("AMQP connection closed, reconnecting")
                    self._set_state(InboundState.RECONNECTING)
                    session = await self._open_session(reconnect=True)
            except RetryExhaustedError as e:
                logger.error(f"failed to connect to AMQP service after retries: {e}")
                self._set_state(InboundState.FAILED)
            except BrokerError as e:
                logger.error(str(e))
                self._set_state(InboundState.FAILED)
            finally:
                await self._release(self._session)
                if self.state != InboundState.FAILED:
                    self._set_state(InboundState.CLOSED)
                    logger.info("AMQP connection closed")
        return self.state

    async def close(self) -> None:
        """Request shutdown and wait for the connection to be released."""
        self._stopping.set()
        task = self._run_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            # Interrupt a pending dial or backoff sleep
            if self.state in (InboundState.CONNECTING, InboundState.RECONNECTING):
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        else:
            await self._release(self._session)
            if not self.state.is_terminal:
                self._set_state(InboundState.CLOSED)

    async def _dial(self) -> Any:
        return await self._connect(
            self.workflow.source,
            client_properties={"connection_name": CLIENT_CONNECTION_NAME},
        )

    async def _open_session(self, *, reconnect: bool) -> _Session | None:
        """Connecting -> Bound -> Consuming; returns None if shutdown won the race."""
        operation = "reconnect to AMQP service" if reconnect else "connect to AMQP service"
        connection = await self._retrier.execute(self._dial, operation_name=operation)

        session = _Session(connection)
        self._session = session

        def on_close(*_: Any) -> None:
            session.closed.set()

        connection.close_callbacks.add(on_close)
        if self._stopping.is_set():
            return None

        try:
            channel = await connection.channel()
            queue = await channel.get_queue(self.workflow.queue, ensure=True)
            await queue.bind(self.workflow.exchange, routing_key=self.workflow.exchange)
        except _BROKER_ERRORS as e:
            raise BrokerError(f"failed to bind queue '{self.workflow.queue}' to '{self.workflow.exchange}': {e}") from e
        self._set_state(InboundState.BOUND)
        logger.debug("queue bound to exchange")

        try:
            await queue.consume(session.deliveries.put, no_ack=False, exclusive=False, consumer_tag=CONSUMER_TAG)
        except _BROKER_ERRORS as e:
            raise BrokerError(f"failed to consume messages from queue '{self.workflow.queue}': {e}") from e

        session.worker = asyncio.create_task(self._consume(session), name=f"inbound:{self.name}")
        self._set_state(InboundState.CONSUMING)
        self.connections_established += 1
        return session

    async def _wait_for_close(self, session: _Session) -> bool:
        """Block until the connection drops (True) or shutdown is requested (False)."""
        lost = asyncio.create_task(session.closed.wait())
        stop = asyncio.create_task(self._stopping.wait())
        try:
            await asyncio.wait({lost, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (lost, stop):
                task.cancel()
        return session.closed.is_set() and not self._stopping.is_set()

    async def _release(self, session: _Session | None) -> None:
        if session is None:
            return
        if session.worker is not None:
            session.worker.cancel()
            await asyncio.gather(session.worker, return_exceptions=True)
            session.worker = None
        connection = session.connection
        if not getattr(connection, "is_closed", False):
            try:
                await connection.close()
            except _BROKER_ERRORS as e:
                logger.error(f"failed to close AMQP connection: {e}")
        if self._session is session:
            self._session = None

    async def _consume(self, session: _Session) -> None:
        while True:
            message = await session.deliveries.get()
            if session.closed.is_set():
                logger.warning("deliveries channel closed")
                return
            try:
                await self.process_message(message)
            except Exception:
                logger.exception("unexpected error processing delivery")

    async def process_message(self, message: Any) -> MessageResult:
        """
        Download every record of one delivery, then settle it exactly once.

        Under ``ack_policy=always`` the delivery is acknowledged even if some
        records failed; under ``on_success`` it is requeued instead. A body
        that is not a notification is rejected without requeue.
        """
        result = MessageResult()
        logger.debug(f"got {len(message.body)}B delivery: [{message.delivery_tag}]")

        try:
            notification = decode_notification(message.body)
        except NotificationDecodeError as e:
            logger.error(f"failed to parse notification payload: {e}")
            result.reason = str(e)
            await self._settle(message, "reject", result)
            return result

        for record in notification.records:
            result.records.append(await self._process_record(notification.event_name, record))

        if self.workflow.ack_policy == AckPolicy.ON_SUCCESS and not result.all_succeeded:
            await self._settle(message, "nack", result)
        else:
            await self._settle(message, "ack", result)
        return result

    async def _settle(self, message: Any, action: str, result: MessageResult) -> None:
        try:
            if action == "ack":
                await message.ack()
                result.acknowledged = True
            elif action == "nack":
                await message.nack(requeue=True)
                result.requeued = True
            else:
                await message.reject(requeue=False)
                result.rejected = True
        except _SETTLE_ERRORS as e:
            logger.error(f"failed to {action} AMQP message: {e}")

    async def _process_record(self, event_name: str, record: NotificationRecord) -> RecordResult:
        try:
            key = decode_object_key(record.key)
        except NotificationDecodeError as e:
            return self._record_failed(record.bucket, record.key, f"invalid URL-encoded key: {e}")

        logger.debug(
            f"event '{event_name}' received",
            extra={"bucket": record.bucket, "key": key, "size": record.size},
        )

        filename = posixpath.basename(key)
        if not filename:
            return self._record_failed(record.bucket, key, "object key has no file name")

        try:
            remote = self.credentials.require_by_name(self.workflow.remote)
        except CredentialsNotFoundError as e:
            return self._record_failed(record.bucket, key, f"no credentials found: {e}")

        try:
            client = await self._retrier.execute(
                self._storage_factory, remote, operation_name=f"create storage client for '{remote.endpoint}'"
            )
        except RetryExhaustedError as e:
            return self._record_failed(record.bucket, key, f"failed to create storage client: {e}")

        local_path = os.path.join(self.workflow.destination, filename)
        try:
            async with client:
                size = await client.download(record.bucket, key, local_path)
        except (StorageError, OSError) as e:
            return self._record_failed(record.bucket, key, f"failed to fetch object: {e}")

        logger.info(f"retrieved remote object '{record.bucket}/{key}' to '{local_path}' ({size} bytes)")
        return RecordResult(SyncStatus.DOWNLOADED, record.bucket, key, local_path=local_path, size=size)

    def _record_failed(self, bucket: str, key: str, reason: str) -> RecordResult:
        logger.error(reason)
        return RecordResult(SyncStatus.FAILED, bucket, key, reason=reason)
