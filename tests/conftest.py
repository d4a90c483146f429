"""
Shared fixtures: an in-memory object store and AMQP test doubles.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from bucketsyncd.connections.storage import StorageClient, replace_on_success
from bucketsyncd.exceptions import StorageError


class FakeStorage(StorageClient):
    """StorageClient over a dict shared between instances."""

    def __init__(self, objects: dict | None = None, *, fail_puts: int = 0):
        self.objects = {} if objects is None else objects
        self.puts: list[tuple[str, str, int]] = []
        self.fail_puts = fail_puts
        self.closed = False

    async def put(self, bucket, key, fileobj, size):
        if self.fail_puts:
            self.fail_puts -= 1
            raise StorageError("put", f"{bucket}/{key}", "connection reset")
        self.objects[(bucket, key)] = fileobj.read(size)
        self.puts.append((bucket, key, size))
        return size

    async def get(self, bucket, key):
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise StorageError("get", f"{bucket}/{key}", "NoSuchKey") from None

    async def download(self, bucket, key, local_path):
        data = await self.get(bucket, key)
        with replace_on_success(local_path) as f:
            f.write(data)
        return len(data)

    async def exists(self, bucket, key):
        return (bucket, key) in self.objects

    async def delete(self, bucket, key):
        self.objects.pop((bucket, key), None)

    async def list(self, bucket, prefix=""):
        return [k for b, k in self.objects if b == bucket and k.startswith(prefix)]

    async def close(self):
        self.closed = True


class FakeQueue:
    def __init__(self, bind_error: Exception | None = None):
        self.bind_error = bind_error
        self.bindings: list[tuple[str, str]] = []
        self.consumer = None
        self.consume_kwargs: dict = {}

    async def bind(self, exchange, routing_key=None):
        if self.bind_error is not None:
            raise self.bind_error
        self.bindings.append((exchange, routing_key))

    async def consume(self, callback, **kwargs):
        self.consumer = callback
        self.consume_kwargs = kwargs
        return kwargs.get("consumer_tag")


class FakeChannel:
    def __init__(self, queue: FakeQueue):
        self.queue = queue
        self.queue_requests: list[tuple[str, bool]] = []

    async def get_queue(self, name, ensure=True):
        self.queue_requests.append((name, ensure))
        return self.queue


class FakeConnection:
    """Just enough of aio_pika's RobustConnection for the inbound pipeline."""

    def __init__(self, bind_error: Exception | None = None):
        self.queue = FakeQueue(bind_error)
        self.channel_obj = FakeChannel(self.queue)
        self.close_callbacks: set = set()
        self.is_closed = False
        self.close_calls = 0

    async def channel(self):
        return self.channel_obj

    async def close(self):
        self.close_calls += 1
        self.is_closed = True

    def drop(self):
        """Simulate the broker going away."""
        self.is_closed = True
        for callback in list(self.close_callbacks):
            callback(self, ConnectionError("connection reset by peer"))

    async def deliver(self, message):
        await self.queue.consumer(message)


class FakeMessage:
    def __init__(self, body: bytes | str, delivery_tag: int = 1):
        self.body = body.encode() if isinstance(body, str) else body
        self.delivery_tag = delivery_tag
        self.ack = AsyncMock()
        self.nack = AsyncMock()
        self.reject = AsyncMock()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def object_store():
    """Shared backing dict for FakeStorage instances."""
    return {}
