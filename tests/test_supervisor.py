"""
Tests for the service supervisor.
"""

import asyncio
import os
import signal
import sys

import pytest

from bucketsyncd.exceptions import WatchError
from bucketsyncd.service.supervisor import SyncService, serve
from bucketsyncd.sync.types import InboundState, InboundWorkflow, OutboundWorkflow, Remote, SyncConfig


class FakeOutbound:
    def __init__(self, workflow, credentials, fail=False):
        self.workflow = workflow
        self.credentials = credentials
        self.fail = fail
        self.started = False
        self.stopped = False

    async def start(self):
        if self.fail:
            raise WatchError(self.workflow.name, "/nope", "not a directory")
        self.started = True

    async def stop(self):
        self.stopped = True


class FakeInbound:
    def __init__(self, workflow, credentials):
        self.workflow = workflow
        self.credentials = credentials
        self._closed = asyncio.Event()
        self.state = InboundState.CONNECTING

    async def run(self):
        self.state = InboundState.CONSUMING
        await self._closed.wait()
        self.state = InboundState.CLOSED
        return self.state

    async def close(self):
        self._closed.set()


def _config(outbound=1, inbound=1):
    return SyncConfig(
        remotes=(Remote(name="minio1", endpoint="store", access_key="AK", secret_key="SK"),),
        outbound=tuple(
            OutboundWorkflow(name=f"out{i}", source=f"/data/out{i}/*", destination="s3://store/b")
            for i in range(outbound)
        ),
        inbound=tuple(
            InboundWorkflow(
                name=f"in{i}",
                source="amqp://broker",
                exchange="e",
                queue="q",
                remote="minio1",
                destination="/data/in",
            )
            for i in range(inbound)
        ),
    )


def _service(config, failing=()):
    return SyncService(
        config,
        outbound_factory=lambda wf, creds: FakeOutbound(wf, creds, fail=wf.name in failing),
        inbound_factory=FakeInbound,
    )


class TestSyncService:
    """Tests for SyncService start/shutdown."""

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self):
        service = _service(_config(outbound=2, inbound=2))

        await service.start()
        await asyncio.sleep(0)

        assert len(service.outbound) == 2
        assert len(service.inbound) == 2
        assert all(p.started for p in service.outbound)
        assert all(p.state == InboundState.CONSUMING for p in service.inbound)
        assert len(service.credentials) == 1

        await service.shutdown()

        assert all(p.stopped for p in service.outbound)
        assert all(p.state == InboundState.CLOSED for p in service.inbound)

    @pytest.mark.asyncio
    async def test_credentials_shared(self):
        service = _service(_config())
        await service.start()
        assert service.outbound[0].credentials is service.inbound[0].credentials
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_watch_error_propagates(self):
        service = _service(_config(outbound=2), failing={"out1"})

        with pytest.raises(WatchError):
            await service.start()

        assert len(service.outbound) == 1
        assert service.inbound == []

    @pytest.mark.asyncio
    async def test_request_shutdown(self):
        service = _service(_config())
        assert not service.shutdown_requested
        service.request_shutdown("test")
        service.request_shutdown("test again")
        assert service.shutdown_requested
        await asyncio.wait_for(service.wait(), timeout=1)


class TestServe:
    """Tests for serve()."""

    @pytest.mark.asyncio
    async def test_orderly_shutdown(self):
        service = _service(_config())
        asyncio.get_running_loop().call_later(0.05, service.request_shutdown)

        assert await serve(service, signals=None) == 0

        assert service.outbound[0].stopped
        assert service.inbound[0].state == InboundState.CLOSED

    @pytest.mark.asyncio
    async def test_watch_error_exit_status(self):
        service = _service(_config(outbound=2), failing={"out1"})

        assert await serve(service, signals=None) == 1
        assert service.outbound[0].stopped

    @pytest.mark.asyncio
    async def test_no_workflows(self):
        service = _service(_config(outbound=0, inbound=0))
        asyncio.get_running_loop().call_later(0.05, service.request_shutdown)
        assert await serve(service, signals=None) == 0

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    @pytest.mark.asyncio
    async def test_sigterm(self):
        service = _service(_config())
        loop = asyncio.get_running_loop()
        loop.call_later(0.05, os.kill, os.getpid(), signal.SIGTERM)
        try:
            assert await asyncio.wait_for(serve(service, signals=(signal.SIGTERM,)), timeout=5) == 0
        finally:
            loop.remove_signal_handler(signal.SIGTERM)
        assert service.inbound[0].state == InboundState.CLOSED
