"""
Service supervisor.

Starts one pipeline per configured workflow, waits for SIGINT/SIGTERM and
shuts everything down. The supervisor holds pipeline handles, not broker
connections: each inbound pipeline owns and closes its own connection.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable, Iterable
from typing import Any

from bucketsyncd.connections.credentials import CredentialResolver
from bucketsyncd.exceptions import WatchError
from bucketsyncd.sync.inbound import InboundPipeline
from bucketsyncd.sync.outbound import OutboundPipeline
from bucketsyncd.sync.types import InboundWorkflow, OutboundWorkflow, SyncConfig
from bucketsyncd.utils.logging import get_logger

logger = get_logger("bucketsyncd.service")

OutboundFactory = Callable[[OutboundWorkflow, CredentialResolver], Any]
InboundFactory = Callable[[InboundWorkflow, CredentialResolver], Any]

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SyncService:
    """
    Owns every pipeline of one configuration.

    Args:
        config: Validated configuration
        outbound_factory: ``(workflow, credentials) -> OutboundPipeline``
        inbound_factory: ``(workflow, credentials) -> InboundPipeline``
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        outbound_factory: OutboundFactory | None = None,
        inbound_factory: InboundFactory | None = None,
    ):
        self.config = config
        self.credentials = CredentialResolver(config.remotes)
        self._outbound_factory = outbound_factory or OutboundPipeline
        self._inbound_factory = inbound_factory or InboundPipeline
        self.outbound: list[Any] = []
        self.inbound: list[Any] = []
        self._inbound_tasks: list[asyncio.Task] = []
        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        """
        Start every pipeline.

        Raises:
            WatchError: An outbound directory cannot be watched (process-fatal)
        """
        for workflow in self.config.outbound:
            pipeline = self._outbound_factory(workflow, self.credentials)
            await pipeline.start()
            self.outbound.append(pipeline)

        for workflow in self.config.inbound:
            pipeline = self._inbound_factory(workflow, self.credentials)
            self.inbound.append(pipeline)
            self._inbound_tasks.append(asyncio.create_task(pipeline.run(), name=f"inbound:{workflow.name}"))

        if not self.outbound and not self.inbound:
            logger.warning("no workflows configured, waiting for shutdown")
        else:
            logger.info(f"started {len(self.outbound)} outbound and {len(self.inbound)} inbound workflow(s)")

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        """Signal-safe: ask ``wait()`` to return."""
        if not self._shutdown.is_set():
            logger.info(f"{reason}, stopping workflows")
        self._shutdown.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    async def wait(self) -> None:
        await self._shutdown.wait()

    async def shutdown(self) -> None:
        """Close inbound connections and release outbound watches; in-flight transfers are abandoned."""
        _log_failures("close inbound", await asyncio.gather(*(p.close() for p in self.inbound), return_exceptions=True))
        _log_failures("stop outbound", await asyncio.gather(*(p.stop() for p in self.outbound), return_exceptions=True))
        _log_failures("inbound task", await asyncio.gather(*self._inbound_tasks, return_exceptions=True))
        self._inbound_tasks.clear()
        logger.info("all workflows stopped")


def _log_failures(what: str, results: Iterable[Any]) -> None:
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
            logger.error(f"{what} failed: {result}")


def _install_signal_handlers(service: SyncService, signals: Iterable[signal.Signals]) -> None:
    loop = asyncio.get_running_loop()
    for sig in signals:
        try:
            loop.add_signal_handler(sig, service.request_shutdown, f"received {sig.name}")
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(service.request_shutdown))


async def serve(service: SyncService, *, signals: Iterable[signal.Signals] | None = SHUTDOWN_SIGNALS) -> int:
    """
    Run a service until shutdown is requested.

    Returns:
        Process exit status: 0 after an orderly shutdown, 1 on fatal errors
    """
    if signals:
        _install_signal_handlers(service, signals)

    try:
        await service.start()
    except WatchError as e:
        logger.error(str(e))
        await service.shutdown()
        return 1

    await service.wait()
    await service.shutdown()
    return 0


def run_service(config: SyncConfig) -> int:
    """Blocking entry point used by the CLI."""
    return asyncio.run(serve(SyncService(config)))
