"""Process supervisor for leasekeeper.

Wires the election engine to the marker reconciler and the status publisher,
and owns every background task of the process:
- the election loop, alive for the whole process lifetime
- the periodic reconciliation loop, alive only while leading
- graceful shutdown on SIGTERM/SIGINT, releasing the lease when held

Example:
    supervisor = Supervisor.from_settings(settings, store)

    # Run until a shutdown signal (blocks)
    await supervisor.run()

    # Or as context manager
    async with supervisor:
        await asyncio.sleep(60)
"""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime
from types import TracebackType
from typing import TYPE_CHECKING, Callable

from leasekeeper.distributed.election import ElectionConfig, ElectionEngine, LeadershipEvent
from leasekeeper.distributed.reconciler import MarkerReconciler
from leasekeeper.distributed.status import StatusPublisher
from leasekeeper.store.base import ObjectStore

if TYPE_CHECKING:
    from leasekeeper.config import Settings
    from leasekeeper.observability.metrics import ElectionMetrics

logger = logging.getLogger(__name__)


class Supervisor:
    """Owns the election and its side effects for one candidate process.

    On becoming leader the supervisor marks itself, removes stale markers,
    publishes its identity, and only then starts periodic reconciliation, so
    periodic passes never race the initial marker. On losing leadership it
    stops periodic reconciliation first, then clears its own marker and the
    published leader.
    """

    def __init__(
        self,
        store: ObjectStore,
        engine: ElectionEngine,
        reconciler: MarkerReconciler,
        publisher: StatusPublisher,
        install_signal_handlers: bool = True,
    ) -> None:
        self.store = store
        self.engine = engine
        self.reconciler = reconciler
        self.publisher = publisher
        self.install_signal_handlers = install_signal_handlers

        self._shutdown_event = asyncio.Event()
        self._election_task: asyncio.Task[None] | None = None
        self._reconcile_task: asyncio.Task[None] | None = None
        self._signals: list[signal.Signals] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: ObjectStore,
        metrics: ElectionMetrics | None = None,
        clock: Callable[[], datetime] | None = None,
        install_signal_handlers: bool = True,
    ) -> "Supervisor":
        """Build a supervisor and its components from settings."""
        engine = ElectionEngine(
            store,
            ElectionConfig.from_settings(settings),
            clock=clock,
            metrics=metrics,
        )
        return cls(
            store,
            engine,
            MarkerReconciler.from_settings(store, settings, metrics=metrics),
            StatusPublisher.from_settings(store, settings, metrics=metrics),
            install_signal_handlers=install_signal_handlers,
        )

    @property
    def identity(self) -> str:
        return self.engine.identity

    @property
    def reconciling(self) -> bool:
        """Check if the periodic reconciliation task is alive."""
        return self._reconcile_task is not None and not self._reconcile_task.done()

    async def start(self) -> None:
        """Start the election loop."""
        if self._election_task is not None:
            return

        self._shutdown_event.clear()

        if self.install_signal_handlers:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self._signal_handler)
                self._signals.append(sig)

        self._election_task = asyncio.create_task(
            self.engine.run(self._on_became_leader, self._on_lost_leadership),
            name=f"election-{self.identity}",
        )
        logger.info(f"Supervisor started for {self.identity}")

    async def stop(self) -> None:
        """Stop the election, release the lease, and wait for all loops to end."""
        self._shutdown_event.set()

        if self._election_task is not None:
            # Cancelling the engine releases the lease and runs the loss handler
            self._election_task.cancel()
            try:
                await self._election_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Election loop failed")
            self._election_task = None

        await self._stop_reconciling()

        if self._signals:
            loop = asyncio.get_running_loop()
            for sig in self._signals:
                loop.remove_signal_handler(sig)
            self._signals.clear()

        await self.store.close()
        logger.info(f"Supervisor stopped for {self.identity}")

    def _signal_handler(self) -> None:
        """Handle shutdown signals."""
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    async def run(self) -> None:
        """Run until a shutdown signal arrives or the election loop ends."""
        await self.start()
        assert self._election_task is not None

        shutdown = asyncio.create_task(self._shutdown_event.wait())
        try:
            await asyncio.wait(
                {shutdown, self._election_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            shutdown.cancel()
            await self.stop()

    # -------------------------------------------------------------------------
    # Leadership handlers
    # -------------------------------------------------------------------------

    async def _on_became_leader(self, event: LeadershipEvent) -> None:
        await self.reconciler.mark(event.identity)
        await self.reconciler.reconcile(event.identity)
        await self.publisher.publish(event.identity)

        await self._stop_reconciling()
        self._reconcile_task = asyncio.create_task(
            self.reconciler.run_periodic(),
            name=f"reconcile-{event.identity}",
        )

    async def _on_lost_leadership(self, event: LeadershipEvent) -> None:
        await self._stop_reconciling()
        await self.reconciler.unmark(event.identity)
        await self.publisher.publish("")

    async def _stop_reconciling(self) -> None:
        task, self._reconcile_task = self._reconcile_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def __aenter__(self) -> "Supervisor":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
