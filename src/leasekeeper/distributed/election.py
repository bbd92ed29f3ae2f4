"""Lease-based leader election.

The engine competes for a single named lease in the object store. All lease
writes are version checked, so when several candidates race for an expired
lease exactly one write wins and the others retry.

The lease-based approach:
1. A candidate takes the lease when it is free, expired, or already its own
2. The leader renews the lease every retry period
3. If renewal keeps failing until the renew deadline, the leader steps down
4. If a leader dies, the lease expires and another candidate takes it

Example:
    engine = ElectionEngine(store, ElectionConfig(name="my-election", identity="pod-a"))

    async def became_leader(event: LeadershipEvent) -> None:
        ...

    async def lost_leadership(event: LeadershipEvent) -> None:
        ...

    # Runs until the task is cancelled
    await engine.run(became_leader, lost_leadership)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from leasekeeper.store.base import ConflictError, Lease, NotFoundError, ObjectStore, StoreError

if TYPE_CHECKING:
    from leasekeeper.config import Settings
    from leasekeeper.observability.metrics import ElectionMetrics

logger = logging.getLogger(__name__)

# Leadership events kept for inspection
EVENT_HISTORY_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ElectionState(str, Enum):
    """Externally visible election state."""

    IDLE = "idle"
    LEADER = "leader"


class EventKind(str, Enum):
    """Leadership transition kinds."""

    BECAME_LEADER = "became_leader"
    LOST_LEADERSHIP = "lost_leadership"


@dataclass(frozen=True)
class LeadershipEvent:
    """A leadership transition of this process."""

    kind: EventKind
    identity: str
    leader_transitions: int
    timestamp: datetime = field(default_factory=_utcnow)


LeadershipHandler = Callable[[LeadershipEvent], Awaitable[None]]


@dataclass
class ElectionConfig:
    """Election timing and identity."""

    # Lease name (one lease per election domain)
    name: str
    # This candidate's identity
    identity: str

    lease_duration: float = 15.0
    renew_deadline: float = 10.0
    retry_period: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ElectionConfig":
        return cls(
            name=settings.election_id,
            identity=settings.identity,
            lease_duration=settings.lease_duration,
            renew_deadline=settings.renew_deadline,
            retry_period=settings.retry_period,
        )


class ElectionEngine:
    """Acquire/renew/release state machine over a versioned lease.

    States are IDLE and LEADER. While IDLE the engine tries to take the lease
    every retry period; while LEADER it renews every retry period and steps
    down when a renewal conflicts, finds another holder, or cannot complete
    within the renew deadline. No store error is fatal: only cancellation ends
    run(), and if the engine is leader at that point it releases the lease
    and reports the loss before returning.

    Args:
        store: Object store holding the lease
        config: Election identity and timings
        clock: Wall clock used for lease timestamps and expiry checks
        metrics: Optional Prometheus metrics
    """

    def __init__(
        self,
        store: ObjectStore,
        config: ElectionConfig,
        clock: Callable[[], datetime] | None = None,
        metrics: ElectionMetrics | None = None,
    ):
        self.store = store
        self.config = config
        self.clock = clock or _utcnow
        self.metrics = metrics

        self._state = ElectionState.IDLE
        self._observed: Lease | None = None
        self._version: str | None = None
        # Loop time of the last successful acquire/renew write
        self._renewed_at = 0.0
        self._events: deque[LeadershipEvent] = deque(maxlen=EVENT_HISTORY_SIZE)
        self._on_elected: list[asyncio.Future[None]] = []

    @property
    def identity(self) -> str:
        return self.config.identity

    @property
    def state(self) -> ElectionState:
        return self._state

    @property
    def is_leader(self) -> bool:
        """Check if this process currently believes it holds the lease."""
        return self._state is ElectionState.LEADER

    @property
    def observed_lease(self) -> Lease | None:
        """The lease as last read or written by this engine."""
        return self._observed

    @property
    def events(self) -> list[LeadershipEvent]:
        """Recent leadership events, oldest first."""
        return list(self._events)

    async def run(
        self,
        on_became_leader: LeadershipHandler | None = None,
        on_lost_leadership: LeadershipHandler | None = None,
    ) -> None:
        """Take part in the election until cancelled."""
        logger.info(
            f"Starting election '{self.config.name}' as {self.identity} "
            f"(lease {self.config.lease_duration}s, renew deadline "
            f"{self.config.renew_deadline}s, retry {self.config.retry_period}s)"
        )
        try:
            while True:
                if self._state is ElectionState.IDLE:
                    if await self._try_acquire():
                        await self._become_leader(on_became_leader)
                elif not await self._renew():
                    await self._step_down(on_lost_leadership)

                await asyncio.sleep(self.config.retry_period)

        except asyncio.CancelledError:
            if self._state is ElectionState.LEADER:
                await self._release()
                await self._step_down(on_lost_leadership)
            logger.info(f"Stopped election '{self.config.name}'")
            raise

    # -------------------------------------------------------------------------
    # Acquisition
    # -------------------------------------------------------------------------

    async def _try_acquire(self) -> bool:
        """Make one attempt to take the lease."""
        try:
            return await asyncio.wait_for(
                self._acquire_once(),
                timeout=self.config.renew_deadline,
            )
        except ConflictError:
            logger.info(f"Lost acquisition race for '{self.config.name}'")
        except (StoreError, TimeoutError) as e:
            logger.warning(f"Failed to acquire lease '{self.config.name}': {e!r}")
        return False

    async def _acquire_once(self) -> bool:
        now = self.clock()
        lease: Lease | None
        version: str | None
        try:
            lease, version = await self.store.get_lease(self.config.name)
        except NotFoundError:
            lease, version = None, None

        if lease is not None:
            self._observe(lease, version)
            if lease.holder_identity != self.identity and not lease.is_expired(now):
                logger.debug(f"Lease '{self.config.name}' held by {lease.holder_identity}")
                return False
        else:
            lease = Lease(lease_duration_seconds=self.config.lease_duration)

        acquired = lease.acquired_by(self.identity, now, self.config.lease_duration)
        new_version = await self.store.compare_and_swap_lease(self.config.name, acquired, version)

        self._observe(acquired, new_version)
        self._renewed_at = asyncio.get_running_loop().time()
        logger.info(
            f"Acquired lease '{self.config.name}' "
            f"(transitions={acquired.leader_transitions}, previous holder="
            f"{lease.holder_identity or '<none>'})"
        )
        return True

    # -------------------------------------------------------------------------
    # Renewal
    # -------------------------------------------------------------------------

    async def _renew(self) -> bool:
        """Renew the lease, retrying transient errors until the renew deadline.

        Returns:
            True if the lease was renewed, False if leadership is lost
        """
        loop = asyncio.get_running_loop()
        deadline = self._renewed_at + self.config.renew_deadline

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.error(
                    f"Could not renew lease '{self.config.name}' within "
                    f"{self.config.renew_deadline}s renew deadline"
                )
                self._count_renewal("deadline")
                return False

            try:
                renewed = await asyncio.wait_for(self._renew_once(), timeout=remaining)
            except ConflictError:
                logger.warning(f"Renewal of lease '{self.config.name}' lost a version conflict")
                self._count_renewal("conflict")
                return False
            except (StoreError, TimeoutError) as e:
                logger.warning(f"Failed to renew lease '{self.config.name}': {e!r}")
                self._count_renewal("error")
                await asyncio.sleep(min(self.config.retry_period, max(0.0, deadline - loop.time())))
                continue

            self._count_renewal("ok" if renewed else "lost")
            return renewed

    async def _renew_once(self) -> bool:
        try:
            lease, version = await self.store.get_lease(self.config.name)
        except NotFoundError:
            logger.warning(f"Lease '{self.config.name}' disappeared while leading")
            return False

        self._observe(lease, version)
        if lease.holder_identity != self.identity:
            logger.warning(
                f"Lease '{self.config.name}' taken over by {lease.holder_identity or '<none>'}"
            )
            return False

        renewed = lease.renewed(self.clock())
        new_version = await self.store.compare_and_swap_lease(self.config.name, renewed, version)
        self._observe(renewed, new_version)
        self._renewed_at = asyncio.get_running_loop().time()
        logger.debug(f"Renewed lease '{self.config.name}'")
        return True

    def _count_renewal(self, result: str) -> None:
        if self.metrics is not None:
            self.metrics.lease_renewals_total.labels(result=result).inc()

    # -------------------------------------------------------------------------
    # Release
    # -------------------------------------------------------------------------

    async def _release(self) -> bool:
        """Clear the holder if this process still holds the lease (best effort)."""
        try:
            return await asyncio.wait_for(
                self._release_once(),
                timeout=self.config.renew_deadline,
            )
        except (StoreError, TimeoutError) as e:
            logger.warning(f"Failed to release lease '{self.config.name}': {e!r}")
            return False

    async def _release_once(self) -> bool:
        lease, version = await self.store.get_lease(self.config.name)
        if lease.holder_identity != self.identity:
            return False

        released = lease.released()
        new_version = await self.store.compare_and_swap_lease(self.config.name, released, version)
        self._observe(released, new_version)
        logger.info(f"Released lease '{self.config.name}'")
        return True

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _observe(self, lease: Lease, version: str | None) -> None:
        self._observed = lease
        self._version = version

    def _record(self, kind: EventKind) -> LeadershipEvent:
        transitions = self._observed.leader_transitions if self._observed else 0
        event = LeadershipEvent(
            kind=kind,
            identity=self.identity,
            leader_transitions=transitions,
            timestamp=self.clock(),
        )
        self._events.append(event)
        if self.metrics is not None:
            self.metrics.leader_transitions_total.labels(kind=kind.value).inc()
            self.metrics.is_leader.set(1 if kind is EventKind.BECAME_LEADER else 0)
        return event

    async def _become_leader(self, handler: LeadershipHandler | None) -> None:
        self._state = ElectionState.LEADER
        event = self._record(EventKind.BECAME_LEADER)
        logger.info(f"{self.identity}: became leader of '{self.config.name}'")

        for future in self._on_elected:
            if not future.done():
                future.set_result(None)
        self._on_elected.clear()

        await self._notify(handler, event)

    async def _step_down(self, handler: LeadershipHandler | None) -> None:
        self._state = ElectionState.IDLE
        event = self._record(EventKind.LOST_LEADERSHIP)
        logger.warning(f"{self.identity}: lost leadership of '{self.config.name}'")

        # Loss cleanup runs to completion even when run() is cancelled meanwhile
        cleanup = asyncio.ensure_future(self._notify(handler, event))
        try:
            await asyncio.shield(cleanup)
        except asyncio.CancelledError:
            await cleanup
            raise

    async def _notify(self, handler: LeadershipHandler | None, event: LeadershipEvent) -> None:
        if handler is None:
            return
        try:
            await handler(event)
        except Exception:
            logger.exception(f"Error in {event.kind.value} handler")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def wait_for_leadership(self, timeout: float | None = None) -> bool:
        """Wait until this process becomes the leader.

        Args:
            timeout: Maximum time to wait in seconds (None = wait forever)

        Returns:
            True if leadership was acquired, False if timeout
        """
        if self.is_leader:
            return True

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._on_elected.append(future)

        try:
            await asyncio.wait_for(future, timeout=timeout)
            return True
        except TimeoutError:
            if future in self._on_elected:
                self._on_elected.remove(future)
            return False

    async def get_current_leader(self) -> str:
        """Read the live lease holder, or "" when there is none or it expired.

        Raises:
            StoreError: If the lease cannot be read
        """
        try:
            lease, _ = await self.store.get_lease(self.config.name)
        except NotFoundError:
            return ""
        return "" if lease.is_expired(self.clock()) else lease.holder_identity
