"""Tests for the process supervisor."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from leasekeeper.distributed.election import EventKind, LeadershipEvent
from leasekeeper.store.base import Lease
from leasekeeper.supervisor import Supervisor

KEY = "leasekeeper.io/leader"


def make_supervisor(
    store, make_settings, clock, identity: str = "pod-a", **overrides: object
) -> Supervisor:
    settings = make_settings(identity=identity, marker_key=KEY, **overrides)
    supervisor = Supervisor.from_settings(
        settings, store, clock=clock, install_signal_handlers=False
    )
    # Several supervisors share one store in these tests
    supervisor.store = MagicMock(close=AsyncMock())
    return supervisor


async def marked(store) -> set[str]:
    return {identity async for identity in store.list_candidates_by_marker(KEY, "true")}


async def leader_field(store, settings) -> str:
    fields, _ = await store.get_record(settings.status_record)
    return fields[settings.status_field]


class TestLeadershipHandlers:
    """Tests for the transition side effects."""

    async def test_became_leader_order(self, store, make_settings, clock) -> None:
        """Marker, cleanup and publish complete before periodic reconciliation starts."""
        supervisor = make_supervisor(store, make_settings, clock)
        calls: list[str] = []

        reconciler = MagicMock()
        reconciler.mark = AsyncMock(side_effect=lambda identity: calls.append("mark"))
        reconciler.reconcile = AsyncMock(side_effect=lambda holder: calls.append("reconcile"))
        reconciler.unmark = AsyncMock(return_value=True)

        async def periodic() -> None:
            calls.append("periodic")
            await asyncio.Event().wait()

        reconciler.run_periodic = periodic
        publisher = MagicMock()
        publisher.publish = AsyncMock(side_effect=lambda identity: calls.append("publish"))
        supervisor.reconciler = reconciler
        supervisor.publisher = publisher

        event = LeadershipEvent(EventKind.BECAME_LEADER, "pod-a", 1)
        await supervisor._on_became_leader(event)
        await asyncio.sleep(0)

        assert calls == ["mark", "reconcile", "publish", "periodic"]
        reconciler.reconcile.assert_awaited_once_with("pod-a")
        publisher.publish.assert_awaited_once_with("pod-a")
        assert supervisor.reconciling

        await supervisor._on_lost_leadership(
            LeadershipEvent(EventKind.LOST_LEADERSHIP, "pod-a", 1)
        )
        assert not supervisor.reconciling
        publisher.publish.assert_awaited_with("")

    async def test_lost_leadership_stops_reconciling_first(
        self, store, make_settings, clock
    ) -> None:
        """Periodic reconciliation is gone before the marker is cleared."""
        supervisor = make_supervisor(store, make_settings, clock)
        await supervisor._on_became_leader(LeadershipEvent(EventKind.BECAME_LEADER, "pod-a", 1))
        assert supervisor.reconciling

        seen: list[bool] = []
        real_unmark = supervisor.reconciler.unmark

        async def unmark(identity: str) -> bool:
            seen.append(supervisor.reconciling)
            return await real_unmark(identity)

        supervisor.reconciler.unmark = unmark  # type: ignore[method-assign]

        await supervisor._on_lost_leadership(
            LeadershipEvent(EventKind.LOST_LEADERSHIP, "pod-a", 1)
        )

        assert seen == [False]
        assert store.markers_of("pod-a") == {}


class TestSupervisorLifecycle:
    """Tests for running the full election with side effects."""

    async def test_leader_marks_itself_and_publishes(
        self, store, make_settings, clock, wait_until
    ) -> None:
        """Status record is created and the leader alone carries the marker."""
        settings = make_settings()
        await store.set_candidate_marker("crashed-leader", KEY, "true")
        supervisor = make_supervisor(store, make_settings, clock)

        await supervisor.start()
        assert await supervisor.engine.wait_for_leadership(timeout=1.0)
        await wait_until(lambda: supervisor.reconciling)

        assert await marked(store) == {"pod-a"}
        assert await leader_field(store, settings) == "pod-a"

        await supervisor.stop()

    async def test_stop_releases_and_clears(self, store, make_settings, clock, wait_until) -> None:
        """Shutdown releases the lease, clears the marker and the published leader."""
        settings = make_settings()
        supervisor = make_supervisor(store, make_settings, clock)

        await supervisor.start()
        assert await supervisor.engine.wait_for_leadership(timeout=1.0)
        await wait_until(lambda: supervisor.reconciling)

        await supervisor.stop()

        lease, _ = await store.get_lease(settings.election_id)
        assert lease.holder_identity == ""
        assert await marked(store) == set()
        assert await leader_field(store, settings) == ""
        assert not supervisor.reconciling
        supervisor.store.close.assert_awaited_once()

    async def test_single_marker_across_candidates(
        self, store, make_settings, clock, wait_until
    ) -> None:
        """With several candidates exactly one carries the marker and it follows hand-off."""
        settings = make_settings()
        supervisors = [
            make_supervisor(store, make_settings, clock, identity=name)
            for name in ("pod-a", "pod-b", "pod-c")
        ]
        for supervisor in supervisors:
            await supervisor.start()

        await wait_until(lambda: sum(s.engine.is_leader for s in supervisors) == 1)
        leader = next(s for s in supervisors if s.engine.is_leader)
        await wait_until(lambda: leader.reconciling)
        assert await marked(store) == {leader.identity}

        # Leader shuts down; another candidate takes over
        await leader.stop()
        rest = [s for s in supervisors if s is not leader]
        await wait_until(lambda: any(s.engine.is_leader for s in rest))
        successor = next(s for s in rest if s.engine.is_leader)
        await wait_until(lambda: successor.reconciling)

        assert await marked(store) == {successor.identity}
        assert await leader_field(store, settings) == successor.identity
        lease, _ = await store.get_lease(settings.election_id)
        assert lease.leader_transitions == 2

        for supervisor in rest:
            await supervisor.stop()

    async def test_split_marker_repaired_within_period(
        self, store, make_settings, clock, wait_until
    ) -> None:
        """A marker written behind the leader's back is removed by periodic reconciliation."""
        supervisor = make_supervisor(store, make_settings, clock)
        await supervisor.start()
        await wait_until(lambda: supervisor.reconciling)

        await store.set_candidate_marker("pod-z", KEY, "true")

        async def converged() -> bool:
            return await marked(store) == {"pod-a"}

        for _ in range(100):
            if await converged():
                break
            await asyncio.sleep(0.01)
        assert await converged()

        await supervisor.stop()

    async def test_lost_lease_clears_own_marker(
        self, store, make_settings, clock, wait_until
    ) -> None:
        """Losing the lease to another holder clears this candidate's marker."""
        settings = make_settings()
        supervisor = make_supervisor(store, make_settings, clock)
        await supervisor.start()
        await wait_until(lambda: supervisor.reconciling)

        lease, version = await store.get_lease(settings.election_id)
        await store.compare_and_swap_lease(
            settings.election_id,
            lease.acquired_by("pod-b", clock(), settings.lease_duration),
            version,
        )

        await wait_until(lambda: not supervisor.engine.is_leader)
        await wait_until(lambda: not supervisor.reconciling)
        assert store.markers_of("pod-a") == {}
        assert await leader_field(store, settings) == ""

        await supervisor.stop()

    async def test_stop_during_loss_cleanup_completes_it(
        self, store, make_settings, clock, wait_until
    ) -> None:
        """Shutdown arriving while the loss handler clears the marker waits for it."""
        settings = make_settings()
        supervisor = make_supervisor(store, make_settings, clock, reconcile_period=60.0)
        await supervisor.start()
        await wait_until(lambda: supervisor.reconciling)

        real_set = store.set_candidate_marker
        clearing = asyncio.Event()

        async def slow_set(identity: str, key: str, value: str | None) -> None:
            if value is None:
                clearing.set()
                await asyncio.sleep(0.05)
            await real_set(identity, key, value)

        store.set_candidate_marker = slow_set  # type: ignore[method-assign]

        lease, version = await store.get_lease(settings.election_id)
        await store.compare_and_swap_lease(
            settings.election_id,
            lease.acquired_by("pod-b", clock(), settings.lease_duration),
            version,
        )
        await asyncio.wait_for(clearing.wait(), timeout=1.0)

        await supervisor.stop()

        assert store.markers_of("pod-a") == {}
        assert await leader_field(store, settings) == ""

    async def test_run_returns_on_shutdown_signal(self, store, make_settings, clock) -> None:
        """run() stops everything once shutdown is requested."""
        supervisor = make_supervisor(store, make_settings, clock)

        task = asyncio.create_task(supervisor.run())
        assert await supervisor.engine.wait_for_leadership(timeout=1.0)
        supervisor._signal_handler()
        await asyncio.wait_for(task, timeout=1.0)

        assert not supervisor.engine.is_leader
        assert not supervisor.reconciling

    async def test_context_manager(self, store, make_settings, clock) -> None:
        """async with starts and stops the supervisor."""
        async with make_supervisor(store, make_settings, clock) as supervisor:
            assert await supervisor.engine.wait_for_leadership(timeout=1.0)

        lease, _ = await store.get_lease(make_settings().election_id)
        assert lease.holder_identity == ""


@pytest.mark.parametrize("holder", ["pod-b", ""])
async def test_stale_lease_does_not_block_existing_markers(
    store, make_settings, clock, holder: str, wait_until
) -> None:
    """A new leader replaces whatever markers the previous regime left behind."""
    settings = make_settings()
    if holder:
        stale = Lease(holder_identity=holder, lease_duration_seconds=0.5, renew_time=clock())
        await store.compare_and_swap_lease(settings.election_id, stale, None)
        clock.advance(1)
    await store.set_candidate_marker("pod-b", KEY, "true")

    supervisor = make_supervisor(store, make_settings, clock)
    await supervisor.start()
    await wait_until(lambda: supervisor.reconciling)

    assert await marked(store) == {"pod-a"}

    await supervisor.stop()
