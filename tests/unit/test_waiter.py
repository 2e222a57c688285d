"""Tests for ReadinessWaiter in tierdeploy/stack/waiter.py.

Tests cover:
- Pending -> Progressing -> Ready transitions
- Deadline-bounded timeout with a fake clock
- Terminal condition reasons
- Cancellation and transient poll errors
"""

import asyncio

import pytest

from tierdeploy.cluster import InMemoryCluster
from tierdeploy.core.exceptions import ClusterError
from tierdeploy.core.types import ResourceHandle
from tierdeploy.stack.executor import ApplyExecutor
from tierdeploy.stack.models import RolloutStatus, UnitState
from tierdeploy.stack.overlay import compose
from tierdeploy.stack.waiter import ReadinessWaiter


async def applied_workloads(cluster: InMemoryCluster, unit) -> list[ResourceHandle]:
    result = await ApplyExecutor(cluster).apply_unit(unit, compose([unit])[unit.name])
    return result.workloads


class TestReadinessWaiter:
    """Polling behaviour of the waiter."""

    @pytest.mark.asyncio
    async def test_ready_on_first_poll(self, cluster, clock, unit_factory) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api", replicas=2))
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=10.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles)

        assert status.state == UnitState.READY
        assert [h.state for h in status.history] == [
            UnitState.PENDING,
            UnitState.PROGRESSING,
            UnitState.READY,
        ]
        assert (status.ready_replicas, status.desired_replicas) == (2, 2)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_slow_rollout_polls_until_ready(self, cluster, clock, unit_factory) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api"))
        cluster.script("api", ready_after=3)
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=2.0, timeout=60.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles)

        assert status.state == UnitState.READY
        assert clock.sleeps == [2.0, 2.0, 2.0]

    @pytest.mark.asyncio
    async def test_times_out_at_deadline(self, cluster, clock, unit_factory) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api", replicas=3))
        cluster.script("api", never_ready=True, stuck_at=1)
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=4.0, timeout=10.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles)

        assert status.state == UnitState.TIMED_OUT
        assert clock.time == 10.0
        assert clock.sleeps == [4.0, 4.0, 2.0]
        assert status.history[-1].reason == "1/3 replicas ready after 10s"

    @pytest.mark.asyncio
    async def test_timeout_override(self, cluster, clock, unit_factory) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api"))
        cluster.script("api", never_ready=True)
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=300.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles, timeout=3.0)

        assert status.state == UnitState.TIMED_OUT
        assert clock.time == 3.0

    @pytest.mark.asyncio
    async def test_terminal_reason_fails_without_waiting_out_deadline(
        self, cluster, clock, unit_factory
    ) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api"))
        cluster.script("api", ready_after=5, fail_reason="CrashLoopBackOff", fail_after=1)
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=300.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles)

        assert status.state == UnitState.FAILED
        assert status.history[-1].reason.startswith("CrashLoopBackOff")
        assert clock.time == 1.0

    @pytest.mark.asyncio
    async def test_unknown_reason_is_not_terminal(self, cluster, clock, unit_factory) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api"))
        cluster.script("api", fail_reason="ContainerCreating")
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=2.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles)

        assert status.state == UnitState.TIMED_OUT

    @pytest.mark.asyncio
    async def test_cancel_stops_at_poll_boundary(self, cluster, clock, unit_factory) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api"))
        cluster.script("api", never_ready=True)
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=300.0)
        cancel = asyncio.Event()
        cancel.set()

        status = await waiter.wait(RolloutStatus(unit="api"), handles, cancel=cancel)

        assert status.state == UnitState.PENDING
        assert not status.state.is_terminal

    @pytest.mark.asyncio
    async def test_missing_resource_stays_pending(self, cluster, clock) -> None:
        handle = ResourceHandle("Deployment", "ghost", "shop-api")
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=2.0)

        status = await waiter.wait(RolloutStatus(unit="ghost"), [handle])

        assert [h.state for h in status.history] == [UnitState.PENDING, UnitState.TIMED_OUT]

    @pytest.mark.asyncio
    async def test_transient_poll_errors_are_tolerated(self, cluster, clock, unit_factory) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api"))
        real_get_status = cluster.get_status
        calls = {"n": 0}

        async def flaky(handle):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ClusterError("get_status", "connection reset")
            return await real_get_status(handle)

        cluster.get_status = flaky
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=10.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles)

        assert status.state == UnitState.READY
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_persistent_poll_error_reported_on_timeout(
        self, cluster, clock, unit_factory
    ) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api"))

        async def broken(handle):
            raise ClusterError("get_status", "forbidden")

        cluster.get_status = broken
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=2.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles)

        assert status.state == UnitState.TIMED_OUT
        assert "forbidden" in status.history[-1].reason

    @pytest.mark.asyncio
    async def test_unexpected_poll_error_treated_as_transient(
        self, cluster, clock, unit_factory
    ) -> None:
        handles = await applied_workloads(cluster, unit_factory("api", "shop-api"))

        async def garbled(handle):
            raise ValueError("Expecting value: line 1 column 1 (char 0)")

        cluster.get_status = garbled
        waiter = ReadinessWaiter(cluster, clock=clock, poll_interval=1.0, timeout=2.0)

        status = await waiter.wait(RolloutStatus(unit="api"), handles)

        assert status.state == UnitState.TIMED_OUT
        assert "ValueError: Expecting value" in status.history[-1].reason
        assert clock.sleeps == [1.0, 1.0]
