"""Readiness waiter - Poll rollout status until a unit is ready or gives up.

State machine per unit::

    Pending -> Progressing -> Ready | TimedOut | Failed

Polling is the only blocking operation in a run. It is bounded by a
monotonic deadline rather than a retry count, so slow but progressing
workloads are not cut short.
"""

import asyncio
import logging
from collections.abc import Iterable

from ..cluster.base import ClusterClient
from ..config import DEFAULT_TERMINAL_REASONS
from ..core.clock import Clock, SystemClock
from ..core.exceptions import ClusterError
from ..core.types import ResourceHandle, WorkloadStatus
from ..observability.logging import RunLoggerAdapter
from .models import RolloutStatus, UnitState

logger = logging.getLogger(__name__)


class ReadinessWaiter:
    """Wait for the workloads of one unit to become ready."""

    def __init__(
        self,
        cluster: ClusterClient,
        clock: Clock | None = None,
        poll_interval: float = 2.0,
        timeout: float = 300.0,
        terminal_reasons: Iterable[str] | None = None,
        run_id: str | None = None,
    ):
        """Initialize waiter.

        Args:
            cluster: Cluster client
            clock: Time source; defaults to the system clock
            poll_interval: Seconds between polls
            timeout: Default per-unit deadline in seconds
            terminal_reasons: Condition reasons that fail a unit
            run_id: Run id stamped on log records
        """
        self.cluster = cluster
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.timeout = timeout
        if terminal_reasons is None:
            terminal_reasons = DEFAULT_TERMINAL_REASONS.split(",")
        self.terminal_reasons = frozenset(terminal_reasons)
        self.log = RunLoggerAdapter(logger, run_id)

    def _terminal_reason(self, observed: list[WorkloadStatus]) -> str | None:
        for workload in observed:
            for condition in workload.conditions:
                reason = condition.get("reason")
                if reason in self.terminal_reasons:
                    message = condition.get("message")
                    return f"{reason}: {message}" if message else reason
        return None

    async def wait(
        self,
        status: RolloutStatus,
        handles: list[ResourceHandle],
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> RolloutStatus:
        """Poll until the unit reaches a terminal state.

        Args:
            status: Rollout status of the unit, mutated in place
            handles: Applied resources of the unit
            timeout: Deadline override in seconds
            cancel: Event that stops waiting at the next poll boundary

        Returns:
            The same status object, in a terminal state unless cancelled
        """
        timeout = timeout or self.timeout
        deadline = self.clock.monotonic() + timeout
        last_error: str | None = None
        log = self.log.bind(unit=status.unit)

        if not status.history:
            status.transition(UnitState.PENDING, self.clock.now(), "submitted")

        while True:
            if cancel is not None and cancel.is_set():
                log.warning("Wait cancelled in state %s", status.state.value)
                return status

            try:
                observed = await asyncio.gather(
                    *(self.cluster.get_status(handle) for handle in handles)
                )
            except ClusterError as e:
                last_error = str(e)
                log.warning("Status poll failed: %s", e)
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                log.exception("Status poll raised unexpectedly")
            else:
                last_error = None
                if all(o is not None for o in observed):
                    workloads = [o for o in observed if o is not None]
                    status.transition(
                        UnitState.PROGRESSING, self.clock.now(), "resources acknowledged"
                    )

                    desired = sum(w.desired_replicas for w in workloads)
                    ready = sum(w.ready_replicas for w in workloads)
                    if (desired, ready) != (status.desired_replicas, status.ready_replicas):
                        log.info("%d/%d replicas ready", ready, desired)
                    status.desired_replicas = desired
                    status.ready_replicas = ready

                    failure = self._terminal_reason(workloads)
                    if failure:
                        status.transition(UnitState.FAILED, self.clock.now(), failure)
                        log.error("Failed: %s", failure)
                        return status

                    if all(w.ready_replicas == w.desired_replicas for w in workloads):
                        status.transition(
                            UnitState.READY, self.clock.now(), f"{ready}/{desired} replicas ready"
                        )
                        log.info("Ready")
                        return status

            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                reason = (
                    f"{status.ready_replicas}/{status.desired_replicas} replicas ready "
                    f"after {timeout:g}s"
                )
                if last_error:
                    reason += f" (last error: {last_error})"
                status.transition(UnitState.TIMED_OUT, self.clock.now(), reason)
                log.error("Timed out: %s", reason)
                return status

            await self.clock.sleep(min(self.poll_interval, remaining))
