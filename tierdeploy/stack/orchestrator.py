"""Stack orchestrator - Execute deployment plans layer by layer.

Pre-flight (composition, parameter injection, planning) raises on
structural errors before anything is applied. Everything after that is
recovered into the DeploymentReport.
"""

import asyncio
import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from ..cluster.base import ClusterClient
from ..config import OrchestratorSettings
from ..core.clock import Clock, SystemClock
from ..core.exceptions import ValidationError
from ..core.types import ResourceHandle
from ..observability.logging import RunLoggerAdapter
from .executor import ApplyExecutor, UnitApplyResult
from .models import (
    DeployableUnit,
    DeploymentPlan,
    DeploymentReport,
    RolloutStatus,
    StackDefinition,
    UnitReport,
    UnitState,
)
from .overlay import ComposedStack, compose
from .params import ParameterInjector, ParameterSet
from .prober import ConnectivityProber, EndpointProber
from .reporter import FailureReporter
from .resolver import DependencyScheduler
from .waiter import ReadinessWaiter

logger = logging.getLogger(__name__)


@dataclass
class PreparedStack:
    """Output of pre-flight: everything a run needs, nothing applied yet."""

    stack: StackDefinition
    overlays: list[str]
    params: ParameterSet
    composed: ComposedStack
    plan: DeploymentPlan


def prepare_stack(
    stack: StackDefinition,
    overlays: Iterable[str] = (),
    overrides: Mapping[str, Any] | None = None,
    cluster_domain: str = "cluster.local",
) -> PreparedStack:
    """Compose, inject and plan without touching the cluster.

    Args:
        stack: Stack definition
        overlays: Overlay names, applied in this order
        overrides: Parameter overrides layered on the stack defaults
        cluster_domain: Cluster DNS domain for service addresses

    Returns:
        Prepared stack

    Raises:
        ValidationError: If an overlay is unknown or a parameter/patch is malformed
        CyclicDependencyError: If the dependency graph has a cycle
    """
    overlay_names = list(overlays)
    selected = []
    for name in overlay_names:
        overlay = stack.get_overlay(name)
        if overlay is None:
            available = ", ".join(o.name for o in stack.overlays) or "none"
            raise ValidationError("overlays", f"unknown overlay '{name}' (available: {available})")
        selected.append(overlay)

    values: dict[str, Any] = dict(stack.parameters)
    values.update(overrides or {})
    params = ParameterSet.from_mapping(values)

    plan = DependencyScheduler(cluster_domain).plan(stack.units, stack.connectivity)
    composed = compose(stack.units, selected)
    composed = ParameterInjector().inject(composed, stack.units, params)

    return PreparedStack(
        stack=stack,
        overlays=overlay_names,
        params=params,
        composed=composed,
        plan=plan,
    )


class StackOrchestrator:
    """Deploy a stack according to its dependency plan."""

    def __init__(
        self,
        cluster: ClusterClient,
        settings: OrchestratorSettings | None = None,
        clock: Clock | None = None,
        endpoint_transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize orchestrator.

        Args:
            cluster: Cluster client
            settings: Orchestrator settings; defaults are read from the environment
            clock: Time source for polling and timestamps
            endpoint_transport: Optional httpx transport for endpoint checks
        """
        self.cluster = cluster
        self.settings = settings or OrchestratorSettings()
        self.clock = clock or SystemClock()
        self.endpoint_transport = endpoint_transport
        self._cancel = asyncio.Event()

    def cancel(self) -> None:
        """Stop the run at the next poll boundary or between units."""
        logger.warning("Cancellation requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def prepare(
        self,
        stack: StackDefinition,
        overlays: Iterable[str] = (),
        overrides: Mapping[str, Any] | None = None,
    ) -> PreparedStack:
        """Pre-flight with this orchestrator's cluster domain; see ``prepare_stack``."""
        return prepare_stack(stack, overlays, overrides, self.settings.cluster_domain)

    async def run(
        self,
        stack: StackDefinition,
        overlays: Iterable[str] = (),
        overrides: Mapping[str, Any] | None = None,
        timeout: float | None = None,
        parallel: bool | None = None,
        check_endpoints: bool | None = None,
    ) -> DeploymentReport:
        """Run a complete orchestration.

        Args:
            stack: Stack definition
            overlays: Overlay names, applied in this order
            overrides: Parameter overrides
            timeout: Per-unit readiness deadline override
            parallel: Deploy the units of one layer concurrently
            check_endpoints: Run HTTP checks against external routes

        Returns:
            Deployment report

        Raises:
            ValidationError: Pre-flight only; nothing has been applied
            CyclicDependencyError: Pre-flight only; nothing has been applied
        """
        prepared = self.prepare(stack, overlays, overrides)
        return await self.execute(
            prepared, timeout=timeout, parallel=parallel, check_endpoints=check_endpoints
        )

    async def execute(
        self,
        prepared: PreparedStack,
        timeout: float | None = None,
        parallel: bool | None = None,
        check_endpoints: bool | None = None,
    ) -> DeploymentReport:
        """Apply a prepared stack and verify it.

        Args:
            prepared: Output of ``prepare``
            timeout: Per-unit readiness deadline override
            parallel: Deploy the units of one layer concurrently
            check_endpoints: Run HTTP checks against external routes

        Returns:
            Deployment report; runtime failures are recorded, never raised
        """
        stack = prepared.stack
        plan = prepared.plan
        rollout = stack.rollout

        timeout = timeout or rollout.timeout or self.settings.rollout_timeout
        if parallel is None:
            parallel = rollout.parallel if rollout.parallel is not None else self.settings.parallel_layers
        if check_endpoints is None:
            check_endpoints = self.settings.check_endpoints

        run_id = uuid.uuid4().hex[:12]
        log = RunLoggerAdapter(logger, run_id)

        executor = ApplyExecutor(self.cluster, self.settings.create_namespaces, run_id=run_id)
        waiter = ReadinessWaiter(
            self.cluster,
            clock=self.clock,
            poll_interval=rollout.poll_interval or self.settings.poll_interval,
            timeout=timeout,
            terminal_reasons=self.settings.get_terminal_reasons(),
            run_id=run_id,
        )

        report = DeploymentReport(
            run_id=run_id,
            stack=stack.stack.name,
            started_at=self.clock.now(),
            overlays=prepared.overlays,
            parameters=prepared.params.as_dict(),
            plan=plan.layers,
        )
        units = {unit.name: unit for unit in stack.units}
        workloads: dict[str, list[ResourceHandle]] = {}

        log.info(
            "Deploying stack %s: %d layers, overlays=%s, %s",
            stack.stack.name,
            len(plan.layers),
            prepared.overlays or "none",
            "parallel" if parallel else "sequential",
        )

        halted = False
        for index, layer in enumerate(plan.layers):
            if halted or self.cancelled:
                report.skipped_units.extend(layer)
                continue

            log.info("Layer %d/%d: %s", index + 1, len(plan.layers), ", ".join(layer))

            if parallel:
                results = await asyncio.gather(
                    *(
                        self._deploy_unit(executor, waiter, units[name], prepared.composed, index, log)
                        for name in layer
                    )
                )
            else:
                results = []
                for position, name in enumerate(layer):
                    if self.cancelled:
                        report.skipped_units.extend(layer[position:])
                        break
                    results.append(
                        await self._deploy_unit(
                            executor, waiter, units[name], prepared.composed, index, log
                        )
                    )

            for unit_report, applied in results:
                report.units[unit_report.name] = unit_report
                workloads[unit_report.name] = applied.workloads
                if unit_report.state != UnitState.READY:
                    halted = True
                    dependents = prepared.plan.dependents.get(unit_report.name) or []
                    if dependents and not self.cancelled:
                        log.warning(
                            "Unit %s is %s; dependents will not be applied: %s",
                            unit_report.name,
                            unit_report.state.value,
                            ", ".join(dependents),
                        )

        all_ready = (
            not report.skipped_units
            and all(u.state == UnitState.READY for u in report.units.values())
        )

        if all_ready and not self.cancelled:
            prober = ConnectivityProber(
                self.cluster,
                self.settings.probe_timeout,
                self.settings.cluster_domain,
                run_id=run_id,
            )
            report.checks = await prober.run(stack.connectivity, units, workloads)

            if check_endpoints and stack.endpoints and all(c.passed for c in report.checks):
                endpoint_prober = EndpointProber(
                    self.settings.endpoint_timeout,
                    transport=self.endpoint_transport,
                    run_id=run_id,
                )
                report.endpoints = await endpoint_prober.run(stack.endpoints, prepared.composed)
        elif halted:
            log.warning("Rollout halted; connectivity checks not run")

        if self.cancelled:
            report.status = "cancelled"
        elif (
            all_ready
            and all(c.passed for c in report.checks)
            and all(e.passed for e in report.endpoints)
        ):
            report.status = "success"
        else:
            report.status = "failed"

        reporter = FailureReporter(
            self.cluster,
            self.settings.log_tail_lines,
            self.settings.event_limit,
            run_id=run_id,
        )
        await reporter.collect(
            report, workloads, {name: unit.namespace for name, unit in units.items()}
        )

        report.finished_at = self.clock.now()
        log.log(logging.INFO if report.succeeded else logging.ERROR, "%s", report.summary())
        return report

    async def _deploy_unit(
        self,
        executor: ApplyExecutor,
        waiter: ReadinessWaiter,
        unit: DeployableUnit,
        composed: ComposedStack,
        layer: int,
        log: RunLoggerAdapter,
    ) -> tuple[UnitReport, UnitApplyResult]:
        """Apply one unit and wait for it.

        Returns:
            Tuple of (UnitReport, apply result)
        """
        log = log.bind(unit=unit.name)
        log.info("Applying to namespace %s", unit.namespace)
        status = RolloutStatus(unit=unit.name)
        applied = UnitApplyResult(unit=unit.name)

        try:
            applied = await executor.apply_unit(unit, composed.get(unit.name, []))
            status.transition(UnitState.PENDING, self.clock.now(), "submitted")

            if not applied.ok:
                reasons = "; ".join(
                    f"{r.resource}: {r.error.get('message', '')}"
                    for r in applied.errors
                    if r.error
                )
                status.transition(UnitState.FAILED, self.clock.now(), reasons)
                log.error("Failed to apply: %s", reasons)
            else:
                await waiter.wait(
                    status,
                    applied.workloads or applied.handles,
                    timeout=unit.timeout,
                    cancel=self._cancel,
                )
        except Exception as e:
            log.exception("Unexpected error deploying unit")
            status.transition(
                UnitState.FAILED, self.clock.now(), f"unexpected error: {type(e).__name__}: {e}"
            )

        error = None
        if status.state in (UnitState.TIMED_OUT, UnitState.FAILED) and status.history:
            error = status.history[-1].reason

        unit_report = UnitReport(
            name=unit.name,
            namespace=unit.namespace,
            layer=layer,
            state=status.state,
            desired_replicas=status.desired_replicas,
            ready_replicas=status.ready_replicas,
            last_transition_time=status.last_transition_time,
            history=status.history,
            resources=applied.results,
            error=error,
        )
        return unit_report, applied
