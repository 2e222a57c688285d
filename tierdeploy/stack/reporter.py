"""Failure reporter - Collect diagnostics and attribute failures.

There is no automatic rollback: the reporter only explains what went wrong
so an operator can act on it.
"""

import asyncio
import logging

from ..cluster.base import ClusterClient
from ..core.types import ResourceHandle
from ..observability.logging import RunLoggerAdapter
from .models import (
    CheckResult,
    DeploymentReport,
    Diagnostics,
    Failure,
    UnitReport,
    UnitState,
)

logger = logging.getLogger(__name__)


class FailureReporter:
    """Gather logs, events and descriptions for failed units and checks.

    Collection errors of any kind are recorded in ``Diagnostics.errors``
    and never raised.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        log_tail_lines: int = 50,
        event_limit: int = 20,
        run_id: str | None = None,
    ):
        """Initialize reporter.

        Args:
            cluster: Cluster client
            log_tail_lines: Log lines collected per workload
            event_limit: Most recent namespace events collected
            run_id: Run id stamped on log records
        """
        self.cluster = cluster
        self.log_tail_lines = log_tail_lines
        self.event_limit = event_limit
        self.log = RunLoggerAdapter(logger, run_id)

    async def _collect_logs(self, diagnostics: Diagnostics, handle: ResourceHandle) -> None:
        try:
            diagnostics.logs[str(handle)] = await self.cluster.get_logs(
                handle, self.log_tail_lines
            )
        except Exception as e:
            self.log.warning("Could not collect logs of %s: %s", handle, e)
            diagnostics.errors.append(f"logs {handle}: {e}")

    async def _collect_events(self, diagnostics: Diagnostics, namespace: str) -> None:
        try:
            events = await self.cluster.get_events(namespace)
        except Exception as e:
            self.log.warning("Could not collect events in %s: %s", namespace, e)
            diagnostics.errors.append(f"events {namespace}: {e}")
            return
        if self.event_limit:
            diagnostics.events.extend(dict(event) for event in events[-self.event_limit:])

    async def _collect_description(
        self, diagnostics: Diagnostics, handle: ResourceHandle
    ) -> None:
        try:
            description = await self.cluster.describe(handle)
        except Exception as e:
            self.log.warning("Could not describe %s: %s", handle, e)
            diagnostics.errors.append(f"describe {handle}: {e}")
            return
        if description:
            diagnostics.descriptions[str(handle)] = description

    async def unit_diagnostics(
        self, namespace: str, workloads: list[ResourceHandle]
    ) -> Diagnostics:
        """Diagnostics for a unit that timed out or failed.

        Args:
            namespace: Unit namespace
            workloads: Workloads of the unit

        Returns:
            Logs and descriptions per workload plus namespace events
        """
        diagnostics = Diagnostics()
        for handle in workloads:
            await self._collect_logs(diagnostics, handle)
            await self._collect_description(diagnostics, handle)
        await self._collect_events(diagnostics, namespace)
        return diagnostics

    async def check_diagnostics(
        self,
        source: ResourceHandle | None,
        namespaces: list[str],
    ) -> Diagnostics:
        """Diagnostics for a failed connectivity check.

        Args:
            source: Workload the probe ran from, if any
            namespaces: Source and target namespaces

        Returns:
            Source logs plus events of both namespaces
        """
        diagnostics = Diagnostics()
        if source is not None:
            await self._collect_logs(diagnostics, source)
        for namespace in dict.fromkeys(namespaces):
            await self._collect_events(diagnostics, namespace)
        return diagnostics

    async def collect(
        self,
        report: DeploymentReport,
        workloads: dict[str, list[ResourceHandle]],
        namespaces: dict[str, str],
    ) -> None:
        """Attach diagnostics to failed units and checks, then attribute failures.

        Args:
            report: Report to complete in place
            workloads: Applied workload handles by unit name
            namespaces: Namespace of each unit
        """
        failed_units = [
            u for u in report.units.values()
            if u.state in (UnitState.TIMED_OUT, UnitState.FAILED)
        ]
        failed_checks = [c for c in report.checks if not c.passed]

        unit_results = await asyncio.gather(
            *(
                self.unit_diagnostics(u.namespace, workloads.get(u.name, []))
                for u in failed_units
            )
        )
        for unit, diagnostics in zip(failed_units, unit_results):
            unit.diagnostics = diagnostics

        check_results = await asyncio.gather(
            *(
                self.check_diagnostics(
                    next(iter(workloads.get(c.source) or []), None),
                    [namespaces[c.source], namespaces[c.target]],
                )
                for c in failed_checks
            )
        )
        for check, diagnostics in zip(failed_checks, check_results):
            check.diagnostics = diagnostics

        report.failures = self.attribute(report)
        if report.failures:
            self.log.info("Attributed %d failures", len(report.failures))

    def attribute(self, report: DeploymentReport) -> list[Failure]:
        """Attribute every failure in ``report`` to a unit, resource or check."""
        failures: list[Failure] = []

        for unit in report.units.values():
            failures.extend(self._resource_failures(unit))
            if unit.state == UnitState.TIMED_OUT:
                failures.append(
                    Failure(subject=f"unit:{unit.name}", code="TIMED_OUT",
                            message=unit.error or "readiness deadline exceeded")
                )
            elif unit.state == UnitState.FAILED:
                failures.append(
                    Failure(subject=f"unit:{unit.name}", code="FAILED",
                            message=unit.error or "unit failed")
                )

        for check in report.checks:
            if not check.passed:
                failures.append(self._check_failure(check))

        for endpoint in report.endpoints:
            if not endpoint.passed:
                failures.append(
                    Failure(subject=f"endpoint:{endpoint.name}", code="ENDPOINT",
                            message=endpoint.error or "endpoint check failed")
                )

        return failures

    def _resource_failures(self, unit: UnitReport) -> list[Failure]:
        return [
            Failure(
                subject=f"resource:{result.resource}",
                code=result.error.get("error", "CLUSTER_ERROR"),
                message=result.error.get("message", ""),
            )
            for result in unit.resources
            if result.error is not None
        ]

    def _check_failure(self, check: CheckResult) -> Failure:
        if check.error:
            message = check.error.get("message", check.diagnosis)
        else:
            message = check.diagnosis
        return Failure(subject=f"check:{check.id}", code="CONNECTIVITY", message=message)
