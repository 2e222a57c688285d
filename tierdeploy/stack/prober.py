"""Connectivity prober - Verify tiers can reach each other after rollout.

A failed probe looks the same whether a NetworkPolicy or DNS is at fault,
so every result also records whether the target name resolved.
"""

import asyncio
import logging
import time

import httpx

from ..cluster.base import ClusterClient
from ..core.exceptions import ClusterError, ConnectivityFailure
from ..core.types import ResourceHandle
from ..observability.logging import RunLoggerAdapter
from .models import (
    CheckResult,
    ConnectivityCheck,
    DeployableUnit,
    EndpointCheck,
    EndpointResult,
)
from .overlay import ComposedStack
from .resolver import service_address

logger = logging.getLogger(__name__)


class ConnectivityProber:
    """Run connectivity checks between units."""

    def __init__(
        self,
        cluster: ClusterClient,
        timeout: float = 5.0,
        cluster_domain: str = "cluster.local",
        run_id: str | None = None,
    ):
        """Initialize prober.

        Args:
            cluster: Cluster client
            timeout: Default per-check timeout in seconds
            cluster_domain: Cluster DNS domain
            run_id: Run id stamped on log records
        """
        self.cluster = cluster
        self.timeout = timeout
        self.cluster_domain = cluster_domain
        self.log = RunLoggerAdapter(logger, run_id)

    async def run(
        self,
        checks: list[ConnectivityCheck],
        units: dict[str, DeployableUnit],
        workloads: dict[str, list[ResourceHandle]],
    ) -> list[CheckResult]:
        """Evaluate every check once; one failure never aborts the others.

        Args:
            checks: Declared connectivity checks
            units: Unit definitions by name
            workloads: Applied workload handles by unit name

        Returns:
            Results in declaration order
        """
        return list(
            await asyncio.gather(
                *(self._run_check(check, units, workloads) for check in checks)
            )
        )

    async def _run_check(
        self,
        check: ConnectivityCheck,
        units: dict[str, DeployableUnit],
        workloads: dict[str, list[ResourceHandle]],
    ) -> CheckResult:
        target = units[check.target]
        address = service_address(
            check.service or target.name, target.namespace, self.cluster_domain
        )
        base = {
            "source": check.source,
            "target": check.target,
            "port": check.port,
            "address": address,
            "expect": check.expect,
        }
        log = self.log.bind(check=check.id)

        sources = workloads.get(check.source) or []
        if not sources:
            failure = ConnectivityFailure(check.id, f"unit '{check.source}' has no workload to probe from")
            log.error("%s", failure)
            return CheckResult(**base, passed=False, diagnosis="probe_error", error=failure.to_dict())

        try:
            probe = await self.cluster.probe(
                sources[0], address, check.port, check.timeout or self.timeout
            )
        except Exception as e:
            failure = ConnectivityFailure(check.id, "probe could not run", cause=e)
            if isinstance(e, ClusterError):
                log.error("%s", failure)
            else:
                log.exception("%s", failure)
            return CheckResult(**base, passed=False, diagnosis="probe_error", error=failure.to_dict())

        if check.expect == "reachable":
            passed = probe.reachable
            if passed:
                diagnosis = "ok"
            elif not probe.dns_resolved:
                diagnosis = "dns_failure"
            else:
                diagnosis = "unreachable"
        else:
            passed = probe.dns_resolved and not probe.reachable
            if passed:
                diagnosis = "ok"
            elif probe.reachable:
                diagnosis = "unexpectedly_reachable"
            else:
                diagnosis = "dns_failure"

        error = None
        if passed:
            log.info("Passed (%.1f ms)", probe.latency_ms)
        else:
            failure = ConnectivityFailure(check.id, probe.detail or diagnosis)
            error = failure.to_dict()
            log.error("%s", failure)

        return CheckResult(
            **base,
            passed=passed,
            reachable=probe.reachable,
            dns_resolved=probe.dns_resolved,
            latency_ms=probe.latency_ms,
            diagnosis=diagnosis,
            error=error,
        )


def route_host(composed: ComposedStack, route: str) -> str | None:
    """Host of the Route or Ingress named ``route`` in a composed stack."""
    for resources in composed.values():
        for resource in resources:
            if resource.get("metadata", {}).get("name") != route:
                continue
            spec = resource.get("spec") or {}
            if resource.get("kind") == "Route" and spec.get("host"):
                return spec["host"]
            if resource.get("kind") == "Ingress":
                for rule in spec.get("rules") or []:
                    if rule.get("host"):
                        return rule["host"]
    return None


class EndpointProber:
    """HTTP smoke checks against external route hosts."""

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        run_id: str | None = None,
    ):
        """Initialize endpoint prober.

        Args:
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
            run_id: Run id stamped on log records
        """
        self.timeout = timeout
        self.transport = transport
        self.log = RunLoggerAdapter(logger, run_id)

    async def run(
        self, endpoints: list[EndpointCheck], composed: ComposedStack
    ) -> list[EndpointResult]:
        """Issue one GET per endpoint check.

        Args:
            endpoints: Declared endpoint checks
            composed: Injected stack providing route hosts

        Returns:
            Results in declaration order
        """
        results: list[EndpointResult] = []

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        ) as client:
            for endpoint in endpoints:
                log = self.log.bind(check=f"endpoint:{endpoint.name}")
                host = route_host(composed, endpoint.route)
                if not host:
                    results.append(
                        EndpointResult(
                            name=endpoint.name,
                            passed=False,
                            error=f"route '{endpoint.route}' has no host",
                        )
                    )
                    continue

                url = f"{endpoint.scheme}://{host}{endpoint.path}"
                started = time.monotonic()
                try:
                    response = await client.get(url)
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    log.error("GET %s failed: %s", url, e)
                    results.append(
                        EndpointResult(name=endpoint.name, url=url, passed=False, error=str(e))
                    )
                    continue

                passed = response.status_code == endpoint.expect_status
                results.append(
                    EndpointResult(
                        name=endpoint.name,
                        url=url,
                        passed=passed,
                        status_code=response.status_code,
                        latency_ms=(time.monotonic() - started) * 1000,
                        error=None if passed else f"HTTP {response.status_code}",
                    )
                )
                log.info("GET %s: HTTP %d", url, response.status_code)

        return results
