"""Dependency scheduler - Generate deployment plans from unit dependencies."""

import logging
from collections.abc import Iterable

from ..core.exceptions import CyclicDependencyError, ValidationError
from .models import ConnectivityCheck, DeployableUnit, DeploymentPlan

logger = logging.getLogger(__name__)


def service_address(service: str, namespace: str, cluster_domain: str) -> str:
    """In-cluster DNS name of a service."""
    return f"{service}.{namespace}.svc.{cluster_domain}"


class DependencyScheduler:
    """Order units into topological layers."""

    def __init__(self, cluster_domain: str = "cluster.local"):
        """Initialize scheduler.

        Args:
            cluster_domain: Cluster DNS domain used for service addresses
        """
        self.cluster_domain = cluster_domain

    def plan(
        self,
        units: Iterable[DeployableUnit],
        checks: Iterable[ConnectivityCheck] = (),
    ) -> DeploymentPlan:
        """Generate deployment plan from unit dependencies.

        Args:
            units: Unit definitions
            checks: Connectivity checks whose unit references are validated

        Returns:
            Deployment plan with layers, namespaces and service addresses

        Raises:
            ValidationError: If a dependency or check names an unknown unit
            CyclicDependencyError: If the dependency graph has a cycle
        """
        units = list(units)
        by_name = {unit.name: unit for unit in units}

        # 1. Validate references
        self._validate_references(units, by_name, checks)

        # 2. Topological layers
        layers, dependents = self._resolve_layers(units)

        # 3. Namespaces and addresses
        namespaces: dict[str, list[str]] = {}
        for unit in sorted(units, key=lambda u: u.name):
            namespaces.setdefault(unit.namespace, []).append(unit.name)

        plan = DeploymentPlan(
            layers=layers,
            namespaces=namespaces,
            service_addresses=self._resolve_addresses(units),
            dependents=dependents,
        )
        logger.info(
            "Planned %d units in %d layers: %s",
            len(units),
            len(layers),
            " -> ".join("[" + ", ".join(layer) + "]" for layer in layers),
        )
        return plan

    def _validate_references(
        self,
        units: list[DeployableUnit],
        by_name: dict[str, DeployableUnit],
        checks: Iterable[ConnectivityCheck],
    ) -> None:
        for unit in units:
            for dependency in unit.depends_on:
                if dependency == unit.name:
                    raise CyclicDependencyError([unit.name])
                if dependency not in by_name:
                    raise ValidationError(
                        f"units.{unit.name}.depends_on",
                        f"unknown unit '{dependency}'",
                    )

        for check in checks:
            for role, name in (("source", check.source), ("target", check.target)):
                if name not in by_name:
                    raise ValidationError(
                        f"connectivity.{check.id}.{role}", f"unknown unit '{name}'"
                    )

    def _resolve_layers(
        self, units: list[DeployableUnit]
    ) -> tuple[list[list[str]], dict[str, list[str]]]:
        """Kahn's algorithm with layer numbers and name-ordered tie-break.

        Returns:
            Tuple of (layers, dependents adjacency map)
        """
        # Build adjacency map (dependency -> dependents) and in-degree count
        dependents: dict[str, list[str]] = {unit.name: [] for unit in units}
        in_degree: dict[str, int] = {unit.name: 0 for unit in units}

        for unit in units:
            for dependency in unit.depends_on:
                dependents[dependency].append(unit.name)
                in_degree[unit.name] += 1

        for name in dependents:
            dependents[name].sort()

        layers: list[list[str]] = []
        current = sorted(name for name, degree in in_degree.items() if degree == 0)
        placed = 0

        while current:
            layers.append(current)
            placed += len(current)
            following: list[str] = []
            for name in current:
                for dependent in dependents[name]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        following.append(dependent)
            current = sorted(following)

        if placed != len(units):
            cycle = sorted(name for name, degree in in_degree.items() if degree > 0)
            raise CyclicDependencyError(cycle)

        return layers, dependents

    def _resolve_addresses(self, units: list[DeployableUnit]) -> dict[str, str]:
        return {
            unit.name: service_address(unit.name, unit.namespace, self.cluster_domain)
            for unit in units
        }
