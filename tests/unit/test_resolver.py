"""Tests for DependencyScheduler in tierdeploy/stack/resolver.py.

Tests cover:
- Topological layering with name tie-break
- Cycle and unknown-reference detection
- Namespace grouping and service addresses
"""

import pytest

from tierdeploy.core.exceptions import CyclicDependencyError, ValidationError
from tierdeploy.stack.models import ConnectivityCheck, DeployableUnit
from tierdeploy.stack.resolver import DependencyScheduler, service_address


def unit(name: str, namespace: str = "shop", depends_on: list[str] | None = None) -> DeployableUnit:
    return DeployableUnit(name=name, namespace=namespace, depends_on=depends_on or [])


class TestLayers:
    """Topological layer computation."""

    def test_linear_chain(self) -> None:
        plan = DependencyScheduler().plan(
            [unit("web", depends_on=["api"]), unit("api", depends_on=["db"]), unit("db")]
        )
        assert plan.layers == [["db"], ["api"], ["web"]]
        assert plan.order == ["db", "api", "web"]

    def test_independent_units_share_layer_sorted_by_name(self) -> None:
        plan = DependencyScheduler().plan(
            [unit("redis"), unit("mysql"), unit("backend", depends_on=["redis", "mysql"])]
        )
        assert plan.layers == [["mysql", "redis"], ["backend"]]

    def test_diamond(self) -> None:
        plan = DependencyScheduler().plan(
            [
                unit("d", depends_on=["b", "c"]),
                unit("c", depends_on=["a"]),
                unit("b", depends_on=["a"]),
                unit("a"),
            ]
        )
        assert plan.layers == [["a"], ["b", "c"], ["d"]]
        assert plan.dependents["a"] == ["b", "c"]
        assert plan.dependents["d"] == []

    def test_deterministic_regardless_of_input_order(self) -> None:
        units = [unit("c"), unit("a"), unit("b", depends_on=["a"])]
        first = DependencyScheduler().plan(units)
        second = DependencyScheduler().plan(list(reversed(units)))
        assert first.layers == second.layers == [["a", "c"], ["b"]]

    def test_empty(self) -> None:
        plan = DependencyScheduler().plan([])
        assert plan.layers == []


class TestValidation:
    """Structural errors raised before any apply."""

    def test_two_unit_cycle(self) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            DependencyScheduler().plan([unit("a", depends_on=["b"]), unit("b", depends_on=["a"])])
        assert exc_info.value.cycle == ["a", "b"]

    def test_cycle_reports_blocked_units(self) -> None:
        with pytest.raises(CyclicDependencyError) as exc_info:
            DependencyScheduler().plan(
                [
                    unit("root"),
                    unit("a", depends_on=["root", "c"]),
                    unit("b", depends_on=["a"]),
                    unit("c", depends_on=["b"]),
                ]
            )
        assert exc_info.value.cycle == ["a", "b", "c"]

    def test_self_dependency(self) -> None:
        with pytest.raises(CyclicDependencyError):
            DependencyScheduler().plan([unit("a", depends_on=["a"])])

    def test_unknown_dependency(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            DependencyScheduler().plan([unit("api", depends_on=["db"])])
        assert exc_info.value.field == "units.api.depends_on"

    def test_unknown_check_unit(self) -> None:
        with pytest.raises(ValidationError):
            DependencyScheduler().plan(
                [unit("api")], [ConnectivityCheck(source="web", target="api", port=80)]
            )


class TestAddresses:
    def test_service_address(self) -> None:
        assert service_address("db", "data", "cluster.local") == "db.data.svc.cluster.local"

    def test_namespaces_and_addresses(self) -> None:
        plan = DependencyScheduler(cluster_domain="corp.internal").plan(
            [unit("mysql", "data"), unit("redis", "data"), unit("api", "api", ["mysql"])]
        )
        assert plan.namespaces == {"api": ["api"], "data": ["mysql", "redis"]}
        assert plan.service_addresses["mysql"] == "mysql.data.svc.corp.internal"
