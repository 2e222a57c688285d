"""Tests for ApplyExecutor in tierdeploy/stack/executor.py."""

import logging

import pytest

from tierdeploy.cluster import InMemoryCluster
from tierdeploy.stack.executor import ApplyExecutor, namespace_manifest
from tierdeploy.stack.overlay import compose


def resources_of(unit) -> list[dict]:
    return compose([unit])[unit.name]


class TestNamespaceManifest:
    def test_labels_namespace_with_its_name(self) -> None:
        manifest = namespace_manifest("shop-data")
        assert manifest["kind"] == "Namespace"
        assert manifest["metadata"]["labels"] == {"kubernetes.io/metadata.name": "shop-data"}


class TestApplyUnit:
    """Applying the resources of one unit."""

    @pytest.mark.asyncio
    async def test_namespace_applied_first(self, cluster: InMemoryCluster, unit_factory) -> None:
        unit = unit_factory("api", "shop-api")
        result = await ApplyExecutor(cluster).apply_unit(unit, resources_of(unit))

        assert result.ok
        assert [r.handle.kind for r in cluster.apply_log] == ["Namespace", "Deployment", "Service"]
        assert [r.action for r in result.results] == ["created", "created", "created"]
        assert [h.kind for h in result.workloads] == ["Deployment"]

    @pytest.mark.asyncio
    async def test_reapply_is_unchanged(self, cluster: InMemoryCluster, unit_factory) -> None:
        unit = unit_factory("api", "shop-api")
        executor = ApplyExecutor(cluster)

        await executor.apply_unit(unit, resources_of(unit))
        second = await executor.apply_unit(unit, resources_of(unit))

        assert {r.action for r in second.results} == {"unchanged"}
        assert len(cluster.resources) == 3

    @pytest.mark.asyncio
    async def test_changed_resource_is_configured(
        self, cluster: InMemoryCluster, unit_factory
    ) -> None:
        executor = ApplyExecutor(cluster)
        unit = unit_factory("api", "shop-api")
        await executor.apply_unit(unit, resources_of(unit))

        scaled = unit_factory("api", "shop-api", replicas=3)
        result = await executor.apply_unit(scaled, resources_of(scaled))

        actions = {r.kind: r.action for r in result.results}
        assert actions == {"Namespace": "unchanged", "Deployment": "configured", "Service": "unchanged"}
        assert cluster.get("Deployment", "api", "shop-api")["spec"]["replicas"] == 3

    @pytest.mark.asyncio
    async def test_without_namespace_creation(self, unit_factory) -> None:
        cluster = InMemoryCluster(strict_namespaces=True)
        unit = unit_factory("api", "shop-api")

        result = await ApplyExecutor(cluster, create_namespaces=False).apply_unit(
            unit, resources_of(unit)
        )

        assert not result.ok
        assert all(r.error["error"] == "CLUSTER_ERROR" for r in result.errors)
        assert result.handles == []

    @pytest.mark.asyncio
    async def test_immutable_conflict_recorded_and_siblings_applied(
        self, cluster: InMemoryCluster, unit_factory
    ) -> None:
        executor = ApplyExecutor(cluster)
        db = unit_factory("db", "shop-data", port=5432, kind="StatefulSet")
        await executor.apply_unit(db, resources_of(db))

        changed = unit_factory("db", "shop-data", port=5433, kind="StatefulSet")
        changed.resources[0]["spec"]["serviceName"] = "db-headless"
        result = await executor.apply_unit(changed, resources_of(changed))

        assert not result.ok
        [error] = result.errors
        assert error.kind == "StatefulSet"
        assert error.error["error"] == "IMMUTABLE_FIELD"
        assert error.error["fields"] == ["/spec/serviceName"]
        # Service after the conflicting StatefulSet still goes through
        service = next(r for r in result.results if r.kind == "Service")
        assert service.action == "configured"
        # Original StatefulSet left untouched
        assert cluster.get("StatefulSet", "db", "shop-data")["spec"]["serviceName"] == "db"

    @pytest.mark.asyncio
    async def test_cluster_error_recorded(self, cluster: InMemoryCluster, unit_factory) -> None:
        cluster.fail_apply("api", "admission webhook denied the request")
        unit = unit_factory("api", "shop-api")

        result = await ApplyExecutor(cluster).apply_unit(unit, resources_of(unit))

        assert [r.kind for r in result.errors] == ["Deployment", "Service"]
        assert "admission webhook" in result.errors[0].error["message"]
        assert [h.kind for h in result.handles] == ["Namespace"]

    @pytest.mark.asyncio
    async def test_unexpected_error_recorded_and_siblings_applied(
        self, cluster: InMemoryCluster, unit_factory
    ) -> None:
        real_apply = cluster.apply

        async def crashing(resource):
            if resource["kind"] == "Deployment":
                raise RuntimeError("connection pool closed")
            return await real_apply(resource)

        cluster.apply = crashing
        unit = unit_factory("api", "shop-api")

        result = await ApplyExecutor(cluster).apply_unit(unit, resources_of(unit))

        [error] = result.errors
        assert error.kind == "Deployment"
        assert error.error["error"] == "CLUSTER_ERROR"
        assert "connection pool closed" in error.error["message"]
        assert [h.kind for h in result.handles] == ["Namespace", "Service"]

    @pytest.mark.asyncio
    async def test_records_carry_run_and_unit(
        self, cluster: InMemoryCluster, unit_factory, caplog
    ) -> None:
        unit = unit_factory("api", "shop-api")

        with caplog.at_level(logging.INFO, logger="tierdeploy.stack.executor"):
            await ApplyExecutor(cluster, run_id="r1").apply_unit(unit, resources_of(unit))

        assert caplog.records
        assert {(r.run_id, r.unit) for r in caplog.records} == {("r1", "api")}
