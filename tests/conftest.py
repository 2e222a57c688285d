"""Shared pytest fixtures for the test suite.

Provides a fake clock, an in-memory cluster and small stack builders so
orchestration runs execute instantly and deterministically.
"""

import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from tierdeploy.cluster import InMemoryCluster
from tierdeploy.config import OrchestratorSettings
from tierdeploy.stack.models import (
    ConnectivityCheck,
    DeployableUnit,
    Overlay,
    PatchOperation,
    ResourceSelector,
    StackDefinition,
    StackMetadata,
)


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.time = start
        self.epoch = datetime(2024, 1, 1, tzinfo=UTC)
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.time

    def now(self) -> datetime:
        return self.epoch + timedelta(seconds=self.time)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.time += seconds
        await asyncio.sleep(0)


def workload_manifest(
    name: str,
    replicas: int = 1,
    image: str = "nginx:1.25",
    kind: str = "Deployment",
) -> dict[str, Any]:
    """Minimal workload manifest."""
    spec: dict[str, Any] = {
        "replicas": replicas,
        "selector": {"matchLabels": {"app": name}},
        "template": {
            "metadata": {"labels": {"app": name}},
            "spec": {"containers": [{"name": name, "image": image}]},
        },
    }
    if kind == "StatefulSet":
        spec["serviceName"] = name
    return {
        "apiVersion": "apps/v1",
        "kind": kind,
        "metadata": {"name": name, "labels": {"app": name}},
        "spec": spec,
    }


def service_manifest(name: str, port: int) -> dict[str, Any]:
    """Minimal Service manifest exposing one port."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name},
        "spec": {"selector": {"app": name}, "ports": [{"port": port}]},
    }


def make_unit(
    name: str,
    namespace: str,
    port: int = 8080,
    depends_on: Iterable[str] = (),
    replicas: int = 1,
    image: str | None = None,
    kind: str = "Deployment",
) -> DeployableUnit:
    """Unit with one workload and one Service of the same name."""
    return DeployableUnit(
        name=name,
        namespace=namespace,
        resources=[workload_manifest(name, replicas, kind=kind), service_manifest(name, port)],
        depends_on=list(depends_on),
        image=image,
    )


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at zero."""
    return FakeClock()


@pytest.fixture
def cluster(clock: FakeClock) -> InMemoryCluster:
    """In-memory cluster sharing the fake clock."""
    return InMemoryCluster(clock=clock, strict_namespaces=True)


@pytest.fixture
def settings() -> OrchestratorSettings:
    """Settings with short, explicit timings."""
    return OrchestratorSettings(
        poll_interval=1.0,
        rollout_timeout=30.0,
        probe_timeout=2.0,
        parallel_layers=False,
        create_namespaces=True,
        check_endpoints=False,
    )


@pytest.fixture
def unit_factory():
    """Factory building single-workload units."""
    return make_unit


@pytest.fixture
def three_tier_stack() -> StackDefinition:
    """db <- api <- web, with an autoscaling overlay raising api to 3 replicas."""
    return StackDefinition(
        stack=StackMetadata(name="shop"),
        units=[
            make_unit("db", "shop-data", port=5432, kind="StatefulSet"),
            make_unit("api", "shop-api", port=8080, depends_on=["db"], image="shop/api"),
            make_unit("web", "shop-web", port=80, depends_on=["api"], image="shop/web"),
        ],
        overlays=[
            Overlay(
                name="autoscaling",
                patches=[
                    PatchOperation(
                        target=ResourceSelector(kind="Deployment", name="api"),
                        op="replace",
                        path="/spec/replicas",
                        value=3,
                    )
                ],
            )
        ],
        connectivity=[
            ConnectivityCheck(source="api", target="db", port=5432),
            ConnectivityCheck(source="web", target="api", port=8080),
        ],
    )
