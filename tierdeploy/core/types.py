"""Types exchanged with the cluster API collaborator.

Provides type safety and documentation for the structured data returned
by cluster clients (kubectl, the in-memory simulator).
"""

from dataclasses import dataclass, field
from typing import Any, Literal, NotRequired, TypedDict

WORKLOAD_KINDS = frozenset({"Deployment", "StatefulSet", "DaemonSet"})


class Condition(TypedDict):
    """Status condition reported for a workload.

    Mirrors the Kubernetes condition shape; pod-level waiting reasons are
    folded in by clients as conditions of type ``PodWaiting``.
    """

    type: str
    status: str
    reason: NotRequired[str]
    message: NotRequired[str]


class ClusterEvent(TypedDict):
    """A namespace event used for failure diagnostics."""

    type: str
    reason: str
    object: str
    message: str
    timestamp: NotRequired[str]


@dataclass(frozen=True)
class ResourceHandle:
    """Identifies one applied resource in the cluster."""

    kind: str
    name: str
    namespace: str | None = None
    api_version: str = "v1"

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> "ResourceHandle":
        metadata = resource.get("metadata") or {}
        return cls(
            kind=resource.get("kind", ""),
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace"),
            api_version=resource.get("apiVersion", "v1"),
        )

    @property
    def is_workload(self) -> bool:
        return self.kind in WORKLOAD_KINDS

    @property
    def ref(self) -> str:
        """kubectl-style reference, e.g. ``deployment/backend``."""
        return f"{self.kind.lower()}/{self.name}"

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.kind}/{self.name}"
        return f"{self.kind}/{self.name}"


ApplyAction = Literal["created", "configured", "unchanged"]


@dataclass
class ApplyOutcome:
    """Result of one idempotent create-or-update."""

    handle: ResourceHandle
    action: ApplyAction


@dataclass
class WorkloadStatus:
    """Observed rollout status of one workload."""

    desired_replicas: int
    ready_replicas: int
    conditions: list[Condition] = field(default_factory=list)


@dataclass
class ProbeResult:
    """Outcome of one synthetic reachability probe."""

    reachable: bool
    latency_ms: float
    dns_resolved: bool
    detail: str | None = None
