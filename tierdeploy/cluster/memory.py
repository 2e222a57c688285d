"""In-memory cluster simulator.

Deterministic stand-in for a real control plane. It backs ``deploy
--simulate`` and the test suite. It models idempotent apply,
immutable-field conflicts, scripted rollouts, service DNS and a subset of
NetworkPolicy ingress rules.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any

import yaml

from ..core.clock import Clock, SystemClock
from ..core.exceptions import ClusterError, ImmutableFieldConflict
from ..core.types import (
    ApplyAction,
    ApplyOutcome,
    ClusterEvent,
    Condition,
    ProbeResult,
    ResourceHandle,
    WorkloadStatus,
)
from .base import ClusterClient

logger = logging.getLogger(__name__)

IMMUTABLE_PATHS: dict[str, tuple[str, ...]] = {
    "Deployment": ("/spec/selector",),
    "StatefulSet": (
        "/spec/selector",
        "/spec/serviceName",
        "/spec/volumeClaimTemplates",
        "/spec/podManagementPolicy",
    ),
    "DaemonSet": ("/spec/selector",),
    "Service": ("/spec/clusterIP",),
    "PersistentVolumeClaim": ("/spec/storageClassName", "/spec/accessModes"),
}

_MISSING = object()


def _lookup(doc: Any, path: str) -> Any:
    node = doc
    for token in path.split("/")[1:]:
        if isinstance(node, dict) and token in node:
            node = node[token]
        elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
            node = node[int(token)]
        else:
            return _MISSING
    return node


@dataclass
class RolloutScript:
    """How a workload behaves after it is applied.

    Attributes:
        ready_after: Status polls before all replicas report ready.
        never_ready: Ready replicas never reach the desired count.
        stuck_at: Ready replica count reported while not ready.
        fail_reason: Terminal condition reason to report.
        fail_after: Status polls before ``fail_reason`` is reported.
    """

    ready_after: int = 0
    never_ready: bool = False
    stuck_at: int = 0
    fail_reason: str | None = None
    fail_after: int = 0


@dataclass
class _StoredResource:
    resource: dict[str, Any]
    polls: int = 0


@dataclass
class ApplyRecord:
    """One entry in the apply log."""

    sequence: int
    handle: ResourceHandle
    action: ApplyAction
    at: Any = None


class InMemoryCluster(ClusterClient):
    """Simulated cluster holding resources in memory."""

    def __init__(
        self,
        cluster_domain: str = "cluster.local",
        clock: Clock | None = None,
        strict_namespaces: bool = False,
        daemonset_nodes: int = 1,
    ):
        """Initialize simulator.

        Args:
            cluster_domain: DNS domain used to parse service addresses
            clock: Clock used to timestamp applies and events
            strict_namespaces: Reject resources whose namespace was not applied
            daemonset_nodes: Desired pod count reported for DaemonSets
        """
        self.cluster_domain = cluster_domain
        self.clock = clock or SystemClock()
        self.strict_namespaces = strict_namespaces
        self.daemonset_nodes = daemonset_nodes

        self.resources: dict[ResourceHandle, _StoredResource] = {}
        self.scripts: dict[str, RolloutScript] = {}
        self.apply_log: list[ApplyRecord] = []
        self.blocked: set[tuple[str, str]] = set()
        self.apply_failures: dict[str, str] = {}
        self.probe_failures: dict[str, str] = {}
        self.logs: dict[str, str] = {}
        self._events: dict[str, list[ClusterEvent]] = {}

    # ------------------------------------------------------------------
    # Scripting helpers
    # ------------------------------------------------------------------

    def script(self, name: str, **kwargs: Any) -> RolloutScript:
        """Script the rollout of every workload called ``name``."""
        self.scripts[name] = RolloutScript(**kwargs)
        return self.scripts[name]

    def block(self, source_namespace: str, target_namespace: str) -> None:
        """Drop traffic from one namespace to another."""
        self.blocked.add((source_namespace, target_namespace))

    def fail_apply(self, name: str, message: str) -> None:
        """Reject every apply of resources called ``name``."""
        self.apply_failures[name] = message

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        """Return a copy of a stored resource."""
        for handle, stored in self.resources.items():
            if handle.kind == kind and handle.name == name and (
                namespace is None or handle.namespace == namespace
            ):
                return copy.deepcopy(stored.resource)
        return None

    def _record_event(self, namespace: str | None, event: ClusterEvent) -> None:
        if namespace:
            event.setdefault("timestamp", self.clock.now().isoformat())
            self._events.setdefault(namespace, []).append(event)

    # ------------------------------------------------------------------
    # ClusterClient
    # ------------------------------------------------------------------

    async def apply(self, resource: dict[str, Any]) -> ApplyOutcome:
        handle = ResourceHandle.from_resource(resource)

        if handle.name in self.apply_failures:
            raise ClusterError("apply", f"{handle}: {self.apply_failures[handle.name]}")

        if (
            self.strict_namespaces
            and handle.namespace
            and ResourceHandle("Namespace", handle.namespace) not in self.resources
        ):
            raise ClusterError("apply", f'namespaces "{handle.namespace}" not found')

        key = ResourceHandle(handle.kind, handle.name, handle.namespace)
        stored = self.resources.get(key)
        desired = copy.deepcopy(resource)

        if stored is None:
            action: ApplyAction = "created"
            self.resources[key] = _StoredResource(resource=desired)
        elif stored.resource == desired:
            action = "unchanged"
        else:
            changed = [
                path
                for path in IMMUTABLE_PATHS.get(handle.kind, ())
                if _lookup(stored.resource, path) != _lookup(desired, path)
            ]
            if changed:
                raise ImmutableFieldConflict(
                    str(handle),
                    f"field is immutable: {', '.join(changed)}",
                    fields=changed,
                )
            action = "configured"
            self.resources[key] = _StoredResource(resource=desired)

        self.apply_log.append(
            ApplyRecord(len(self.apply_log), key, action, self.clock.now())
        )
        if action != "unchanged":
            self._record_event(
                handle.namespace,
                ClusterEvent(
                    type="Normal",
                    reason="Created" if action == "created" else "Updated",
                    object=key.ref,
                    message=f"{key.ref} {action}",
                ),
            )
        logger.debug("Applied %s (%s)", key, action)
        return ApplyOutcome(handle=key, action=action)

    async def get_status(self, handle: ResourceHandle) -> WorkloadStatus | None:
        stored = self.resources.get(ResourceHandle(handle.kind, handle.name, handle.namespace))
        if stored is None:
            return None
        if not handle.is_workload:
            return WorkloadStatus(desired_replicas=0, ready_replicas=0)

        stored.polls += 1
        spec = stored.resource.get("spec") or {}
        if handle.kind == "DaemonSet":
            desired = self.daemonset_nodes
        else:
            desired = int(spec.get("replicas", 1))

        script = self.scripts.get(handle.name, RolloutScript())
        conditions: list[Condition] = []

        if script.fail_reason and stored.polls > script.fail_after:
            conditions.append(
                Condition(
                    type="PodWaiting",
                    status="True",
                    reason=script.fail_reason,
                    message=f"{handle.ref}: container waiting ({script.fail_reason})",
                )
            )
            if stored.polls == script.fail_after + 1:
                self._record_event(
                    handle.namespace,
                    ClusterEvent(
                        type="Warning",
                        reason="BackOff",
                        object=handle.ref,
                        message=f"Back-off restarting failed container ({script.fail_reason})",
                    ),
                )
            return WorkloadStatus(desired, min(script.stuck_at, desired), conditions)

        if script.never_ready or stored.polls <= script.ready_after:
            return WorkloadStatus(desired, min(script.stuck_at, desired), conditions)
        return WorkloadStatus(desired, desired, conditions)

    def _parse_address(self, address: str) -> tuple[str, str] | None:
        suffix = f".svc.{self.cluster_domain}"
        if not address.endswith(suffix):
            return None
        parts = address[: -len(suffix)].split(".")
        if len(parts) != 2:
            return None
        return parts[0], parts[1]

    def _policy_allows(self, source_ns: str, target_ns: str) -> bool:
        """Evaluate namespace-level NetworkPolicy ingress rules."""
        policies = [
            stored.resource
            for handle, stored in self.resources.items()
            if handle.kind == "NetworkPolicy" and handle.namespace == target_ns
            and "Ingress" in (stored.resource.get("spec", {}).get("policyTypes") or ["Ingress"])
        ]
        if not policies:
            return True

        for policy in policies:
            for rule in policy.get("spec", {}).get("ingress") or []:
                peers = rule.get("from")
                if not peers:
                    return True
                for peer in peers:
                    selector = peer.get("namespaceSelector")
                    if selector is None:
                        if source_ns == target_ns:
                            return True
                        continue
                    labels = selector.get("matchLabels") or {}
                    if not labels:
                        return True
                    if labels.get("kubernetes.io/metadata.name") == source_ns:
                        return True
        return False

    async def probe(
        self,
        source: ResourceHandle,
        address: str,
        port: int,
        timeout: float,
    ) -> ProbeResult:
        if source.name in self.probe_failures:
            raise ClusterError("probe", self.probe_failures[source.name])
        if ResourceHandle(source.kind, source.name, source.namespace) not in self.resources:
            raise ClusterError("probe", f"no running instance of {source}")

        parsed = self._parse_address(address)
        service = None
        if parsed:
            service = self.get("Service", parsed[0], parsed[1])
        if service is None:
            return ProbeResult(reachable=False, latency_ms=0.2, dns_resolved=False,
                               detail=f"could not resolve {address}")

        target_ns = parsed[1]
        ports = [p.get("port") for p in service.get("spec", {}).get("ports") or []]
        if ports and port not in ports:
            return ProbeResult(False, timeout * 1000, True, f"connection refused on port {port}")
        if (source.namespace, target_ns) in self.blocked or not self._policy_allows(
            source.namespace or "", target_ns
        ):
            return ProbeResult(False, timeout * 1000, True, "connection timed out")
        return ProbeResult(reachable=True, latency_ms=1.0, dns_resolved=True)

    async def get_logs(self, handle: ResourceHandle, tail_lines: int) -> str:
        text = self.logs.get(handle.name, "")
        if tail_lines <= 0:
            return ""
        return "\n".join(text.splitlines()[-tail_lines:])

    async def get_events(self, namespace: str) -> list[ClusterEvent]:
        return list(self._events.get(namespace, []))

    async def describe(self, handle: ResourceHandle) -> str:
        resource = self.get(handle.kind, handle.name, handle.namespace)
        if resource is None:
            raise ClusterError("describe", f"{handle} not found")
        return yaml.safe_dump(resource, sort_keys=False)
