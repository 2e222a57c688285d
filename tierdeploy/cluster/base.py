"""Cluster client interface consumed by the orchestrator."""

from abc import ABC, abstractmethod
from typing import Any

from ..core.types import (
    ApplyOutcome,
    ClusterEvent,
    ProbeResult,
    ResourceHandle,
    WorkloadStatus,
)


class ClusterClient(ABC):
    """Base class for cluster API clients."""

    @abstractmethod
    async def apply(self, resource: dict[str, Any]) -> ApplyOutcome:
        """Idempotently create or update a resource.

        Args:
            resource: Resource manifest

        Returns:
            Handle of the applied resource and the action taken

        Raises:
            ImmutableFieldConflict: If an immutable field would change
            ClusterError: If the cluster rejects the request
        """

    @abstractmethod
    async def get_status(self, handle: ResourceHandle) -> WorkloadStatus | None:
        """Get rollout status of a resource.

        Args:
            handle: Resource handle

        Returns:
            Observed status, or None if the resource does not exist yet
        """

    @abstractmethod
    async def probe(
        self,
        source: ResourceHandle,
        address: str,
        port: int,
        timeout: float,
    ) -> ProbeResult:
        """Probe ``address:port`` from an instance of ``source``.

        Args:
            source: Workload to run the probe from
            address: Target service address
            port: Target port
            timeout: Probe timeout in seconds

        Returns:
            Reachability, latency and DNS resolution
        """

    @abstractmethod
    async def get_logs(self, handle: ResourceHandle, tail_lines: int) -> str:
        """Get the last ``tail_lines`` log lines of a workload."""

    @abstractmethod
    async def get_events(self, namespace: str) -> list[ClusterEvent]:
        """Get recent events in a namespace, oldest first."""

    async def describe(self, handle: ResourceHandle) -> str:
        """Human-readable description of a resource.

        Clients without a describe facility return an empty string.
        """
        return ""
