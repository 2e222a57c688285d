"""Apply executor - Idempotently submit one unit's resources."""

import asyncio
import logging
from dataclasses import dataclass, field

from ..cluster.base import ClusterClient
from ..core.exceptions import ClusterError, ImmutableFieldConflict
from ..core.types import ApplyOutcome, ResourceHandle
from ..observability.logging import RunLoggerAdapter
from .models import DeployableUnit, Resource, ResourceApplyResult

logger = logging.getLogger(__name__)


def namespace_manifest(namespace: str) -> Resource:
    """Namespace resource labelled with its own name for policy selectors."""
    return {
        "apiVersion": "v1",
        "kind": "Namespace",
        "metadata": {
            "name": namespace,
            "labels": {"kubernetes.io/metadata.name": namespace},
        },
    }


@dataclass
class UnitApplyResult:
    """Applied-resource identifiers and per-resource outcomes of one unit."""

    unit: str
    results: list[ResourceApplyResult] = field(default_factory=list)
    handles: list[ResourceHandle] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(result.ok for result in self.results)

    @property
    def errors(self) -> list[ResourceApplyResult]:
        return [result for result in self.results if not result.ok]

    @property
    def workloads(self) -> list[ResourceHandle]:
        return [handle for handle in self.handles if handle.is_workload]


class ApplyExecutor:
    """Submit resources with create-or-update semantics.

    Conflicts and cluster errors are recorded per resource and never abort
    sibling resources. Any other exception from the client is recorded as a
    cluster error. The executor never deletes or recreates anything.
    """

    def __init__(
        self,
        cluster: ClusterClient,
        create_namespaces: bool = True,
        run_id: str | None = None,
    ):
        """Initialize executor.

        Args:
            cluster: Cluster client
            create_namespaces: Apply the unit's Namespace before its resources
            run_id: Run id stamped on log records
        """
        self.cluster = cluster
        self.create_namespaces = create_namespaces
        self.log = RunLoggerAdapter(logger, run_id)

    async def apply_unit(
        self, unit: DeployableUnit, resources: list[Resource]
    ) -> UnitApplyResult:
        """Apply every resource of one unit.

        Args:
            unit: Unit definition
            resources: Composed resources of the unit

        Returns:
            Per-resource outcomes and the handles that were applied
        """
        to_apply = list(resources)
        if self.create_namespaces and not any(
            r.get("kind") == "Namespace" and r["metadata"]["name"] == unit.namespace
            for r in to_apply
        ):
            to_apply.insert(0, namespace_manifest(unit.namespace))

        result = UnitApplyResult(unit=unit.name)
        log = self.log.bind(unit=unit.name)

        for resource in to_apply:
            handle = ResourceHandle.from_resource(resource)
            record = ResourceApplyResult(
                resource=str(handle),
                kind=handle.kind,
                name=handle.name,
                namespace=handle.namespace,
            )
            try:
                outcome = await self._submit(resource, handle, log)
            except ImmutableFieldConflict as e:
                log.warning("%s", e)
                record.error = e.to_dict()
            except ClusterError as e:
                log.error("%s", e)
                record.error = e.to_dict()
            except Exception as e:
                log.exception("Unexpected error applying %s", handle)
                record.error = ClusterError("apply", str(handle), cause=e).to_dict()
            else:
                record.action = outcome.action
                result.handles.append(outcome.handle)
                log.info("%s %s", handle, outcome.action)
            result.results.append(record)

        return result

    async def _submit(
        self, resource: Resource, handle: ResourceHandle, log: RunLoggerAdapter
    ) -> ApplyOutcome:
        """Apply one resource; a cancelled run waits for it to finish first."""
        task = asyncio.ensure_future(self.cluster.apply(resource))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                log.warning("Cancelled; finishing submission of %s first", handle)
                await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                log.error("Submission of %s failed: %s", handle, task.exception())
            raise
