"""Cluster client backed by the kubectl (or OpenShift oc) CLI."""

import asyncio
import json
import logging
import math
import re
import shlex
import shutil
import time
from typing import Any

from ..core.exceptions import ClusterError, ConfigurationError, ImmutableFieldConflict
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

_IMMUTABLE = re.compile(
    r"field is immutable|Forbidden: updates to \w+ spec for fields other than"
)
_IMMUTABLE_FIELD = re.compile(r"([\w.\[\]]+): Invalid value: .*?field is immutable")
_APPLY_ACTION = re.compile(r"\s(created|configured|unchanged)\b")

# Exit codes of the in-pod probe script
DNS_FAILURE_EXIT = 3
CONNECT_FAILURE_EXIT = 4


def detect_cli() -> str:
    """Find the cluster CLI, preferring OpenShift's oc over kubectl.

    Raises:
        ConfigurationError: If neither is on PATH
    """
    for binary in ("oc", "kubectl"):
        if shutil.which(binary):
            logger.info("Using cluster CLI: %s", binary)
            return binary
    raise ConfigurationError("Neither 'oc' nor 'kubectl' found. Please install one.")


class KubectlClient(ClusterClient):
    """Issue cluster operations through kubectl/oc subprocesses."""

    def __init__(
        self,
        binary: str | None = None,
        context: str | None = None,
        request_timeout: float = 60.0,
    ):
        """Initialize client.

        Args:
            binary: kubectl or oc executable; auto-detected when None
            context: kubeconfig context to use
            request_timeout: Timeout for each CLI invocation in seconds
        """
        self.binary = binary or detect_cli()
        self.context = context
        self.request_timeout = request_timeout

    async def _run(
        self,
        args: list[str],
        input_data: str | None = None,
        timeout: float | None = None,
    ) -> tuple[int, str, str]:
        """Run the CLI and return (returncode, stdout, stderr)."""
        cmd = [self.binary]
        if self.context:
            cmd += ["--context", self.context]
        cmd += args
        timeout = timeout or self.request_timeout
        logger.debug("Running: %s", shlex.join(cmd))

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ConfigurationError(f"Cluster CLI '{self.binary}' not found") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(input_data.encode() if input_data is not None else None),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ClusterError(args[0], f"timed out after {timeout}s") from e

        # Container logs may hold arbitrary bytes
        return (
            process.returncode or 0,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )

    @staticmethod
    def _parse_json(operation: str, subject: object, output: str) -> dict[str, Any]:
        try:
            parsed = json.loads(output)
        except json.JSONDecodeError as e:
            raise ClusterError(operation, f"{subject}: unparseable output", cause=e) from e
        if not isinstance(parsed, dict):
            raise ClusterError(operation, f"{subject}: expected a JSON object")
        return parsed

    @staticmethod
    def _namespace_args(handle: ResourceHandle) -> list[str]:
        return ["-n", handle.namespace] if handle.namespace else []

    async def check_connection(self) -> str:
        """Verify the CLI can reach a cluster.

        Returns:
            cluster-info output

        Raises:
            ClusterError: If not connected
        """
        rc, out, err = await self._run(["cluster-info"], timeout=30)
        if rc != 0:
            hint = (
                "oc login <cluster-url>"
                if self.binary.endswith("oc")
                else "kubectl config use-context <context-name>"
            )
            raise ClusterError(
                "cluster-info",
                f"Not connected to any cluster ({err.strip()}). Log in first: {hint}",
            )
        return out

    async def apply(self, resource: dict[str, Any]) -> ApplyOutcome:
        handle = ResourceHandle.from_resource(resource)
        rc, out, err = await self._run(
            ["apply", "-f", "-"], input_data=json.dumps(resource)
        )

        if rc != 0:
            message = err.strip() or out.strip()
            if _IMMUTABLE.search(message):
                raise ImmutableFieldConflict(
                    str(handle), message, fields=_IMMUTABLE_FIELD.findall(message)
                )
            raise ClusterError("apply", f"{handle}: {message}")

        match = _APPLY_ACTION.search(out)
        action: ApplyAction = match.group(1) if match else "configured"  # type: ignore[assignment]
        logger.debug("Applied %s (%s)", handle, action)
        return ApplyOutcome(handle=handle, action=action)

    async def get_status(self, handle: ResourceHandle) -> WorkloadStatus | None:
        rc, out, err = await self._run(
            ["get", handle.ref, *self._namespace_args(handle), "-o", "json"]
        )
        if rc != 0:
            if "NotFound" in err or "not found" in err:
                return None
            raise ClusterError("get", f"{handle}: {err.strip()}")

        if not handle.is_workload:
            return WorkloadStatus(desired_replicas=0, ready_replicas=0)

        obj = self._parse_json("get", handle, out)
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}

        if handle.kind == "DaemonSet":
            desired = int(status.get("desiredNumberScheduled", 0))
            ready = int(status.get("numberReady", 0))
        else:
            desired = int(spec.get("replicas", 1))
            ready = int(status.get("readyReplicas", 0))
            if "updatedReplicas" in status:
                ready = min(ready, int(status["updatedReplicas"]))

        generation = obj.get("metadata", {}).get("generation", 0)
        if status.get("observedGeneration", generation) < generation:
            ready = 0  # controller has not seen the latest spec yet

        conditions: list[Condition] = [
            Condition(
                type=c.get("type", ""),
                status=c.get("status", ""),
                reason=c.get("reason", ""),
                message=c.get("message", ""),
            )
            for c in status.get("conditions") or []
        ]
        if ready < desired:
            conditions.extend(await self._pod_conditions(handle, spec))

        return WorkloadStatus(desired, ready, conditions)

    async def _pod_conditions(
        self, handle: ResourceHandle, spec: dict[str, Any]
    ) -> list[Condition]:
        """Fold container waiting reasons of the workload's pods into conditions."""
        labels = (spec.get("selector") or {}).get("matchLabels") or {}
        if not labels:
            return []

        selector = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        rc, out, err = await self._run(
            ["get", "pods", *self._namespace_args(handle), "-l", selector, "-o", "json"]
        )
        if rc != 0:
            logger.debug("Could not list pods for %s: %s", handle, err.strip())
            return []

        conditions: list[Condition] = []
        for pod in self._parse_json("get", handle, out).get("items", []):
            pod_name = pod.get("metadata", {}).get("name", "")
            pod_status = pod.get("status") or {}
            statuses = (pod_status.get("initContainerStatuses") or []) + (
                pod_status.get("containerStatuses") or []
            )
            for container in statuses:
                waiting = (container.get("state") or {}).get("waiting")
                if waiting and waiting.get("reason"):
                    conditions.append(
                        Condition(
                            type="PodWaiting",
                            status="True",
                            reason=waiting["reason"],
                            message=f"{pod_name}/{container.get('name')}: {waiting.get('message', '')}",
                        )
                    )
        return conditions

    async def probe(
        self,
        source: ResourceHandle,
        address: str,
        port: int,
        timeout: float,
    ) -> ProbeResult:
        target = shlex.quote(address)
        wait = max(1, math.ceil(timeout))
        script = (
            f"(getent hosts {target} || nslookup {target}) >/dev/null 2>&1 "
            f"|| exit {DNS_FAILURE_EXIT}; "
            f"nc -z -w {wait} {target} {int(port)} >/dev/null 2>&1 "
            f"|| exit {CONNECT_FAILURE_EXIT}"
        )

        started = time.monotonic()
        rc, _, err = await self._run(
            ["exec", *self._namespace_args(source), source.ref, "--", "sh", "-c", script],
            timeout=timeout + 15,
        )
        latency_ms = (time.monotonic() - started) * 1000

        if rc == 0:
            return ProbeResult(reachable=True, latency_ms=latency_ms, dns_resolved=True)
        if rc == DNS_FAILURE_EXIT:
            return ProbeResult(False, latency_ms, False, f"could not resolve {address}")
        if rc == CONNECT_FAILURE_EXIT:
            return ProbeResult(False, latency_ms, True, f"could not connect to {address}:{port}")
        raise ClusterError("exec", f"{source}: {err.strip() or f'exit code {rc}'}")

    async def get_logs(self, handle: ResourceHandle, tail_lines: int) -> str:
        rc, out, err = await self._run(
            [
                "logs",
                handle.ref,
                *self._namespace_args(handle),
                f"--tail={tail_lines}",
                "--all-containers=true",
            ]
        )
        if rc != 0:
            raise ClusterError("logs", f"{handle}: {err.strip()}")
        return out

    async def get_events(self, namespace: str) -> list[ClusterEvent]:
        rc, out, err = await self._run(
            ["get", "events", "-n", namespace, "-o", "json", "--sort-by=.lastTimestamp"]
        )
        if rc != 0:
            raise ClusterError("events", f"{namespace}: {err.strip()}")

        events: list[ClusterEvent] = []
        for item in self._parse_json("events", namespace, out).get("items", []):
            involved = item.get("involvedObject") or {}
            events.append(
                ClusterEvent(
                    type=item.get("type", ""),
                    reason=item.get("reason", ""),
                    object=f"{involved.get('kind', '').lower()}/{involved.get('name', '')}",
                    message=item.get("message", ""),
                    timestamp=item.get("lastTimestamp") or item.get("eventTime") or "",
                )
            )
        return events

    async def describe(self, handle: ResourceHandle) -> str:
        rc, out, err = await self._run(
            ["describe", handle.ref, *self._namespace_args(handle)]
        )
        if rc != 0:
            raise ClusterError("describe", f"{handle}: {err.strip()}")
        return out
