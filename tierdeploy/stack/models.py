"""Pydantic models for stack definitions, plans and deployment reports."""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

Resource = dict[str, Any]

_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


# ============================================================================
# Stack Metadata
# ============================================================================

class StackMetadata(BaseModel):
    """Stack metadata and identification."""

    name: str = Field(..., description="Unique stack identifier")
    version: str = Field("0.1.0", description="Semantic version (e.g., '1.0.0')")
    description: str = Field("", description="Human-readable description")
    tags: list[str] = Field(default_factory=list, description="Optional tags")


# ============================================================================
# Overlays
# ============================================================================

class ResourceSelector(BaseModel):
    """Selects resources by kind, name and/or namespace."""

    kind: str | None = Field(None, description="Resource kind, e.g. Deployment")
    name: str | None = Field(None, description="metadata.name")
    namespace: str | None = Field(None, description="metadata.namespace")

    @model_validator(mode="after")
    def require_one_field(self) -> "ResourceSelector":
        if not (self.kind or self.name or self.namespace):
            raise ValueError("Selector needs at least one of kind, name, namespace")
        return self

    def matches(self, resource: Resource) -> bool:
        """Return True if every set field equals the resource's value."""
        metadata = resource.get("metadata") or {}
        if self.kind is not None and resource.get("kind") != self.kind:
            return False
        if self.name is not None and metadata.get("name") != self.name:
            return False
        if self.namespace is not None and metadata.get("namespace") != self.namespace:
            return False
        return True

    def __str__(self) -> str:
        parts = [f"{k}={v}" for k, v in self.model_dump().items() if v is not None]
        return ",".join(parts)


class PatchOperation(BaseModel):
    """A single JSON-pointer patch applied to every selected resource."""

    target: ResourceSelector = Field(..., description="Resources to patch")
    op: Literal["add", "replace", "remove"] = Field(..., description="Patch verb")
    path: str = Field(..., description="JSON pointer, e.g. /spec/replicas")
    value: Any = Field(None, description="Value for add/replace")

    @field_validator("path")
    @classmethod
    def validate_pointer(cls, v: str) -> str:
        """Ensure path is a JSON pointer to a member, not the document root."""
        if not v.startswith("/"):
            raise ValueError(f"Patch path must start with '/': {v!r}")
        return v

    @model_validator(mode="after")
    def require_value(self) -> "PatchOperation":
        if self.op in ("add", "replace") and "value" not in self.model_fields_set:
            raise ValueError(f"'{self.op}' patch on {self.path} requires a value")
        return self


class OverlayResource(BaseModel):
    """An extra resource an overlay contributes to one unit."""

    unit: str = Field(..., description="Unit that receives the resource")
    resource: Resource = Field(..., description="Resource manifest")


class Overlay(BaseModel):
    """Named, ordered list of patches layered onto the base."""

    name: str = Field(..., description="Overlay name, e.g. security")
    description: str = Field("", description="Human-readable description")
    patches: list[PatchOperation] = Field(
        default_factory=list, description="Ordered patch operations"
    )
    resources: list[OverlayResource] = Field(
        default_factory=list, description="Extra resources added to units"
    )


# ============================================================================
# Units and Checks
# ============================================================================

class DeployableUnit(BaseModel):
    """Namespace-scoped group of resources deployed as one dependency node."""

    name: str = Field(..., description="Unit name, e.g. database")
    namespace: str = Field(..., description="Target namespace")
    resources: list[Resource] = Field(
        default_factory=list, description="Ordered resource manifests"
    )
    depends_on: list[str] = Field(
        default_factory=list, description="Units that must be Ready first"
    )
    image: str | None = Field(
        None, description="Image name injected as registry/org/<image>:tag"
    )
    timeout: float | None = Field(
        None, gt=0, description="Readiness deadline override in seconds"
    )

    @field_validator("name", "namespace")
    @classmethod
    def validate_dns_label(cls, v: str) -> str:
        """Ensure unit and namespace names are DNS-1123 labels."""
        if len(v) > 63 or not _DNS_LABEL.match(v):
            raise ValueError(f"'{v}' is not a valid DNS-1123 label")
        return v

    @field_validator("depends_on")
    @classmethod
    def dedupe_dependencies(cls, v: list[str]) -> list[str]:
        return sorted(set(v))

    @field_validator("resources")
    @classmethod
    def validate_resources(cls, v: list[Resource]) -> list[Resource]:
        """Ensure each resource carries a kind and metadata.name."""
        for index, resource in enumerate(v):
            if not isinstance(resource, dict) or not resource.get("kind"):
                raise ValueError(f"Resource {index} has no 'kind'")
            metadata = resource.get("metadata")
            if not isinstance(metadata, dict) or not metadata.get("name"):
                raise ValueError(f"Resource {index} has no 'metadata.name'")
        return v


class ConnectivityCheck(BaseModel):
    """Directed reachability check evaluated once after all units are Ready."""

    source: str = Field(..., description="Unit the probe runs from")
    target: str = Field(..., description="Unit the probe connects to")
    port: int = Field(..., ge=1, le=65535, description="Target port")
    expect: Literal["reachable", "blocked"] = Field(
        "reachable", description="Expected outcome"
    )
    service: str | None = Field(
        None, description="Target service name (defaults to the target unit)"
    )
    timeout: float | None = Field(None, gt=0, description="Probe timeout override")

    @property
    def id(self) -> str:
        return f"{self.source}->{self.target}:{self.port}"


class EndpointCheck(BaseModel):
    """HTTP smoke check against the host of an external route."""

    name: str = Field(..., description="Check name")
    route: str = Field(..., description="Route or Ingress name providing the host")
    path: str = Field("/", description="Request path")
    scheme: Literal["http", "https"] = Field("http", description="URL scheme")
    expect_status: int = Field(200, description="Expected HTTP status")


class RolloutConfig(BaseModel):
    """Per-stack overrides of the orchestrator settings."""

    timeout: float | None = Field(None, gt=0, description="Default unit deadline")
    poll_interval: float | None = Field(None, gt=0, description="Poll interval")
    parallel: bool | None = Field(None, description="Deploy layers concurrently")


# ============================================================================
# Complete Stack Definition
# ============================================================================

class StackDefinition(BaseModel):
    """Complete stack definition."""

    stack: StackMetadata = Field(..., description="Stack metadata")
    units: list[DeployableUnit] = Field(..., description="Deployable units")
    overlays: list[Overlay] = Field(
        default_factory=list, description="Overlay catalogue"
    )
    connectivity: list[ConnectivityCheck] = Field(
        default_factory=list, description="Post-deploy connectivity checks"
    )
    endpoints: list[EndpointCheck] = Field(
        default_factory=list, description="External endpoint checks"
    )
    parameters: dict[str, str | int] = Field(
        default_factory=dict, description="Default parameter values"
    )
    rollout: RolloutConfig = Field(
        default_factory=RolloutConfig, description="Rollout overrides"
    )

    @field_validator("units")
    @classmethod
    def validate_unique_unit_names(cls, v: list[DeployableUnit]) -> list[DeployableUnit]:
        """Ensure unit names are unique."""
        names = [unit.name for unit in v]
        if len(names) != len(set(names)):
            raise ValueError("Unit names must be unique")
        return v

    @field_validator("overlays")
    @classmethod
    def validate_unique_overlay_names(cls, v: list[Overlay]) -> list[Overlay]:
        """Ensure overlay names are unique."""
        names = [overlay.name for overlay in v]
        if len(names) != len(set(names)):
            raise ValueError("Overlay names must be unique")
        return v

    def get_unit(self, name: str) -> DeployableUnit | None:
        """Get unit definition by name."""
        for unit in self.units:
            if unit.name == name:
                return unit
        return None

    def get_unit_names(self) -> set[str]:
        """Get set of all unit names."""
        return {unit.name for unit in self.units}

    def get_overlay(self, name: str) -> Overlay | None:
        """Get overlay from the catalogue by name."""
        for overlay in self.overlays:
            if overlay.name == name:
                return overlay
        return None


# ============================================================================
# Deployment Plan (output of DependencyScheduler)
# ============================================================================

class DeploymentPlan(BaseModel):
    """Execution plan generated by the DependencyScheduler."""

    layers: list[list[str]] = Field(
        ..., description="Topological layers of unit names, in apply order"
    )
    namespaces: dict[str, list[str]] = Field(
        ..., description="Units grouped by target namespace"
    )
    service_addresses: dict[str, str] = Field(
        ..., description="In-cluster service address of each unit"
    )
    dependents: dict[str, list[str]] = Field(
        ..., description="Units that depend on each unit"
    )

    @property
    def order(self) -> list[str]:
        return [unit for layer in self.layers for unit in layer]


# ============================================================================
# Rollout State (owned by one orchestration run)
# ============================================================================

class UnitState(str, Enum):
    """Readiness state of a unit."""

    PENDING = "Pending"
    PROGRESSING = "Progressing"
    READY = "Ready"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UnitState.READY, UnitState.TIMED_OUT, UnitState.FAILED)


class StatusTransition(BaseModel):
    """One entry in a unit's status history."""

    state: UnitState
    at: datetime
    reason: str | None = None


class RolloutStatus(BaseModel):
    """Rollout status of one unit during a run. Never persisted."""

    unit: str
    desired_replicas: int = 0
    ready_replicas: int = 0
    state: UnitState = UnitState.PENDING
    last_transition_time: datetime | None = None
    history: list[StatusTransition] = Field(default_factory=list)

    def transition(
        self, state: UnitState, at: datetime, reason: str | None = None
    ) -> bool:
        """Move to ``state``; returns False when already in it."""
        if self.history and self.state == state:
            return False
        self.state = state
        self.last_transition_time = at
        self.history.append(StatusTransition(state=state, at=at, reason=reason))
        return True


# ============================================================================
# Deployment Report (sole artifact surfaced to the caller)
# ============================================================================

class Diagnostics(BaseModel):
    """Diagnostics gathered for a failed unit or check."""

    logs: dict[str, str] = Field(default_factory=dict)
    events: list[dict[str, Any]] = Field(default_factory=list)
    descriptions: dict[str, str] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)


class ResourceApplyResult(BaseModel):
    """Outcome of applying one resource."""

    resource: str
    kind: str
    name: str
    namespace: str | None = None
    action: str | None = None
    error: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UnitReport(BaseModel):
    """Final status of one applied unit."""

    name: str
    namespace: str
    layer: int
    state: UnitState
    desired_replicas: int = 0
    ready_replicas: int = 0
    last_transition_time: datetime | None = None
    history: list[StatusTransition] = Field(default_factory=list)
    resources: list[ResourceApplyResult] = Field(default_factory=list)
    error: str | None = None
    diagnostics: Diagnostics | None = None


class CheckResult(BaseModel):
    """Outcome of one connectivity check."""

    source: str
    target: str
    port: int
    address: str
    expect: Literal["reachable", "blocked"]
    passed: bool
    reachable: bool = False
    dns_resolved: bool = False
    latency_ms: float | None = None
    diagnosis: Literal[
        "ok", "dns_failure", "unreachable", "unexpectedly_reachable", "probe_error"
    ]
    error: dict[str, Any] | None = None
    diagnostics: Diagnostics | None = None

    @property
    def id(self) -> str:
        return f"{self.source}->{self.target}:{self.port}"


class EndpointResult(BaseModel):
    """Outcome of one external endpoint check."""

    name: str
    url: str | None = None
    passed: bool
    status_code: int | None = None
    latency_ms: float | None = None
    error: str | None = None


class Failure(BaseModel):
    """A failure attributed to a specific unit, resource or check."""

    subject: str = Field(..., description="e.g. unit:backend, check:web->api:80")
    code: str = Field(..., description="Machine-readable error code")
    message: str


class DeploymentReport(BaseModel):
    """Aggregate result of one orchestration run."""

    run_id: str
    stack: str
    status: Literal["success", "failed", "cancelled"] = "failed"
    started_at: datetime
    finished_at: datetime | None = None
    overlays: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)
    plan: list[list[str]] = Field(default_factory=list)
    units: dict[str, UnitReport] = Field(default_factory=dict)
    skipped_units: list[str] = Field(default_factory=list)
    checks: list[CheckResult] = Field(default_factory=list)
    endpoints: list[EndpointResult] = Field(default_factory=list)
    failures: list[Failure] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> str:
        """Human summary of the run, one fact per line.

        Logged at the end of every run and shown in the CLI result panel.
        """
        ready = sum(1 for u in self.units.values() if u.state == UnitState.READY)
        passed = sum(1 for c in self.checks if c.passed)
        lines = [
            f"Stack {self.stack} [{self.run_id}]: {self.status}",
            f"Units ready: {ready}/{len(self.units) + len(self.skipped_units)}",
            f"Connectivity checks passed: {passed}/{len(self.checks)}",
        ]
        if self.duration_seconds is not None:
            lines.insert(1, f"Duration: {self.duration_seconds:.1f}s")
        if self.endpoints:
            ok = sum(1 for e in self.endpoints if e.passed)
            lines.append(f"Endpoint checks passed: {ok}/{len(self.endpoints)}")
        if self.skipped_units:
            lines.append(f"Not applied: {', '.join(self.skipped_units)}")
        for failure in self.failures:
            lines.append(f"  {failure.subject} [{failure.code}] {failure.message}")
        return "\n".join(lines)
