"""Core types and exceptions."""

from .clock import Clock, SystemClock
from .exceptions import (
    ClusterError,
    ConfigurationError,
    ConnectivityFailure,
    CyclicDependencyError,
    ImmutableFieldConflict,
    OrchestratorError,
    ValidationError,
)
from .types import (
    WORKLOAD_KINDS,
    ApplyOutcome,
    ClusterEvent,
    Condition,
    ProbeResult,
    ResourceHandle,
    WorkloadStatus,
)

__all__ = [
    # Time
    "Clock",
    "SystemClock",
    # Types
    "WORKLOAD_KINDS",
    "ApplyOutcome",
    "ClusterEvent",
    "Condition",
    "ProbeResult",
    "ResourceHandle",
    "WorkloadStatus",
    # Exceptions
    "ClusterError",
    "ConfigurationError",
    "ConnectivityFailure",
    "CyclicDependencyError",
    "ImmutableFieldConflict",
    "OrchestratorError",
    "ValidationError",
]
