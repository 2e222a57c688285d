"""Tiered multi-namespace deployment orchestrator."""

from .config import OrchestratorSettings, settings
from .core import (
    ClusterError,
    ConfigurationError,
    ConnectivityFailure,
    CyclicDependencyError,
    ImmutableFieldConflict,
    OrchestratorError,
    ValidationError,
)

__all__ = [
    # Configuration
    "OrchestratorSettings",
    "settings",
    # Exceptions
    "ClusterError",
    "ConfigurationError",
    "ConnectivityFailure",
    "CyclicDependencyError",
    "ImmutableFieldConflict",
    "OrchestratorError",
    "ValidationError",
]
