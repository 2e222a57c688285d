"""Cluster API clients."""

from .base import ClusterClient
from .kubectl import KubectlClient, detect_cli
from .memory import InMemoryCluster, RolloutScript

__all__ = [
    "ClusterClient",
    "InMemoryCluster",
    "KubectlClient",
    "RolloutScript",
    "detect_cli",
]
