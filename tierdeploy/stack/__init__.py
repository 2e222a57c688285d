"""Stack deployment: overlays, parameters, scheduling, rollout and verification."""

from .executor import ApplyExecutor, UnitApplyResult
from .loader import StackLoader, StackLoadError
from .models import (
    ConnectivityCheck,
    DeployableUnit,
    DeploymentPlan,
    DeploymentReport,
    EndpointCheck,
    Overlay,
    PatchOperation,
    ResourceSelector,
    RolloutStatus,
    StackDefinition,
    UnitState,
)
from .orchestrator import PreparedStack, StackOrchestrator, prepare_stack
from .overlay import apply_overlay, apply_patch, compose
from .params import ParameterInjector, ParameterSet
from .prober import ConnectivityProber, EndpointProber
from .reporter import FailureReporter
from .resolver import DependencyScheduler
from .waiter import ReadinessWaiter

__all__ = [
    "ApplyExecutor",
    "ConnectivityCheck",
    "ConnectivityProber",
    "DependencyScheduler",
    "DeployableUnit",
    "DeploymentPlan",
    "DeploymentReport",
    "EndpointCheck",
    "EndpointProber",
    "FailureReporter",
    "Overlay",
    "ParameterInjector",
    "ParameterSet",
    "PatchOperation",
    "PreparedStack",
    "ReadinessWaiter",
    "ResourceSelector",
    "RolloutStatus",
    "StackDefinition",
    "StackLoadError",
    "StackLoader",
    "StackOrchestrator",
    "UnitApplyResult",
    "UnitState",
    "apply_overlay",
    "apply_patch",
    "compose",
    "prepare_stack",
]
