"""Custom exception hierarchy for the tiered deployment orchestrator.

Provides structured exceptions with error codes and recovery hints.
Structural errors (validation, dependency cycles) abort a run before any
resource is applied; runtime errors are recovered into the deployment report.
"""

from typing import Any


class OrchestratorError(Exception):
    """Base exception for orchestrator errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code.
        recoverable: Whether the error is potentially recoverable.
    """

    def __init__(
        self,
        message: str,
        code: str,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for JSON serialization.

        Returns:
            Dictionary with error details.
        """
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class ValidationError(OrchestratorError):
    """Malformed parameters or overlay patches.

    Always raised before anything is applied to the cluster.
    """

    def __init__(
        self,
        field: str,
        message: str,
    ) -> None:
        full_message = f"Validation failed for '{field}': {message}"
        super().__init__(full_message, "VALIDATION", recoverable=False)
        self.field = field


class CyclicDependencyError(OrchestratorError):
    """The unit dependency graph is not a DAG."""

    def __init__(self, cycle: list[str]) -> None:
        message = "Dependency cycle detected between units: " + ", ".join(cycle)
        super().__init__(message, "CYCLIC_DEPENDENCY", recoverable=False)
        self.cycle = cycle


class ImmutableFieldConflict(OrchestratorError):
    """The cluster refused an in-place update of an immutable field.

    The resource must be deleted and recreated by an operator; the
    orchestrator never does this itself.
    """

    def __init__(
        self,
        resource: str,
        message: str,
        fields: list[str] | None = None,
    ) -> None:
        full_message = f"Immutable field conflict on {resource}: {message}"
        super().__init__(full_message, "IMMUTABLE_FIELD", recoverable=False)
        self.resource = resource
        self.fields = fields or []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["resource"] = self.resource
        data["fields"] = self.fields
        return data


class ConnectivityFailure(OrchestratorError):
    """A post-deploy connectivity probe could not be evaluated or failed."""

    def __init__(
        self,
        check: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        full_message = f"Connectivity check {check} failed: {message}"
        if cause:
            full_message += f": {cause}"
        super().__init__(full_message, "CONNECTIVITY", recoverable=True)
        self.check = check
        self.cause = cause


class ClusterError(OrchestratorError):
    """Error returned by the cluster API collaborator.

    Raised when kubectl/oc fails or the control plane rejects a request.
    """

    def __init__(
        self,
        operation: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        full_message = f"Cluster operation '{operation}' failed: {message}"
        if cause:
            full_message += f": {cause}"
        super().__init__(full_message, "CLUSTER_ERROR", recoverable=True)
        self.operation = operation
        self.cause = cause


class ConfigurationError(OrchestratorError):
    """Invalid configuration.

    Raised when configuration is invalid or a required tool is missing.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, "CONFIG", recoverable=False)
