"""Tests for custom exceptions in tierdeploy/core/exceptions.py.

Tests cover:
- OrchestratorError base class
- All specific exception types
- to_dict serialization
- String representation
"""

import pytest

from tierdeploy.core.exceptions import (
    ClusterError,
    ConfigurationError,
    ConnectivityFailure,
    CyclicDependencyError,
    ImmutableFieldConflict,
    OrchestratorError,
    ValidationError,
)


class TestOrchestratorError:
    """Test OrchestratorError base class."""

    def test_init_with_defaults(self) -> None:
        """OrchestratorError stores message, code, and defaults to recoverable."""
        error = OrchestratorError("Test message", "TEST_CODE")
        assert error.message == "Test message"
        assert error.code == "TEST_CODE"
        assert error.recoverable is True

    def test_str_representation(self) -> None:
        """__str__ includes code and message."""
        error = OrchestratorError("Something went wrong", "ERR_001")
        assert str(error) == "[ERR_001] Something went wrong"

    def test_to_dict(self) -> None:
        """to_dict returns serializable dictionary."""
        error = OrchestratorError("Test message", "TEST_CODE", recoverable=False)
        assert error.to_dict() == {
            "error": "TEST_CODE",
            "message": "Test message",
            "recoverable": False,
        }


class TestStructuralErrors:
    """Errors raised before anything is applied."""

    def test_validation_error(self) -> None:
        error = ValidationError("replicas.api", "must be positive")
        assert error.field == "replicas.api"
        assert error.code == "VALIDATION"
        assert error.recoverable is False
        assert "replicas.api" in str(error)
        assert "must be positive" in str(error)

    def test_cyclic_dependency_error(self) -> None:
        error = CyclicDependencyError(["a", "b"])
        assert error.cycle == ["a", "b"]
        assert error.code == "CYCLIC_DEPENDENCY"
        assert "a, b" in error.message

    def test_configuration_error(self) -> None:
        error = ConfigurationError("kubectl missing")
        assert error.code == "CONFIG"
        assert error.recoverable is False


class TestRuntimeErrors:
    """Errors recovered into the deployment report."""

    def test_immutable_field_conflict_to_dict(self) -> None:
        error = ImmutableFieldConflict(
            "data/StatefulSet/db", "field is immutable", fields=["/spec/selector"]
        )
        data = error.to_dict()
        assert data["error"] == "IMMUTABLE_FIELD"
        assert data["resource"] == "data/StatefulSet/db"
        assert data["fields"] == ["/spec/selector"]

    def test_immutable_field_conflict_default_fields(self) -> None:
        error = ImmutableFieldConflict("x", "msg")
        assert error.fields == []

    def test_connectivity_failure_with_cause(self) -> None:
        cause = RuntimeError("exec failed")
        error = ConnectivityFailure("web->api:80", "probe could not run", cause=cause)
        assert error.check == "web->api:80"
        assert error.cause is cause
        assert error.code == "CONNECTIVITY"
        assert "exec failed" in error.message

    def test_cluster_error(self) -> None:
        error = ClusterError("apply", "forbidden")
        assert error.operation == "apply"
        assert error.recoverable is True
        assert str(error) == "[CLUSTER_ERROR] Cluster operation 'apply' failed: forbidden"

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("f", "m"),
            CyclicDependencyError(["a"]),
            ImmutableFieldConflict("r", "m"),
            ConnectivityFailure("c", "m"),
            ClusterError("op", "m"),
            ConfigurationError("m"),
        ],
    )
    def test_all_derive_from_base(self, error: OrchestratorError) -> None:
        assert isinstance(error, OrchestratorError)
        assert isinstance(error, Exception)
