"""Stack loader - Parse and validate stack definitions."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..core.exceptions import CyclicDependencyError
from ..core.exceptions import ValidationError as StackValidationError
from .models import StackDefinition
from .resolver import DependencyScheduler

logger = logging.getLogger(__name__)


class StackLoadError(Exception):
    """Error loading or validating stack definition."""

    pass


class StackLoader:
    """Load and validate stack definitions from YAML files."""

    def load(self, yaml_path: str | Path) -> StackDefinition:
        """Load stack definition from YAML file.

        Units may list ``manifests:`` (multi-document YAML files relative to
        the stack file) in addition to inline ``resources:``. Overlay
        resources may likewise name a ``manifest:`` file.

        Args:
            yaml_path: Path to stack YAML file

        Returns:
            Validated StackDefinition

        Raises:
            StackLoadError: If loading or validation fails
        """
        yaml_path = Path(yaml_path)

        if not yaml_path.exists():
            raise StackLoadError(f"Stack file not found: {yaml_path}")

        # 1. Parse YAML
        data = self._read_yaml(yaml_path)
        if not isinstance(data, dict):
            raise StackLoadError("Stack file must contain a dictionary")

        # 2. Inline manifest files
        self._expand_manifests(data, yaml_path.parent)

        # 3. Pydantic validation (schema)
        try:
            stack = StackDefinition(**data)
        except ValidationError as e:
            raise StackLoadError(f"Validation error:\n{e}") from e

        # 4. Validate references between units, overlays and checks
        self._validate_references(stack)

        # 5. Validate dependency graph is acyclic
        self._validate_graph(stack)

        logger.debug("Loaded stack %s with %d units", stack.stack.name, len(stack.units))
        return stack

    def _read_yaml(self, path: Path) -> Any:
        try:
            with open(path) as f:
                return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise StackLoadError(f"Invalid YAML in {path}: {e}") from e

    def _read_manifests(self, path: Path) -> list[dict[str, Any]]:
        """Read every non-empty document of a multi-document manifest file."""
        if not path.exists():
            raise StackLoadError(f"Manifest file not found: {path}")
        try:
            with open(path) as f:
                documents = [doc for doc in yaml.safe_load_all(f) if doc]
        except yaml.YAMLError as e:
            raise StackLoadError(f"Invalid YAML in {path}: {e}") from e

        for index, document in enumerate(documents):
            if not isinstance(document, dict):
                raise StackLoadError(f"{path}: document {index} is not a mapping")
        return documents

    def _expand_manifests(self, data: dict[str, Any], base_dir: Path) -> None:
        """Replace manifest file references with their resources, in place."""
        for unit in data.get("units") or []:
            if not isinstance(unit, dict):
                continue
            files = unit.pop("manifests", None) or []
            if isinstance(files, str):
                files = [files]
            resources = list(unit.get("resources") or [])
            for name in files:
                resources.extend(self._read_manifests(base_dir / name))
            unit["resources"] = resources

        for overlay in data.get("overlays") or []:
            if not isinstance(overlay, dict):
                continue
            expanded: list[dict[str, Any]] = []
            for entry in overlay.get("resources") or []:
                if isinstance(entry, dict) and "manifest" in entry:
                    for document in self._read_manifests(base_dir / entry["manifest"]):
                        expanded.append({"unit": entry.get("unit"), "resource": document})
                else:
                    expanded.append(entry)
            if expanded:
                overlay["resources"] = expanded

    def _validate_references(self, stack: StackDefinition) -> None:
        """Validate that dependencies, checks and overlays reference known units.

        Args:
            stack: Stack definition to validate

        Raises:
            StackLoadError: If anything references an unknown unit or route
        """
        unit_names = stack.get_unit_names()

        def check_unit(name: str, context: str) -> None:
            if name not in unit_names:
                raise StackLoadError(f"{context} references unknown unit '{name}'")

        for unit in stack.units:
            for dependency in unit.depends_on:
                check_unit(dependency, f"Unit '{unit.name}' depends_on")

        for check in stack.connectivity:
            check_unit(check.source, f"Connectivity check {check.id}")
            check_unit(check.target, f"Connectivity check {check.id}")

        routes: set[str] = set()
        for unit in stack.units:
            for resource in unit.resources:
                if resource.get("kind") in ("Route", "Ingress"):
                    routes.add(resource["metadata"]["name"])

        for overlay in stack.overlays:
            for extra in overlay.resources:
                check_unit(extra.unit, f"Overlay '{overlay.name}' resource")
                if extra.resource.get("kind") in ("Route", "Ingress"):
                    routes.add((extra.resource.get("metadata") or {}).get("name", ""))

        for endpoint in stack.endpoints:
            if endpoint.route not in routes:
                raise StackLoadError(
                    f"Endpoint check '{endpoint.name}' references unknown route '{endpoint.route}'"
                )

    def _validate_graph(self, stack: StackDefinition) -> None:
        """Validate the unit dependency graph is a DAG.

        Args:
            stack: Stack definition to validate

        Raises:
            StackLoadError: If the graph has a cycle
        """
        try:
            DependencyScheduler().plan(stack.units, stack.connectivity)
        except (CyclicDependencyError, StackValidationError) as e:
            raise StackLoadError(str(e)) from e

    def validate_only(self, yaml_path: str | Path) -> str | None:
        """Validate stack file and return error message if invalid.

        Args:
            yaml_path: Path to stack YAML file

        Returns:
            Error message if validation fails, None if valid
        """
        try:
            self.load(yaml_path)
            return None
        except StackLoadError as e:
            return str(e)
