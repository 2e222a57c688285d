"""Parameter injector - Bind runtime parameters into a composed stack.

Parameters (registry, organization, tag, replica counts, route hosts) are
turned into one final synthetic overlay; stored overlays are never touched.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from ..core.exceptions import ValidationError
from ..core.types import WORKLOAD_KINDS
from .models import DeployableUnit, Overlay, PatchOperation, ResourceSelector
from .overlay import ComposedStack, apply_overlay

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY = "ghcr.io"
DEFAULT_ORGANIZATION = "your-org"
DEFAULT_TAG = "main"

IMAGE_PATH = "/spec/template/spec/containers/0/image"
SCALABLE_KINDS = frozenset({"Deployment", "StatefulSet"})

_TAG = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_HOSTNAME = re.compile(
    r"^(?=.{1,253}$)[a-zA-Z0-9]([-a-zA-Z0-9]*[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([-a-zA-Z0-9]*[a-zA-Z0-9])?)*$"
)
_REGISTRY_TOKEN = re.compile(r"^[a-z0-9]([a-z0-9._:/-]*[a-z0-9])?$")


def _positive_int(key: str, raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValidationError(key, "replica count must be a positive integer")
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str) and raw.strip().isdigit():
        value = int(raw.strip())
    else:
        raise ValidationError(key, f"replica count must be a positive integer, got {raw!r}")
    if value < 1:
        raise ValidationError(key, f"replica count must be a positive integer, got {value}")
    return value


@dataclass(frozen=True)
class ParameterSet:
    """Runtime parameters for one orchestration run."""

    registry: str = DEFAULT_REGISTRY
    organization: str = DEFAULT_ORGANIZATION
    tag: str = DEFAULT_TAG
    replicas: dict[str, int] = field(default_factory=dict)
    hosts: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ParameterSet":
        """Build a parameter set from flat keys.

        Recognised keys: ``registry``, ``organization``, ``tag``,
        ``replicas.<unit>`` and ``host.<route>``. Unknown keys are logged
        and ignored.

        Raises:
            ValidationError: If a present parameter is malformed
        """
        values: dict[str, Any] = {}
        replicas: dict[str, int] = {}
        hosts: dict[str, str] = {}

        for key, raw in mapping.items():
            if key == "tag":
                tag = str(raw).strip()
                if not _TAG.match(tag):
                    raise ValidationError(key, f"tag must be a non-empty token, got {raw!r}")
                values["tag"] = tag
            elif key in ("registry", "organization"):
                token = str(raw).strip().lower()
                if not _REGISTRY_TOKEN.match(token):
                    raise ValidationError(key, f"invalid {key} {raw!r}")
                values[key] = token
            elif key.startswith("replicas."):
                replicas[key.removeprefix("replicas.")] = _positive_int(key, raw)
            elif key.startswith("host."):
                host = str(raw).strip()
                if not _HOSTNAME.match(host):
                    raise ValidationError(key, f"invalid hostname {raw!r}")
                hosts[key.removeprefix("host.")] = host
            else:
                logger.warning("Ignoring unknown parameter '%s'", key)

        return cls(replicas=replicas, hosts=hosts, **values)

    def image_for(self, image: str) -> str:
        """Full image reference for an image name."""
        return f"{self.registry}/{self.organization}/{image}:{self.tag}"

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "registry": self.registry,
            "organization": self.organization,
            "tag": self.tag,
        }
        data.update({f"replicas.{k}": v for k, v in sorted(self.replicas.items())})
        data.update({f"host.{k}": v for k, v in sorted(self.hosts.items())})
        return data


def parse_assignments(assignments: Iterable[str]) -> dict[str, str]:
    """Parse CLI ``KEY=VALUE`` assignments.

    Raises:
        ValidationError: If an assignment has no '='
    """
    parsed: dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ValidationError(item, "expected KEY=VALUE")
        parsed[key.strip()] = value
    return parsed


class ParameterInjector:
    """Apply a parameter set to a composed stack as a final synthetic overlay."""

    OVERLAY_NAME = "parameters"

    def build_overlay(
        self,
        composed: ComposedStack,
        units: Iterable[DeployableUnit],
        params: ParameterSet,
    ) -> Overlay:
        """Build the synthetic overlay for ``params``.

        Args:
            composed: Composed stack the overlay will apply to
            units: Unit definitions
            params: Parameter set

        Returns:
            Overlay carrying image, replica and host patches
        """
        patches: list[PatchOperation] = []
        units = list(units)
        known_units = {unit.name for unit in units}

        for name in sorted(set(params.replicas) - known_units):
            logger.warning("Replica count given for unknown unit '%s'", name)

        for unit in units:
            for resource in composed.get(unit.name, []):
                kind = resource.get("kind")
                if kind not in WORKLOAD_KINDS:
                    continue
                metadata = resource["metadata"]
                target = ResourceSelector(
                    kind=kind, name=metadata["name"], namespace=metadata.get("namespace")
                )

                if unit.image:
                    containers = (
                        resource.get("spec", {}).get("template", {}).get("spec", {}).get("containers")
                    )
                    if containers:
                        patches.append(
                            PatchOperation(
                                target=target,
                                op="replace",
                                path=IMAGE_PATH,
                                value=params.image_for(unit.image),
                            )
                        )
                    else:
                        logger.warning(
                            "Unit %s: %s/%s has no containers; image not injected",
                            unit.name,
                            kind,
                            metadata["name"],
                        )

                if unit.name in params.replicas and kind in SCALABLE_KINDS:
                    patches.append(
                        PatchOperation(
                            target=target,
                            op="replace",
                            path="/spec/replicas",
                            value=params.replicas[unit.name],
                        )
                    )

        for route, host in sorted(params.hosts.items()):
            matched = False
            for resources in composed.values():
                for resource in resources:
                    if resource.get("metadata", {}).get("name") != route:
                        continue
                    kind = resource.get("kind")
                    if kind == "Route":
                        path = "/spec/host"
                        op = "replace"
                        value: Any = host
                    elif kind == "Ingress":
                        if resource.get("spec", {}).get("rules"):
                            path, op, value = "/spec/rules/0/host", "replace", host
                        else:
                            path, op, value = "/spec/rules", "add", [{"host": host}]
                    else:
                        continue
                    matched = True
                    patches.append(
                        PatchOperation(
                            target=ResourceSelector(
                                kind=kind,
                                name=route,
                                namespace=resource["metadata"].get("namespace"),
                            ),
                            op=op,
                            path=path,
                            value=value,
                        )
                    )
            if not matched:
                logger.warning("No Route or Ingress named '%s' for host parameter", route)

        return Overlay(name=self.OVERLAY_NAME, patches=patches)

    def inject(
        self,
        composed: ComposedStack,
        units: Iterable[DeployableUnit],
        params: ParameterSet,
    ) -> ComposedStack:
        """Return a new composed stack with parameters bound.

        Args:
            composed: Output of the overlay compositor
            units: Unit definitions
            params: Parameter set

        Returns:
            New composed stack; ``composed`` is not modified
        """
        units = list(units)
        overlay = self.build_overlay(composed, units, params)
        namespaces = {unit.name: unit.namespace for unit in units}
        logger.debug("Injecting %d parameter patches", len(overlay.patches))
        return apply_overlay(composed, overlay, namespaces)
