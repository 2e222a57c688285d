"""Overlay compositor - Compose base units with ordered overlays.

Every function here is a pure value transformation: inputs are never
mutated and the same inputs always produce the same composed stack.
"""

import copy
import logging
from collections.abc import Iterable
from typing import Any

from ..core.exceptions import ValidationError
from .models import DeployableUnit, Overlay, PatchOperation, Resource

logger = logging.getLogger(__name__)

# Unit name -> ordered resources
ComposedStack = dict[str, list[Resource]]

CLUSTER_SCOPED_KINDS = frozenset(
    {
        "Namespace",
        "ClusterRole",
        "ClusterRoleBinding",
        "CustomResourceDefinition",
        "PersistentVolume",
        "StorageClass",
        "PriorityClass",
    }
)


def decode_pointer(path: str) -> list[str]:
    """Split a JSON pointer into unescaped reference tokens."""
    if not path.startswith("/"):
        raise ValidationError(path, "JSON pointer must start with '/'")
    return [t.replace("~1", "/").replace("~0", "~") for t in path.split("/")[1:]]


def _array_index(token: str, path: str) -> int:
    if not token.isdigit() or (len(token) > 1 and token.startswith("0")):
        raise ValidationError(path, f"'{token}' is not a valid array index")
    return int(token)


def _new_member(next_token: str, path: str) -> dict[str, Any] | list[Any]:
    """Container to create for a missing member, shaped by the token after it."""
    if next_token in ("-", "0"):
        return []
    if next_token.isdigit():
        raise ValidationError(path, f"cannot create an array at index {next_token}")
    return {}


def _step(node: Any, token: str, next_token: str, create: bool, path: str) -> Any:
    """Descend one level; returns None when the member is missing and not created."""
    if isinstance(node, dict):
        if node.get(token) is None:
            if not create:
                return None
            node[token] = _new_member(next_token, path)
        return node[token]
    if isinstance(node, list):
        index = _array_index(token, path)
        if index >= len(node):
            if not create:
                return None
            raise ValidationError(path, f"array index {index} is out of range")
        return node[index]
    raise ValidationError(path, f"cannot traverse into scalar at '{token}'")


def _patch_in_place(doc: Resource, patch: PatchOperation) -> None:
    path = patch.path
    tokens = decode_pointer(path)
    creating = patch.op != "remove"

    parent: Any = doc
    for token, next_token in zip(tokens[:-1], tokens[1:]):
        parent = _step(parent, token, next_token, creating, path)
        if parent is None:
            return  # remove of a missing member

    last = tokens[-1]
    value = copy.deepcopy(patch.value)

    if isinstance(parent, dict):
        if patch.op == "remove":
            parent.pop(last, None)
        else:
            parent[last] = value
    elif isinstance(parent, list):
        if patch.op == "add" and last == "-":
            parent.append(value)
            return
        index = _array_index(last, path)
        if patch.op == "add":
            if index > len(parent):
                raise ValidationError(path, f"array index {index} is out of range")
            parent.insert(index, value)
        elif patch.op == "replace":
            if index >= len(parent):
                raise ValidationError(path, f"array index {index} is out of range")
            parent[index] = value
        elif index < len(parent):
            parent.pop(index)
    else:
        raise ValidationError(path, f"cannot traverse into scalar at '{last}'")


def apply_patch(resource: Resource, patch: PatchOperation) -> Resource:
    """Return a copy of ``resource`` with ``patch`` applied.

    Semantics follow RFC 6902 with last-write-wins leniency: ``replace``
    creates a missing final member and ``remove`` of a missing member is a
    no-op. Missing intermediate members are created for add/replace: a list
    when the next token is ``-`` or ``0``, otherwise an object.

    Raises:
        ValidationError: If the pointer traverses a scalar, uses a bad
            array index or needs a new array at a nonzero index.
    """
    patched = copy.deepcopy(resource)
    _patch_in_place(patched, patch)
    return patched


def stamp_namespace(resource: Resource, namespace: str) -> Resource:
    """Return a copy of ``resource`` defaulted into ``namespace``."""
    stamped = copy.deepcopy(resource)
    if stamped.get("kind") in CLUSTER_SCOPED_KINDS:
        return stamped
    metadata = stamped.setdefault("metadata", {})
    metadata.setdefault("namespace", namespace)
    return stamped


def _identity(resource: Resource) -> tuple[str, str, str | None]:
    metadata = resource.get("metadata") or {}
    return (resource.get("kind", ""), metadata.get("name", ""), metadata.get("namespace"))


def apply_overlay(
    composed: ComposedStack,
    overlay: Overlay,
    namespaces: dict[str, str],
) -> ComposedStack:
    """Return a new composed stack with ``overlay`` applied.

    Extra resources are added first, then patches run in list order against
    every unit. A patch matching nothing is a no-op.

    Args:
        composed: Current composed stack
        overlay: Overlay to apply
        namespaces: Namespace of each unit

    Returns:
        New composed stack
    """
    result: ComposedStack = {name: list(resources) for name, resources in composed.items()}

    for index, extra in enumerate(overlay.resources):
        field = f"overlays.{overlay.name}.resources[{index}]"
        if extra.unit not in result:
            raise ValidationError(field, f"unknown unit '{extra.unit}'")
        metadata = extra.resource.get("metadata")
        if not extra.resource.get("kind") or not isinstance(metadata, dict) or not metadata.get("name"):
            raise ValidationError(field, "resource needs 'kind' and 'metadata.name'")

        resource = stamp_namespace(extra.resource, namespaces[extra.unit])
        existing = {_identity(r) for resources in result.values() for r in resources}
        if _identity(resource) in existing:
            raise ValidationError(field, f"duplicate resource {_identity(resource)}")
        result[extra.unit].append(resource)

    for index, patch in enumerate(overlay.patches):
        matched = 0
        for resources in result.values():
            for position, resource in enumerate(resources):
                if not patch.target.matches(resource):
                    continue
                try:
                    resources[position] = apply_patch(resource, patch)
                except ValidationError as e:
                    raise ValidationError(
                        f"overlays.{overlay.name}.patches[{index}]", e.message
                    ) from e
                matched += 1

        if matched == 0:
            logger.debug(
                "Overlay %s patch %d (%s) matched no resources",
                overlay.name,
                index,
                patch.target,
            )

    return result


def compose(
    units: Iterable[DeployableUnit],
    overlays: Iterable[Overlay] = (),
) -> ComposedStack:
    """Compose base units with overlays applied strictly in list order.

    Args:
        units: Base unit definitions
        overlays: Overlays, applied first to last

    Returns:
        Resolved resources per unit name
    """
    units = list(units)
    namespaces = {unit.name: unit.namespace for unit in units}
    composed: ComposedStack = {
        unit.name: [stamp_namespace(r, unit.namespace) for r in unit.resources]
        for unit in units
    }

    for overlay in overlays:
        logger.debug("Applying overlay %s", overlay.name)
        composed = apply_overlay(composed, overlay, namespaces)

    return composed
