"""Tests for StackLoader in tierdeploy/stack/loader.py."""

from pathlib import Path
from textwrap import dedent

import pytest

from tierdeploy.stack.loader import StackLoader, StackLoadError

STACK = """
stack:
  name: shop
units:
  - name: db
    namespace: shop-data
    manifests: manifests/db.yaml
  - name: api
    namespace: shop-api
    image: shop/api
    depends_on: [db]
    resources:
      - apiVersion: v1
        kind: Service
        metadata:
          name: api
        spec:
          ports: [{port: 8080}]
overlays:
  - name: autoscaling
    patches:
      - target: {kind: StatefulSet, name: db}
        op: replace
        path: /spec/replicas
        value: 3
    resources:
      - unit: api
        manifest: manifests/hpa.yaml
connectivity:
  - source: api
    target: db
    port: 5432
parameters:
  tag: v1.0
"""

DB_MANIFESTS = """
apiVersion: v1
kind: Service
metadata:
  name: db
spec:
  ports: [{port: 5432}]
---
apiVersion: apps/v1
kind: StatefulSet
metadata:
  name: db
spec:
  serviceName: db
  replicas: 1
---
"""

HPA = """
apiVersion: autoscaling/v2
kind: HorizontalPodAutoscaler
metadata:
  name: api
spec:
  minReplicas: 2
  maxReplicas: 5
"""


def write_stack(tmp_path: Path, stack: str = STACK) -> Path:
    manifests = tmp_path / "manifests"
    manifests.mkdir(exist_ok=True)
    (manifests / "db.yaml").write_text(DB_MANIFESTS)
    (manifests / "hpa.yaml").write_text(HPA)
    path = tmp_path / "stack.yaml"
    path.write_text(dedent(stack))
    return path


class TestStackLoader:
    """Loading stack files from disk."""

    def test_loads_and_expands_manifests(self, tmp_path: Path) -> None:
        stack = StackLoader().load(write_stack(tmp_path))

        assert stack.stack.name == "shop"
        db = stack.get_unit("db")
        assert [r["kind"] for r in db.resources] == ["Service", "StatefulSet"]
        assert stack.get_unit("api").depends_on == ["db"]
        assert stack.parameters == {"tag": "v1.0"}

    def test_overlay_manifest_expanded(self, tmp_path: Path) -> None:
        stack = StackLoader().load(write_stack(tmp_path))

        [extra] = stack.get_overlay("autoscaling").resources
        assert extra.unit == "api"
        assert extra.resource["kind"] == "HorizontalPodAutoscaler"

    def test_inline_resources_come_before_manifests(self, tmp_path: Path) -> None:
        stack_yaml = STACK.replace(
            "    manifests: manifests/db.yaml\n",
            "    manifests: [manifests/db.yaml]\n"
            "    resources:\n"
            "      - {kind: ConfigMap, metadata: {name: db-config}}\n",
        )
        stack = StackLoader().load(write_stack(tmp_path, stack_yaml))

        assert [r["kind"] for r in stack.get_unit("db").resources] == [
            "ConfigMap",
            "Service",
            "StatefulSet",
        ]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(StackLoadError, match="not found"):
            StackLoader().load(tmp_path / "nope.yaml")

    def test_missing_manifest(self, tmp_path: Path) -> None:
        path = write_stack(tmp_path, STACK.replace("manifests/db.yaml", "manifests/gone.yaml"))
        with pytest.raises(StackLoadError, match="Manifest file not found"):
            StackLoader().load(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "stack.yaml"
        path.write_text("stack: [unclosed\n")
        with pytest.raises(StackLoadError, match="Invalid YAML"):
            StackLoader().load(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "stack.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(StackLoadError, match="dictionary"):
            StackLoader().load(path)

    def test_schema_error(self, tmp_path: Path) -> None:
        path = write_stack(tmp_path, STACK.replace("namespace: shop-api", "namespace: Shop_API"))
        with pytest.raises(StackLoadError, match="Validation error"):
            StackLoader().load(path)

    def test_unknown_dependency(self, tmp_path: Path) -> None:
        path = write_stack(tmp_path, STACK.replace("depends_on: [db]", "depends_on: [cache]"))
        with pytest.raises(StackLoadError, match="unknown unit 'cache'"):
            StackLoader().load(path)

    def test_unknown_check_target(self, tmp_path: Path) -> None:
        path = write_stack(tmp_path, STACK.replace("target: db", "target: cache"))
        with pytest.raises(StackLoadError, match="unknown unit 'cache'"):
            StackLoader().load(path)

    def test_overlay_resource_unknown_unit(self, tmp_path: Path) -> None:
        path = write_stack(tmp_path, STACK.replace("- unit: api", "- unit: web"))
        with pytest.raises(StackLoadError, match="Overlay 'autoscaling'"):
            StackLoader().load(path)

    def test_endpoint_needs_known_route(self, tmp_path: Path) -> None:
        path = write_stack(
            tmp_path, STACK + "endpoints:\n  - name: home\n    route: storefront\n"
        )
        with pytest.raises(StackLoadError, match="unknown route 'storefront'"):
            StackLoader().load(path)

    def test_cycle(self, tmp_path: Path) -> None:
        stack_yaml = STACK.replace(
            "    manifests: manifests/db.yaml\n",
            "    manifests: manifests/db.yaml\n    depends_on: [api]\n",
        )
        path = write_stack(tmp_path, stack_yaml)
        with pytest.raises(StackLoadError, match="cycle"):
            StackLoader().load(path)

    def test_validate_only(self, tmp_path: Path) -> None:
        loader = StackLoader()
        assert loader.validate_only(write_stack(tmp_path)) is None
        assert "not found" in loader.validate_only(tmp_path / "nope.yaml")

    def test_bookstore_example_is_valid(self) -> None:
        path = Path(__file__).parents[2] / "examples" / "bookstore" / "stack.yaml"
        stack = StackLoader().load(path)

        assert {u.name for u in stack.units} == {"mysql", "redis", "backend", "frontend"}
        assert {o.name for o in stack.overlays} == {"security", "autoscaling"}
