"""Reading and writing checksum values on a workload's Pod template.

Two placements are supported:

    env         -- ``<NAME>_CHECKSUM`` env vars on the consuming containers
    annotation  -- ``kubesum.io/<name>_checksum`` annotations on the template

Patches are RFC 6902 JSON Patch documents. The first operation always pins
``/metadata/resourceVersion`` to the version the diff was computed against,
which the API server turns into a 409 Conflict if the workload moved on.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from kubesum.graph.builder import pod_template
from kubesum.graph.models import DependencyEdge

ANNOTATION_PREFIX = "kubesum.io/"
PATCH_MODE_ENV = "env"
PATCH_MODE_ANNOTATION = "annotation"

_MAX_ANNOTATION_NAME = 63
_CONTAINER_SECTIONS = ("containers", "initContainers")


@dataclass(frozen=True)
class ChecksumChange:
    """One checksum value that differs from what the template declares."""

    edge: DependencyEdge
    old_digest: str | None
    new_digest: str


def checksum_annotation_key(env_var_name: str) -> str:
    """Annotation key for a checksum name, kept within the 63-char name limit."""
    name = env_var_name.lower()
    if len(name) > _MAX_ANNOTATION_NAME:
        suffix = hashlib.sha256(name.encode()).hexdigest()[:10]
        name = f"{name[: _MAX_ANNOTATION_NAME - len(suffix) - 1].rstrip('_.-')}-{suffix}"
    return f"{ANNOTATION_PREFIX}{name}"


def _target_containers(template: Mapping[str, Any], edge: DependencyEdge) -> list[tuple[str, int, dict[str, Any]]]:
    pod_spec = template.get("spec") or {}
    targets = []
    for section in _CONTAINER_SECTIONS:
        for index, container in enumerate(pod_spec.get(section) or []):
            if not edge.containers or container.get("name") in edge.containers:
                targets.append((section, index, container))
    return targets


def _env_value(container: Mapping[str, Any], name: str) -> str | None:
    for env in container.get("env") or []:
        if env.get("name") == name:
            value = env.get("value")
            return None if value is None else str(value)
    return None


def declared_env_value(template: Mapping[str, Any], edge: DependencyEdge) -> str | None:
    """Checksum declared via env vars on the edge's target containers.

    ``None`` when no target container declares it. When containers disagree,
    or only some declare it, an empty string is returned so the value never
    matches a real digest.
    """
    values = [_env_value(container, edge.env_var_name) for _s, _i, container in _target_containers(template, edge)]
    present = [v for v in values if v is not None]
    if not present:
        return None
    if len(present) != len(values) or len(set(present)) != 1:
        return ""
    return present[0]


def declared_annotation_value(template: Mapping[str, Any], edge: DependencyEdge) -> str | None:
    annotations = (template.get("metadata") or {}).get("annotations") or {}
    value = annotations.get(checksum_annotation_key(edge.env_var_name))
    return None if value is None else str(value)


def declared_value(workload_obj: Mapping[str, Any], edge: DependencyEdge, mode: str | None = None) -> str | None:
    """Checksum the workload currently declares for *edge*.

    With ``mode=None`` env vars are consulted first, then annotations.
    """
    template = pod_template(workload_obj)
    if mode == PATCH_MODE_ANNOTATION:
        return declared_annotation_value(template, edge)
    value = declared_env_value(template, edge)
    if value is None and mode is None:
        return declared_annotation_value(template, edge)
    return value


def diff_checksums(
    workload_obj: Mapping[str, Any],
    edges: Sequence[DependencyEdge],
    digests: Mapping[Any, str],
    mode: str,
) -> list[ChecksumChange]:
    """Return the edges whose declared checksum differs from *digests* (keyed by source)."""
    changes = []
    for edge in edges:
        new = digests[edge.source]
        old = declared_value(workload_obj, edge, mode)
        if old != new:
            changes.append(ChecksumChange(edge=edge, old_digest=old, new_digest=new))
    return changes


def _escape(segment: str) -> str:
    return segment.replace("~", "~0").replace("/", "~1")


def build_patch(
    workload_obj: Mapping[str, Any],
    changes: Sequence[ChecksumChange],
    mode: str = PATCH_MODE_ENV,
) -> list[dict[str, Any]]:
    """Build the JSON Patch that writes *changes* and nothing else."""
    resource_version = str((workload_obj.get("metadata") or {}).get("resourceVersion", ""))
    ops: list[dict[str, Any]] = [
        {"op": "replace", "path": "/metadata/resourceVersion", "value": resource_version},
    ]
    template = pod_template(workload_obj)
    if mode == PATCH_MODE_ANNOTATION:
        ops.extend(_annotation_ops(template, changes))
    else:
        ops.extend(_env_ops(template, changes))
    return ops


def _annotation_ops(template: Mapping[str, Any], changes: Sequence[ChecksumChange]) -> list[dict[str, Any]]:
    values = {checksum_annotation_key(c.edge.env_var_name): c.new_digest for c in changes}
    metadata = template.get("metadata")
    if metadata is None:
        return [{"op": "add", "path": "/spec/template/metadata", "value": {"annotations": values}}]
    if metadata.get("annotations") is None:
        return [{"op": "add", "path": "/spec/template/metadata/annotations", "value": values}]
    return [
        {"op": "add", "path": f"/spec/template/metadata/annotations/{_escape(key)}", "value": value}
        for key, value in values.items()
    ]


def _env_ops(template: Mapping[str, Any], changes: Sequence[ChecksumChange]) -> list[dict[str, Any]]:
    # (section, index) -> ordered {env name: digest}
    per_container: dict[tuple[str, int], dict[str, str]] = {}
    containers: dict[tuple[str, int], dict[str, Any]] = {}
    for change in changes:
        for section, index, container in _target_containers(template, change.edge):
            per_container.setdefault((section, index), {})[change.edge.env_var_name] = change.new_digest
            containers[(section, index)] = container

    ops: list[dict[str, Any]] = []
    for (section, index), values in per_container.items():
        base = f"/spec/template/spec/{section}/{index}/env"
        env_list = containers[(section, index)].get("env")
        if env_list is None:
            ops.append({"op": "add", "path": base, "value": [{"name": n, "value": v} for n, v in values.items()]})
            continue
        positions = {env.get("name"): pos for pos, env in enumerate(env_list)}
        for name, value in values.items():
            if name in positions:
                ops.append({"op": "replace", "path": f"{base}/{positions[name]}", "value": {"name": name, "value": value}})
            else:
                ops.append({"op": "add", "path": f"{base}/-", "value": {"name": name, "value": value}})
    return ops
