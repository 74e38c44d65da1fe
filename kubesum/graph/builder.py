"""Reference Graph Builder.

Parses a workload's Pod template into the ordered list of Secret/ConfigMap
keys it consumes. References are discovered in:

    spec.template.spec.volumes[].configMap / .secret
    spec.template.spec.volumes[].projected.sources[].configMap / .secret
    containers[] and initContainers[] env[].valueFrom.configMapKeyRef / .secretKeyRef
    containers[] and initContainers[] envFrom[].configMapRef / .secretRef
    the ``kubesum.io/track`` annotation (workload or Pod template metadata)

Building is split in two so the caller can do its I/O in between:
``referenced_objects()`` lists every object the template points at, the
caller reads them, and ``build()`` expands whole-object references against
the keys present at scan time.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from kubesum.errors import MalformedReferenceError
from kubesum.graph.models import DependencyEdge, EdgeOrigin
from kubesum.models.sources import (
    NormalizationPolicy,
    ObjectKind,
    SourceObject,
    SourceObjectRef,
    TrackedSource,
)
from kubesum.models.workloads import WorkloadRef
from kubesum.observability.logging import get_logger

_log = get_logger("graph.builder")

TRACK_ANNOTATION = "kubesum.io/track"
NORMALIZE_ANNOTATION = "kubesum.io/normalize"
CHECKSUM_SUFFIX = "_CHECKSUM"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


@dataclass(frozen=True)
class _Reference:
    """One raw reference found in the template, before key expansion."""

    source: SourceObjectRef
    keys: tuple[str, ...] | None  # None -> every key of the object
    origin: EdgeOrigin
    field_path: str
    optional: bool = False
    containers: tuple[str, ...] = ()  # () -> every container
    env_var_name: str | None = None
    requires_object: bool = True


@dataclass
class _Collected:
    """Accumulated references to one source key."""

    origin: EdgeOrigin
    containers: set[str] | None  # None -> every container
    env_var_name: str | None

    def merge(self, ref: _Reference) -> None:
        if self.containers is not None:
            if ref.containers:
                self.containers.update(ref.containers)
            else:
                self.containers = None
        if ref.env_var_name and not self.env_var_name:
            self.env_var_name = ref.env_var_name


def checksum_env_name(*parts: str) -> str:
    """Derive a ``*_CHECKSUM`` env var name (``spam.conf`` -> ``SPAM_CONF_CHECKSUM``)."""
    base = _NON_ALNUM.sub("_", "_".join(parts)).strip("_").upper()
    if not base or base[0].isdigit():
        base = f"KEY_{base}"
    return f"{base}{CHECKSUM_SUFFIX}"


def pod_template(workload_obj: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``spec.template`` of a Deployment/DeploymentConfig, or ``{}``."""
    spec = workload_obj.get("spec") or {}
    return spec.get("template") or {}


class ReferenceGraphBuilder:
    """Derives DependencyEdges from a workload object (raw API dict)."""

    def __init__(self, default_policy: NormalizationPolicy = NormalizationPolicy.PRESERVE) -> None:
        self._default_policy = default_policy

    def referenced_objects(self, workload_obj: Mapping[str, Any]) -> list[SourceObjectRef]:
        """Return every distinct source object the workload references, in first-seen order."""
        namespace = _namespace_of(workload_obj)
        seen: dict[SourceObjectRef, None] = {}
        for ref in self._scan(workload_obj, namespace):
            seen.setdefault(ref.source, None)
        return list(seen)

    def build(
        self,
        workload: WorkloadRef,
        workload_obj: Mapping[str, Any],
        objects: Mapping[SourceObjectRef, SourceObject | None],
    ) -> list[DependencyEdge]:
        """Expand references into one edge per tracked key.

        Raises:
            MalformedReferenceError: a volume, envFrom or whole-object
                annotation entry names a source object that does not exist
                and is not marked optional.
        """
        policies = _parse_policies(_annotations(workload_obj).get(NORMALIZE_ANNOTATION, ""))

        collected: dict[TrackedSource, _Collected] = {}

        for ref in self._scan(workload_obj, workload.namespace):
            obj = objects.get(ref.source)
            if obj is None:
                if ref.optional:
                    _log.debug("optional_source_missing", workload=str(workload), source=str(ref.source))
                    continue
                if ref.requires_object:
                    raise MalformedReferenceError(workload, ref.source, ref.field_path)

            if ref.keys is None:
                keys = obj.keys() if obj is not None else []
            elif ref.optional and obj is not None:
                keys = [key for key in ref.keys if key in obj.data]
            else:
                keys = list(ref.keys)

            for key in keys:
                source = TrackedSource(ref.source.kind, ref.source.namespace, ref.source.name, key)
                entry = collected.get(source)
                if entry is None:
                    collected[source] = _Collected(
                        origin=ref.origin,
                        containers=set(ref.containers) if ref.containers else None,
                        env_var_name=ref.env_var_name,
                    )
                else:
                    entry.merge(ref)

        names = _assign_env_names(collected)
        return [
            DependencyEdge(
                workload=workload,
                env_var_name=names[source],
                source=source,
                origin=entry.origin,
                policy=_policy_for(source, policies, self._default_policy),
                containers=tuple(sorted(entry.containers)) if entry.containers else (),
            )
            for source, entry in collected.items()
        ]

    # ------------------------------------------------------------------
    # Template scanning
    # ------------------------------------------------------------------

    def _scan(self, workload_obj: Mapping[str, Any], namespace: str) -> Iterator[_Reference]:
        template = pod_template(workload_obj)
        pod_spec = template.get("spec") or {}
        containers = _all_containers(pod_spec)

        yield from _scan_volumes(pod_spec, namespace, containers)
        for section, index, container in containers:
            yield from _scan_container(container, f"spec.template.spec.{section}[{index}]", namespace)
        yield from _scan_track_annotation(_annotations(workload_obj).get(TRACK_ANNOTATION, ""), namespace)


def _namespace_of(workload_obj: Mapping[str, Any]) -> str:
    return str((workload_obj.get("metadata") or {}).get("namespace", ""))


def _annotations(workload_obj: Mapping[str, Any]) -> dict[str, str]:
    """Workload annotations overlaid with Pod template annotations."""
    merged = dict((workload_obj.get("metadata") or {}).get("annotations") or {})
    merged.update((pod_template(workload_obj).get("metadata") or {}).get("annotations") or {})
    return merged


def _all_containers(pod_spec: Mapping[str, Any]) -> list[tuple[str, int, dict[str, Any]]]:
    result = []
    for section in ("containers", "initContainers"):
        for index, container in enumerate(pod_spec.get(section) or []):
            result.append((section, index, container))
    return result


def _mounting_containers(volume_name: str, containers: list[tuple[str, int, dict[str, Any]]]) -> tuple[str, ...]:
    names = []
    for _section, _index, container in containers:
        for mount in container.get("volumeMounts") or []:
            if mount.get("name") == volume_name:
                names.append(str(container.get("name", "")))
                break
    return tuple(names)


def _item_keys(items: list[dict[str, Any]] | None) -> tuple[str, ...] | None:
    if not items:
        return None
    return tuple(str(item["key"]) for item in items if item.get("key"))


def _scan_volumes(
    pod_spec: Mapping[str, Any],
    namespace: str,
    containers: list[tuple[str, int, dict[str, Any]]],
) -> Iterator[_Reference]:
    for index, volume in enumerate(pod_spec.get("volumes") or []):
        path = f"spec.template.spec.volumes[{index}]"
        mounted_by = _mounting_containers(str(volume.get("name", "")), containers)

        if volume.get("configMap"):
            cm = volume["configMap"]
            yield _Reference(
                source=SourceObjectRef(ObjectKind.CONFIG_MAP, namespace, str(cm.get("name", ""))),
                keys=_item_keys(cm.get("items")),
                origin=EdgeOrigin.VOLUME,
                field_path=f"{path}.configMap",
                optional=bool(cm.get("optional", False)),
                containers=mounted_by,
            )
        elif volume.get("secret"):
            secret = volume["secret"]
            yield _Reference(
                source=SourceObjectRef(ObjectKind.SECRET, namespace, str(secret.get("secretName", ""))),
                keys=_item_keys(secret.get("items")),
                origin=EdgeOrigin.VOLUME,
                field_path=f"{path}.secret",
                optional=bool(secret.get("optional", False)),
                containers=mounted_by,
            )
        elif volume.get("projected"):
            for src_index, src in enumerate(volume["projected"].get("sources") or []):
                for field_name, kind in (("configMap", ObjectKind.CONFIG_MAP), ("secret", ObjectKind.SECRET)):
                    projection = src.get(field_name)
                    if not projection:
                        continue
                    yield _Reference(
                        source=SourceObjectRef(kind, namespace, str(projection.get("name", ""))),
                        keys=_item_keys(projection.get("items")),
                        origin=EdgeOrigin.PROJECTED_VOLUME,
                        field_path=f"{path}.projected.sources[{src_index}].{field_name}",
                        optional=bool(projection.get("optional", False)),
                        containers=mounted_by,
                    )


def _scan_container(container: Mapping[str, Any], path: str, namespace: str) -> Iterator[_Reference]:
    name = str(container.get("name", ""))

    for index, env in enumerate(container.get("env") or []):
        value_from = env.get("valueFrom") or {}
        for field_name, kind in (("configMapKeyRef", ObjectKind.CONFIG_MAP), ("secretKeyRef", ObjectKind.SECRET)):
            key_ref = value_from.get(field_name)
            if not key_ref or not key_ref.get("key"):
                continue
            yield _Reference(
                source=SourceObjectRef(kind, namespace, str(key_ref.get("name", ""))),
                keys=(str(key_ref["key"]),),
                origin=EdgeOrigin.ENV,
                field_path=f"{path}.env[{index}].valueFrom.{field_name}",
                optional=bool(key_ref.get("optional", False)),
                containers=(name,),
                requires_object=False,
            )

    for index, env_from in enumerate(container.get("envFrom") or []):
        for field_name, kind in (("configMapRef", ObjectKind.CONFIG_MAP), ("secretRef", ObjectKind.SECRET)):
            obj_ref = env_from.get(field_name)
            if not obj_ref:
                continue
            yield _Reference(
                source=SourceObjectRef(kind, namespace, str(obj_ref.get("name", ""))),
                keys=None,
                origin=EdgeOrigin.ENV_FROM,
                field_path=f"{path}.envFrom[{index}].{field_name}",
                optional=bool(obj_ref.get("optional", False)),
                containers=(name,),
            )


def _scan_track_annotation(value: str, namespace: str) -> Iterator[_Reference]:
    """Parse ``[ENV_NAME=]kind/name[/key]`` entries separated by commas or newlines."""
    for raw in re.split(r"[,\n]", value):
        entry = raw.strip()
        if not entry:
            continue
        env_name: str | None = None
        if "=" in entry:
            env_name, entry = (part.strip() for part in entry.split("=", 1))
            if not env_name.endswith(CHECKSUM_SUFFIX):
                env_name = f"{env_name}{CHECKSUM_SUFFIX}"
        parts = entry.split("/", 2)
        if len(parts) < 2:
            _log.warning("track_annotation_entry_ignored", entry=raw.strip(), reason="expected kind/name[/key]")
            continue
        try:
            kind = ObjectKind.parse(parts[0])
        except ValueError:
            _log.warning("track_annotation_entry_ignored", entry=raw.strip(), reason="unknown kind")
            continue
        key = parts[2] if len(parts) == 3 and parts[2] else None
        if env_name and key is None:
            _log.warning("track_annotation_name_ignored", entry=raw.strip(), reason="whole-object entry")
            env_name = None
        yield _Reference(
            source=SourceObjectRef(kind, namespace, parts[1]),
            keys=(key,) if key else None,
            origin=EdgeOrigin.ANNOTATION,
            field_path=f"metadata.annotations[{TRACK_ANNOTATION}]",
            env_var_name=env_name,
            requires_object=key is None,
        )


# ---------------------------------------------------------------------------
# Naming and normalization policy resolution
# ---------------------------------------------------------------------------


def _assign_env_names(collected: Mapping[TrackedSource, _Collected]) -> dict[TrackedSource, str]:
    """Give every source a unique checksum name.

    Names are claimed from one shared set, in three passes so the result does
    not depend on which reference came first:

    1. explicit track-annotation names (a repeated name is dropped and the
       later source falls back to a derived name);
    2. ``<KEY>_CHECKSUM`` for keys no other source shares;
    3. everything else, escalating ``<NAME>_<KEY>``, ``<KIND>_<NAME>_<KEY>``
       and finally a numeric suffix until the name is free.
    """
    names: dict[TrackedSource, str] = {}
    taken: set[str] = set()

    for source, entry in collected.items():
        if not entry.env_var_name:
            continue
        if entry.env_var_name in taken:
            _log.warning("track_annotation_name_duplicated", name=entry.env_var_name, source=str(source))
            continue
        names[source] = entry.env_var_name
        taken.add(entry.env_var_name)

    derived: dict[str, list[TrackedSource]] = {}
    for source in collected:
        if source not in names:
            derived.setdefault(checksum_env_name(source.key), []).append(source)

    pending: list[TrackedSource] = []
    for base, sources in derived.items():
        if len(sources) == 1 and base not in taken:
            names[sources[0]] = base
            taken.add(base)
        else:
            pending.extend(sources)

    qualified_counts: dict[str, int] = {}
    for source in pending:
        name = checksum_env_name(source.name, source.key)
        qualified_counts[name] = qualified_counts.get(name, 0) + 1

    for source in pending:
        candidates = [checksum_env_name(source.kind, source.name, source.key)]
        qualified = checksum_env_name(source.name, source.key)
        if qualified_counts[qualified] == 1:
            candidates.insert(0, qualified)
        name = next((c for c in candidates if c not in taken), None)
        if name is None:
            stem = candidates[-1][: -len(CHECKSUM_SUFFIX)]
            n = 2
            while f"{stem}_{n}{CHECKSUM_SUFFIX}" in taken:
                n += 1
            name = f"{stem}_{n}{CHECKSUM_SUFFIX}"
        names[source] = name
        taken.add(name)
    return names


def _parse_policies(value: str) -> dict[str, NormalizationPolicy]:
    """Parse ``kind/name[/key]=policy`` and ``*=policy`` entries."""
    policies: dict[str, NormalizationPolicy] = {}
    for raw in re.split(r"[,\n]", value):
        if "=" not in raw:
            continue
        target, policy = (part.strip() for part in raw.split("=", 1))
        try:
            parsed = NormalizationPolicy(policy)
        except ValueError:
            _log.warning("normalize_annotation_entry_ignored", entry=raw.strip(), reason="unknown policy")
            continue
        if target == "*":
            policies["*"] = parsed
            continue
        parts = target.split("/", 2)
        try:
            kind = ObjectKind.parse(parts[0])
        except ValueError:
            _log.warning("normalize_annotation_entry_ignored", entry=raw.strip(), reason="unknown kind")
            continue
        policies["/".join([kind.value, *parts[1:]])] = parsed
    return policies


def _policy_for(
    source: TrackedSource,
    policies: Mapping[str, NormalizationPolicy],
    default: NormalizationPolicy,
) -> NormalizationPolicy:
    for lookup in (f"{source.kind}/{source.name}/{source.key}", f"{source.kind}/{source.name}", "*"):
        if lookup in policies:
            return policies[lookup]
    return default
