"""Shared fixtures for kubesum tests.

Provides an in-memory cluster (sources, workloads, JSON Patch application
with resourceVersion preconditions) plus workload manifest factories, so
unit and integration tests can exercise full reconcile cycles without a
real Kubernetes API server.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import pytest

from kubesum.controller.selector import LabelSelector
from kubesum.controller.state import ReconciliationState
from kubesum.errors import PatchConflictError, WorkloadNotFoundError
from kubesum.fetcher.content_fetcher import ContentFetcher
from kubesum.graph.builder import ReferenceGraphBuilder
from kubesum.models.config import ControllerConfig, KubesumConfig
from kubesum.models.sources import ObjectKind, SourceObject, SourceObjectRef
from kubesum.models.workloads import WorkloadKind, WorkloadRef

OPT_IN_LABELS = {"kubesum.io/enabled": "true"}

# ---------------------------------------------------------------------------
# JSON Patch (add / replace subset used by kubesum)
# ---------------------------------------------------------------------------


def _unescape(segment: str) -> str:
    return segment.replace("~1", "/").replace("~0", "~")


def apply_json_patch(doc: dict[str, Any], operations: list[dict[str, Any]]) -> dict[str, Any]:
    """Apply ``add``/``replace`` operations to a copy of *doc*."""
    result = copy.deepcopy(doc)
    for op in operations:
        parts = [_unescape(p) for p in op["path"].lstrip("/").split("/")]
        parent: Any = result
        for part in parts[:-1]:
            parent = parent[int(part)] if isinstance(parent, list) else parent[part]
        last = parts[-1]
        value = copy.deepcopy(op["value"])
        if isinstance(parent, list):
            if last == "-":
                parent.append(value)
            elif op["op"] == "add":
                parent.insert(int(last), value)
            else:
                parent[int(last)] = value
        else:
            if op["op"] == "replace" and last not in parent:
                raise KeyError(f"replace of missing path {op['path']}")
            parent[last] = value
    return result


# ---------------------------------------------------------------------------
# In-memory cluster
# ---------------------------------------------------------------------------


class FakeCluster:
    """Stands in for ClusterClient.

    ``conflicts_to_inject`` makes the next N patches fail as if another writer
    updated the workload first. ``read_gate`` (when set) blocks every source
    read until the event is set; ``read_started`` fires on each read.
    """

    def __init__(self) -> None:
        self.sources: dict[SourceObjectRef, SourceObject] = {}
        self.workloads: dict[WorkloadRef, dict[str, Any]] = {}
        self.patches: list[tuple[WorkloadRef, list[dict[str, Any]]]] = []
        self.conflicts_to_inject = 0
        self.read_gate: asyncio.Event | None = None
        self.read_started = asyncio.Event()
        self._version = 100

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    # -- test setup ----------------------------------------------------

    def put_source(
        self,
        kind: ObjectKind,
        name: str,
        data: dict[str, str | bytes],
        namespace: str = "default",
    ) -> SourceObject:
        encoded = {k: v.encode() if isinstance(v, str) else v for k, v in data.items()}
        obj = SourceObject(
            kind=kind,
            namespace=namespace,
            name=name,
            data=encoded,
            resource_version=self._next_version(),
        )
        self.sources[obj.ref] = obj
        return obj

    def delete_source(self, kind: ObjectKind, name: str, namespace: str = "default") -> None:
        self.sources.pop(SourceObjectRef(kind, namespace, name), None)

    def put_workload(self, obj: dict[str, Any], kind: WorkloadKind = WorkloadKind.DEPLOYMENT) -> WorkloadRef:
        metadata = obj.setdefault("metadata", {})
        metadata["resourceVersion"] = self._next_version()
        ref = WorkloadRef(kind=kind, namespace=metadata.get("namespace", "default"), name=metadata["name"])
        self.workloads[ref] = copy.deepcopy(obj)
        return ref

    def patch_count(self, ref: WorkloadRef | None = None) -> int:
        return sum(1 for patched, _ops in self.patches if ref is None or patched == ref)

    # -- ClusterClient surface -----------------------------------------

    async def read_source(self, ref: SourceObjectRef) -> SourceObject | None:
        self.read_started.set()
        if self.read_gate is not None:
            await self.read_gate.wait()
        return self.sources.get(ref)

    async def list_tracked_workloads(
        self,
        kinds: list[WorkloadKind],
        namespaces: list[str],
        label_selector: str = "",
    ) -> list[tuple[WorkloadRef, dict[str, Any]]]:
        selector = LabelSelector.parse(label_selector)
        found = [
            (ref, copy.deepcopy(obj))
            for ref, obj in self.workloads.items()
            if ref.kind in kinds
            and (not namespaces or ref.namespace in namespaces)
            and selector.matches(obj["metadata"].get("labels"))
        ]
        return sorted(found, key=lambda item: item[0])

    async def get_workload(self, ref: WorkloadRef) -> dict[str, Any]:
        if ref not in self.workloads:
            raise WorkloadNotFoundError(ref)
        return copy.deepcopy(self.workloads[ref])

    async def patch_workload(self, ref: WorkloadRef, operations: list[dict[str, Any]]) -> dict[str, Any]:
        if ref not in self.workloads:
            raise WorkloadNotFoundError(ref)
        current = self.workloads[ref]
        expected = operations[0]["value"] if operations[0]["path"] == "/metadata/resourceVersion" else None
        if self.conflicts_to_inject > 0:
            self.conflicts_to_inject -= 1
            current["metadata"]["resourceVersion"] = self._next_version()
            raise PatchConflictError(ref, str(expected))
        if expected is not None and expected != current["metadata"]["resourceVersion"]:
            raise PatchConflictError(ref, str(expected))

        patched = apply_json_patch(current, operations)
        patched["metadata"]["resourceVersion"] = self._next_version()
        self.workloads[ref] = patched
        self.patches.append((ref, copy.deepcopy(operations)))
        return copy.deepcopy(patched)


# ---------------------------------------------------------------------------
# Manifest factories
# ---------------------------------------------------------------------------


def make_container(
    name: str = "app",
    env: list[dict[str, Any]] | None = None,
    env_from: list[dict[str, Any]] | None = None,
    mounts: list[str] | None = None,
) -> dict[str, Any]:
    container: dict[str, Any] = {"name": name, "image": "registry.example.com/app:1.0"}
    if env is not None:
        container["env"] = env
    if env_from is not None:
        container["envFrom"] = env_from
    if mounts:
        container["volumeMounts"] = [{"name": m, "mountPath": f"/etc/{m}"} for m in mounts]
    return container


def make_deployment(
    name: str = "web",
    namespace: str = "default",
    containers: list[dict[str, Any]] | None = None,
    volumes: list[dict[str, Any]] | None = None,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    template_annotations: dict[str, str] | None = None,
    init_containers: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    pod_spec: dict[str, Any] = {"containers": containers if containers is not None else [make_container()]}
    if volumes is not None:
        pod_spec["volumes"] = volumes
    if init_containers is not None:
        pod_spec["initContainers"] = init_containers
    template: dict[str, Any] = {"metadata": {"labels": {"app": name}}, "spec": pod_spec}
    if template_annotations is not None:
        template["metadata"]["annotations"] = template_annotations
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "labels": dict(OPT_IN_LABELS) if labels is None else labels,
    }
    if annotations is not None:
        metadata["annotations"] = annotations
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata,
        "spec": {"replicas": 1, "template": template},
    }


def config_map_volume(volume: str, name: str, items: list[str] | None = None, optional: bool = False) -> dict:
    source: dict[str, Any] = {"name": name}
    if items is not None:
        source["items"] = [{"key": k, "path": k} for k in items]
    if optional:
        source["optional"] = True
    return {"name": volume, "configMap": source}


def secret_volume(volume: str, name: str, items: list[str] | None = None, optional: bool = False) -> dict:
    source: dict[str, Any] = {"secretName": name}
    if items is not None:
        source["items"] = [{"key": k, "path": k} for k in items]
    if optional:
        source["optional"] = True
    return {"name": volume, "secret": source}


def env_value(obj: dict[str, Any], name: str, container: int = 0) -> str | None:
    """Read an env var value off a workload's Pod template."""
    spec = obj["spec"]["template"]["spec"]["containers"][container]
    for env in spec.get("env") or []:
        if env["name"] == name:
            return env.get("value")
    return None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def builder() -> ReferenceGraphBuilder:
    return ReferenceGraphBuilder()


@pytest.fixture
def fetcher(cluster: FakeCluster) -> ContentFetcher:
    return ContentFetcher(cluster)


@pytest.fixture
def state() -> ReconciliationState:
    return ReconciliationState()


@pytest.fixture
def config() -> KubesumConfig:
    return KubesumConfig(
        controller=ControllerConfig(
            resync_interval_seconds=3600,
            workers=2,
            max_source_failures=3,
            backoff_base_seconds=0.01,
            backoff_max_seconds=0.05,
        )
    )
