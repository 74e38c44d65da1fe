"""Offline manifests for drift audits.

Loads rendered YAML (``kubectl get -o yaml``, Helm/kustomize output) so the
Drift Detector can run in CI without a cluster. Deployments and
DeploymentConfigs become audit targets; ConfigMaps and Secrets in the same
files act as the source backend.
"""

from __future__ import annotations

import base64
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import yaml

from kubesum.models.sources import ObjectKind, SourceObject, SourceObjectRef
from kubesum.models.workloads import WorkloadKind, WorkloadRef


class ManifestSet:
    """Workloads and source objects parsed from manifest files.

    Implements ``read_source`` so it can back a ContentFetcher directly.
    """

    def __init__(self, default_namespace: str = "default") -> None:
        self._default_namespace = default_namespace
        self.workloads: list[tuple[WorkloadRef, dict[str, Any]]] = []
        self.sources: dict[SourceObjectRef, SourceObject] = {}

    @classmethod
    def load(cls, paths: Iterable[str | Path], default_namespace: str = "default") -> ManifestSet:
        manifests = cls(default_namespace)
        for path in _expand(paths):
            with open(path, encoding="utf-8") as fh:
                for document in yaml.safe_load_all(fh):
                    manifests.add(document)
        return manifests

    def add(self, document: Any) -> None:
        """Add one parsed document; ``List`` kinds are flattened, unknown kinds ignored."""
        if not isinstance(document, dict):
            return
        kind = document.get("kind", "")
        if kind == "List" or kind.endswith("List"):
            for item in document.get("items") or []:
                self.add(item)
            return

        metadata = document.setdefault("metadata", {})
        metadata.setdefault("namespace", self._default_namespace)
        namespace = str(metadata["namespace"])
        name = str(metadata.get("name", ""))
        if not name:
            return

        if kind in (WorkloadKind.DEPLOYMENT.value, WorkloadKind.DEPLOYMENT_CONFIG.value):
            self.workloads.append((WorkloadRef(WorkloadKind(kind), namespace, name), document))
        elif kind in (ObjectKind.CONFIG_MAP.value, ObjectKind.SECRET.value):
            source = _decode(ObjectKind(kind), namespace, name, document)
            self.sources[source.ref] = source

    async def read_source(self, ref: SourceObjectRef) -> SourceObject | None:
        return self.sources.get(ref)


def _expand(paths: Iterable[str | Path]) -> Iterator[Path]:
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            yield from sorted(p for p in path.rglob("*") if p.suffix in (".yaml", ".yml"))
        else:
            yield path


def _decode(kind: ObjectKind, namespace: str, name: str, document: dict[str, Any]) -> SourceObject:
    data: dict[str, bytes] = {}
    if kind == ObjectKind.SECRET:
        for key, value in (document.get("data") or {}).items():
            data[key] = base64.b64decode(value or "")
        # stringData wins over data, as on the API server
        for key, value in (document.get("stringData") or {}).items():
            data[key] = str(value).encode("utf-8")
    else:
        for key, value in (document.get("data") or {}).items():
            data[key] = str(value).encode("utf-8")
        for key, value in (document.get("binaryData") or {}).items():
            data[key] = base64.b64decode(value or "")
    resource_version = str((document.get("metadata") or {}).get("resourceVersion", ""))
    return SourceObject(kind=kind, namespace=namespace, name=name, data=data, resource_version=resource_version)
