"""Cluster API collaborator.

Wraps kubernetes-asyncio for the three object families kubesum touches:

    Secret / ConfigMap          -- CoreV1Api (typed models), read + watch
    Deployment                  -- CustomObjectsApi on apps/v1
    DeploymentConfig            -- CustomObjectsApi on apps.openshift.io/v1

Workloads are handled as raw dicts (the CustomObjectsApi return type) so
Deployments and DeploymentConfigs share one code path. Patches are RFC 6902
JSON Patch documents; the reconciler always includes a resourceVersion
precondition, which the API server enforces with 409 Conflict.
"""

from __future__ import annotations

import base64
from collections.abc import Awaitable, Callable
from typing import Any

from kubernetes_asyncio.client.exceptions import ApiException  # type: ignore[import-untyped]

from kubesum.errors import PatchConflictError, WorkloadNotFoundError
from kubesum.models.sources import ObjectKind, SourceObject, SourceObjectRef
from kubesum.models.workloads import WorkloadKind, WorkloadRef
from kubesum.observability.logging import get_logger

_log = get_logger("cluster.client")

ListFn = Callable[..., Awaitable[Any]]


def object_metadata(obj: Any) -> tuple[str, str, str]:
    """Return ``(namespace, name, resourceVersion)`` of a typed model or raw dict."""
    if isinstance(obj, dict):
        metadata = obj.get("metadata") or {}
        return (
            str(metadata.get("namespace") or ""),
            str(metadata.get("name") or ""),
            str(metadata.get("resourceVersion") or ""),
        )
    metadata = getattr(obj, "metadata", None)
    return (
        str(getattr(metadata, "namespace", "") or ""),
        str(getattr(metadata, "name", "") or ""),
        str(getattr(metadata, "resource_version", "") or ""),
    )


def decode_source(kind: ObjectKind, obj: Any) -> SourceObject:
    """Decode a V1ConfigMap / V1Secret into original bytes per key."""
    namespace, name, resource_version = object_metadata(obj)
    data: dict[str, bytes] = {}
    if kind == ObjectKind.SECRET:
        for key, value in (getattr(obj, "data", None) or {}).items():
            data[key] = base64.b64decode(value or "")
    else:
        for key, value in (getattr(obj, "data", None) or {}).items():
            data[key] = (value or "").encode("utf-8")
        for key, value in (getattr(obj, "binary_data", None) or {}).items():
            data[key] = base64.b64decode(value or "")
    return SourceObject(kind=kind, namespace=namespace, name=name, data=data, resource_version=resource_version)


class ClusterClient:
    """Thin async facade over the kubernetes-asyncio APIs kubesum needs."""

    def __init__(self, core_api: Any = None, custom_api: Any = None) -> None:
        if core_api is None or custom_api is None:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            core_api = core_api or k8s_client.CoreV1Api()
            custom_api = custom_api or k8s_client.CustomObjectsApi()
        self._core = core_api
        self._custom = custom_api

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def read_source(self, ref: SourceObjectRef) -> SourceObject | None:
        """Read a Secret/ConfigMap; ``None`` when it does not exist."""
        try:
            if ref.kind == ObjectKind.SECRET:
                obj = await self._core.read_namespaced_secret(name=ref.name, namespace=ref.namespace)
            else:
                obj = await self._core.read_namespaced_config_map(name=ref.name, namespace=ref.namespace)
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise
        return decode_source(ref.kind, obj)

    def source_list_fn(self, kind: ObjectKind, namespace: str | None) -> tuple[ListFn, dict[str, Any]]:
        """Return the list function and kwargs a watcher streams for *kind*."""
        if kind == ObjectKind.SECRET:
            if namespace:
                return self._core.list_namespaced_secret, {"namespace": namespace}
            return self._core.list_secret_for_all_namespaces, {}
        if namespace:
            return self._core.list_namespaced_config_map, {"namespace": namespace}
        return self._core.list_config_map_for_all_namespaces, {}

    # ------------------------------------------------------------------
    # Workloads
    # ------------------------------------------------------------------

    def workload_list_fn(
        self,
        kind: WorkloadKind,
        namespace: str | None,
        label_selector: str = "",
    ) -> tuple[ListFn, dict[str, Any]]:
        kwargs: dict[str, Any] = {"group": kind.group, "version": kind.version, "plural": kind.plural}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if namespace:
            return self._custom.list_namespaced_custom_object, {**kwargs, "namespace": namespace}
        return self._custom.list_cluster_custom_object, kwargs

    async def list_workloads(
        self,
        kind: WorkloadKind,
        namespace: str | None = None,
        label_selector: str = "",
    ) -> list[dict[str, Any]]:
        """List workloads of *kind*; an uninstalled API group yields an empty list."""
        fn, kwargs = self.workload_list_fn(kind, namespace, label_selector)
        try:
            result = await fn(**kwargs)
        except ApiException as exc:
            if exc.status == 404:
                _log.debug("workload_api_not_served", kind=str(kind))
                return []
            raise
        items: list[dict[str, Any]] = result.get("items") or []
        return items

    async def list_tracked_workloads(
        self,
        kinds: list[WorkloadKind],
        namespaces: list[str],
        label_selector: str = "",
    ) -> list[tuple[WorkloadRef, dict[str, Any]]]:
        """List opted-in workloads across *kinds* and *namespaces* (empty = all)."""
        found: list[tuple[WorkloadRef, dict[str, Any]]] = []
        for kind in kinds:
            for namespace in namespaces or [None]:
                for obj in await self.list_workloads(kind, namespace, label_selector):
                    ns, name, _rv = object_metadata(obj)
                    found.append((WorkloadRef(kind=kind, namespace=ns, name=name), obj))
        return sorted(found, key=lambda item: item[0])

    async def get_workload(self, ref: WorkloadRef) -> dict[str, Any]:
        try:
            obj: dict[str, Any] = await self._custom.get_namespaced_custom_object(
                group=ref.kind.group,
                version=ref.kind.version,
                namespace=ref.namespace,
                plural=ref.kind.plural,
                name=ref.name,
            )
        except ApiException as exc:
            if exc.status == 404:
                raise WorkloadNotFoundError(ref) from exc
            raise
        return obj

    async def patch_workload(self, ref: WorkloadRef, operations: list[dict[str, Any]]) -> dict[str, Any]:
        """Apply a JSON Patch to the workload.

        Raises:
            PatchConflictError: the resourceVersion precondition failed.
            WorkloadNotFoundError: the workload was deleted.
        """
        try:
            obj: dict[str, Any] = await self._custom.patch_namespaced_custom_object(
                group=ref.kind.group,
                version=ref.kind.version,
                namespace=ref.namespace,
                plural=ref.kind.plural,
                name=ref.name,
                body=operations,
            )
        except ApiException as exc:
            if exc.status == 409:
                version = next(
                    (op.get("value", "") for op in operations if op.get("path") == "/metadata/resourceVersion"),
                    "",
                )
                raise PatchConflictError(ref, str(version)) from exc
            if exc.status == 404:
                raise WorkloadNotFoundError(ref) from exc
            raise
        return obj
