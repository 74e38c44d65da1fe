"""Workload -> Secret/ConfigMap key dependency graph.

Edges are derived from the workload's own Pod template (volumes, env
``valueFrom``, ``envFrom`` and the ``kubesum.io/track`` annotation), so
checksum variables never have to be listed by hand.
"""

from kubesum.graph.builder import (
    NORMALIZE_ANNOTATION,
    TRACK_ANNOTATION,
    ReferenceGraphBuilder,
    checksum_env_name,
    pod_template,
)
from kubesum.graph.models import DependencyEdge, EdgeOrigin

__all__ = [
    "DependencyEdge",
    "EdgeOrigin",
    "NORMALIZE_ANNOTATION",
    "ReferenceGraphBuilder",
    "TRACK_ANNOTATION",
    "checksum_env_name",
    "pod_template",
]
