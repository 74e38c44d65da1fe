"""Data structures for the workload -> source dependency graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from kubesum.models.sources import NormalizationPolicy, TrackedSource
from kubesum.models.workloads import WorkloadRef


class EdgeOrigin(StrEnum):
    """Where in the Pod template a dependency was declared."""

    VOLUME = "volume"
    PROJECTED_VOLUME = "projected_volume"
    ENV = "env"
    ENV_FROM = "env_from"
    ANNOTATION = "annotation"


@dataclass(frozen=True)
class DependencyEdge:
    """A workload's dependency on one source key.

    Derived from the workload spec on every scan and never persisted on its
    own. ``containers`` lists the containers that consume the source; an empty
    tuple means every container (volume and annotation references).
    """

    workload: WorkloadRef
    env_var_name: str
    source: TrackedSource
    origin: EdgeOrigin
    policy: NormalizationPolicy = NormalizationPolicy.PRESERVE
    containers: tuple[str, ...] = field(default_factory=tuple)
