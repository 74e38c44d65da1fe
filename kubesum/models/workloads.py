"""Workload identity and reconciliation phase."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class WorkloadKind(StrEnum):
    """Workload kinds whose Pod template can be patched."""

    DEPLOYMENT = "Deployment"
    DEPLOYMENT_CONFIG = "DeploymentConfig"

    @property
    def group(self) -> str:
        return _API_COORDINATES[self][0]

    @property
    def version(self) -> str:
        return _API_COORDINATES[self][1]

    @property
    def plural(self) -> str:
        return _API_COORDINATES[self][2]


_API_COORDINATES: dict[WorkloadKind, tuple[str, str, str]] = {
    WorkloadKind.DEPLOYMENT: ("apps", "v1", "deployments"),
    WorkloadKind.DEPLOYMENT_CONFIG: ("apps.openshift.io", "v1", "deploymentconfigs"),
}


class ReconcilePhase(StrEnum):
    """Per-workload reconciliation state."""

    IDLE = "idle"
    SCANNING = "scanning"
    DIFFING = "diffing"
    PATCHING = "patching"


@dataclass(frozen=True, order=True)
class WorkloadRef:
    """Identity of a Deployment or DeploymentConfig."""

    kind: WorkloadKind
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> WorkloadRef:
        """Parse ``Kind/namespace/name``."""
        parts = value.split("/")
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"Workload must be Kind/namespace/name, got: {value!r}")
        return cls(kind=WorkloadKind(parts[0]), namespace=parts[1], name=parts[2])
