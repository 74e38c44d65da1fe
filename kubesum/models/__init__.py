"""Core data structures for kubesum."""

from kubesum.models.alerts import ReconcileAlert, Severity
from kubesum.models.config import KubesumConfig
from kubesum.models.drift import DriftEntry, DriftReport
from kubesum.models.sources import (
    ChecksumRecord,
    NormalizationPolicy,
    ObjectKind,
    SourceObject,
    SourceObjectRef,
    TrackedSource,
)
from kubesum.models.workloads import ReconcilePhase, WorkloadKind, WorkloadRef

__all__ = [
    "ChecksumRecord",
    "DriftEntry",
    "DriftReport",
    "KubesumConfig",
    "NormalizationPolicy",
    "ObjectKind",
    "ReconcileAlert",
    "ReconcilePhase",
    "Severity",
    "SourceObject",
    "SourceObjectRef",
    "TrackedSource",
    "WorkloadKind",
    "WorkloadRef",
]
