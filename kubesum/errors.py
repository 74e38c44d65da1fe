"""Error and warning types raised across kubesum.

Every error carries the identity it concerns so the controller can log and
alert on it without parsing messages.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubesum.models.sources import SourceObjectRef, TrackedSource
    from kubesum.models.workloads import WorkloadRef


class KubesumError(Exception):
    """Base class for all kubesum errors."""


class MalformedReferenceError(KubesumError):
    """A workload references a source object that does not exist.

    Surfaced immediately; the workload is left unreconciled.
    """

    def __init__(self, workload: WorkloadRef, source: SourceObjectRef, field_path: str) -> None:
        super().__init__(f"{workload} references missing {source} via {field_path}")
        self.workload = workload
        self.source = source
        self.field_path = field_path


class SourceUnavailableError(KubesumError):
    """A source object or key is missing at fetch time.

    Retried with backoff; the object may still be being created.
    """

    def __init__(self, source: TrackedSource | SourceObjectRef, reason: str = "not found") -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class PatchConflictError(KubesumError):
    """The workload changed between read and patch (optimistic concurrency)."""

    def __init__(self, workload: WorkloadRef, resource_version: str) -> None:
        super().__init__(f"Patch conflict on {workload} at resourceVersion {resource_version!r}")
        self.workload = workload
        self.resource_version = resource_version


class WorkloadNotFoundError(KubesumError):
    """The workload was deleted before it could be reconciled."""

    def __init__(self, workload: WorkloadRef) -> None:
        super().__init__(f"{workload} not found")
        self.workload = workload


class AttemptSupersededError(KubesumError):
    """A newer event arrived for the workload; the running attempt is discarded."""

    def __init__(self, workload: WorkloadRef) -> None:
        super().__init__(f"Reconcile attempt for {workload} superseded by a newer event")
        self.workload = workload


class ChecksumMismatchWarning(UserWarning):
    """A declared checksum no longer matches the computed digest.

    Drift Detector only: collected into reports, never corrected.
    """

    def __init__(self, workload: WorkloadRef, key: str, declared: str, computed: str) -> None:
        super().__init__(f"{workload}: {key} declared {declared[:12]} but content hashes to {computed[:12]}")
        self.workload = workload
        self.key = key
        self.declared = declared
        self.computed = computed
