"""In-memory reconciliation state.

An index over the cluster keyed by WorkloadRef, with a reverse index from
source objects to the workloads that reference them (used to route source
watch events). Rebuilt from a full scan on start; never a source of truth.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from kubesum.graph.models import DependencyEdge
from kubesum.models.sources import ChecksumRecord, SourceObjectRef
from kubesum.models.workloads import ReconcilePhase, WorkloadRef
from kubesum.observability.metrics import tracked_workloads


@dataclass
class WorkloadState:
    """What the controller last knew about one workload."""

    ref: WorkloadRef
    phase: ReconcilePhase = ReconcilePhase.IDLE
    edges: list[DependencyEdge] = field(default_factory=list)
    references: set[SourceObjectRef] = field(default_factory=set)
    applied: dict[str, str] = field(default_factory=dict)  # env var name -> digest
    composite_digest: str = ""
    consecutive_failures: int = 0
    last_error: str | None = None
    last_reconciled_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "workload": str(self.ref),
            "phase": self.phase.value,
            "edges": [
                {"name": e.env_var_name, "source": str(e.source), "origin": e.origin.value} for e in self.edges
            ],
            "applied": dict(sorted(self.applied.items())),
            "compositeDigest": self.composite_digest,
            "consecutiveFailures": self.consecutive_failures,
            "lastError": self.last_error,
            "lastReconciledAt": self.last_reconciled_at.isoformat() if self.last_reconciled_at else None,
        }


class ReconciliationState:
    """Process-wide cache mapping WorkloadRef to WorkloadState."""

    def __init__(self) -> None:
        self._workloads: dict[WorkloadRef, WorkloadState] = {}
        self._by_source: dict[SourceObjectRef, set[WorkloadRef]] = {}

    def __len__(self) -> int:
        return len(self._workloads)

    def __contains__(self, ref: object) -> bool:
        return ref in self._workloads

    def get(self, ref: WorkloadRef) -> WorkloadState | None:
        return self._workloads.get(ref)

    def ensure(self, ref: WorkloadRef) -> WorkloadState:
        state = self._workloads.get(ref)
        if state is None:
            state = WorkloadState(ref=ref)
            self._workloads[ref] = state
            tracked_workloads.set(len(self._workloads))
        return state

    def known(self) -> list[WorkloadRef]:
        return sorted(self._workloads)

    def set_phase(self, ref: WorkloadRef, phase: ReconcilePhase) -> None:
        self.ensure(ref).phase = phase

    def update_references(self, ref: WorkloadRef, references: Iterable[SourceObjectRef]) -> None:
        """Replace the set of source objects *ref* depends on."""
        state = self.ensure(ref)
        new_refs = set(references)
        for stale in state.references - new_refs:
            self._unlink(stale, ref)
        for added in new_refs - state.references:
            self._by_source.setdefault(added, set()).add(ref)
        state.references = new_refs

    def update_edges(self, ref: WorkloadRef, edges: list[DependencyEdge]) -> None:
        self.ensure(ref).edges = list(edges)

    def record_applied(
        self,
        ref: WorkloadRef,
        records: Iterable[ChecksumRecord],
        edges: Iterable[DependencyEdge],
        composite_digest: str,
    ) -> None:
        """Store the digests now injected into the workload's Pod template."""
        by_source = {record.source: record.digest for record in records}
        state = self.ensure(ref)
        state.applied = {edge.env_var_name: by_source[edge.source] for edge in edges if edge.source in by_source}
        state.composite_digest = composite_digest
        state.consecutive_failures = 0
        state.last_error = None
        state.last_reconciled_at = datetime.now(tz=UTC)

    def record_failure(self, ref: WorkloadRef, error: Exception) -> int:
        """Count a failed attempt; returns the consecutive failure count."""
        state = self.ensure(ref)
        state.consecutive_failures += 1
        state.last_error = str(error)
        state.phase = ReconcilePhase.IDLE
        return state.consecutive_failures

    def workloads_for_source(self, source: SourceObjectRef) -> set[WorkloadRef]:
        return set(self._by_source.get(source, ()))

    def forget(self, ref: WorkloadRef) -> None:
        state = self._workloads.pop(ref, None)
        if state is None:
            return
        for source in state.references:
            self._unlink(source, ref)
        tracked_workloads.set(len(self._workloads))

    def snapshot(self) -> list[dict[str, object]]:
        return [self._workloads[ref].to_dict() for ref in self.known()]

    def _unlink(self, source: SourceObjectRef, ref: WorkloadRef) -> None:
        refs = self._by_source.get(source)
        if refs is None:
            return
        refs.discard(ref)
        if not refs:
            del self._by_source[source]
