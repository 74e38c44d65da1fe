"""Single-workload reconciliation: Scanning -> Diffing -> Patching -> Idle.

A Reconciler runs one attempt for one workload. It never moves Pods; it
only patches the Pod template and lets the platform's ConfigChange trigger
roll the workload out. Errors propagate to the caller (the Controller),
which owns retry and alerting policy.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from kubesum.checksum.engine import DEFAULT_ALGORITHM, composite_checksum, compute_records
from kubesum.cluster.client import ClusterClient
from kubesum.controller.patch import PATCH_MODE_ENV, ChecksumChange, build_patch, diff_checksums
from kubesum.controller.selector import LabelSelector
from kubesum.controller.state import ReconciliationState
from kubesum.errors import AttemptSupersededError, PatchConflictError, WorkloadNotFoundError
from kubesum.fetcher.content_fetcher import ContentFetcher
from kubesum.graph.builder import ReferenceGraphBuilder
from kubesum.models.workloads import ReconcilePhase, WorkloadRef
from kubesum.observability.logging import get_logger
from kubesum.observability.metrics import patches_total

_log = get_logger("controller.reconciler")

_MAX_CONFLICT_RETRIES = 3


class ReconcileOutcome(StrEnum):
    PATCHED = "patched"
    UNCHANGED = "unchanged"
    FORGOTTEN = "forgotten"


@dataclass
class ReconcileResult:
    """What one reconcile attempt did."""

    workload: WorkloadRef
    outcome: ReconcileOutcome
    changes: list[ChecksumChange] = field(default_factory=list)
    composite_digest: str = ""


def _always_current() -> bool:
    return True


class Reconciler:
    """Runs the fetch -> checksum -> diff -> patch sequence for one workload."""

    def __init__(
        self,
        cluster: ClusterClient,
        fetcher: ContentFetcher,
        builder: ReferenceGraphBuilder,
        state: ReconciliationState,
        selector: LabelSelector | None = None,
        patch_mode: str = PATCH_MODE_ENV,
        algorithm: str = DEFAULT_ALGORITHM,
        conflict_backoff_seconds: float = 0.2,
        max_conflict_retries: int = _MAX_CONFLICT_RETRIES,
    ) -> None:
        self._cluster = cluster
        self._fetcher = fetcher
        self._builder = builder
        self._state = state
        self._selector = selector or LabelSelector()
        self._patch_mode = patch_mode
        self._algorithm = algorithm
        self._conflict_backoff = conflict_backoff_seconds
        self._max_conflict_retries = max_conflict_retries

    async def reconcile(
        self,
        ref: WorkloadRef,
        is_current: Callable[[], bool] = _always_current,
    ) -> ReconcileResult:
        """Bring *ref*'s declared checksums in line with its sources.

        ``is_current`` is polled before any write; once it returns False the
        attempt raises AttemptSupersededError and nothing is patched.

        Raises:
            MalformedReferenceError, SourceUnavailableError, PatchConflictError,
            AttemptSupersededError.
        """
        try:
            return await self._reconcile(ref, is_current)
        finally:
            if ref in self._state:
                self._state.set_phase(ref, ReconcilePhase.IDLE)

    async def _reconcile(self, ref: WorkloadRef, is_current: Callable[[], bool]) -> ReconcileResult:
        # --- Scanning ----------------------------------------------------
        self._state.set_phase(ref, ReconcilePhase.SCANNING)
        try:
            workload_obj = await self._cluster.get_workload(ref)
        except WorkloadNotFoundError:
            self._state.forget(ref)
            _log.info("workload_forgotten", workload=str(ref), reason="deleted")
            return ReconcileResult(workload=ref, outcome=ReconcileOutcome.FORGOTTEN)

        labels = (workload_obj.get("metadata") or {}).get("labels") or {}
        if not self._selector.matches(labels):
            self._state.forget(ref)
            _log.info("workload_forgotten", workload=str(ref), reason="opted_out")
            return ReconcileResult(workload=ref, outcome=ReconcileOutcome.FORGOTTEN)

        references = self._builder.referenced_objects(workload_obj)
        self._state.update_references(ref, references)
        objects = await self._fetcher.read_objects(references)
        edges = self._builder.build(ref, workload_obj, objects)
        self._state.update_edges(ref, edges)

        contents = await self._fetcher.fetch_many(edges, objects=objects)
        records = compute_records(contents, self._algorithm)
        digests = {source: record.digest for source, record in records.items()}
        composite = composite_checksum(records.values(), self._algorithm)

        if not is_current():
            raise AttemptSupersededError(ref)

        # --- Diffing / Patching ---------------------------------------------
        conflicts = 0
        while True:
            self._state.set_phase(ref, ReconcilePhase.DIFFING)
            changes = diff_checksums(workload_obj, edges, digests, self._patch_mode)
            if not changes:
                self._state.record_applied(ref, records.values(), edges, composite)
                _log.debug("workload_in_sync", workload=str(ref), edges=len(edges))
                return ReconcileResult(workload=ref, outcome=ReconcileOutcome.UNCHANGED, composite_digest=composite)

            if not is_current():
                raise AttemptSupersededError(ref)

            self._state.set_phase(ref, ReconcilePhase.PATCHING)
            try:
                await self._cluster.patch_workload(ref, build_patch(workload_obj, changes, self._patch_mode))
            except PatchConflictError:
                if conflicts >= self._max_conflict_retries:
                    raise
                delay = self._conflict_backoff * (2**conflicts)
                conflicts += 1
                _log.info("patch_conflict_rediff", workload=str(ref), attempt=conflicts, retry_in=delay)
                await asyncio.sleep(delay)
                workload_obj = await self._cluster.get_workload(ref)
                continue

            self._state.record_applied(ref, records.values(), edges, composite)
            patches_total.labels(workload_kind=ref.kind.value).inc()
            _log_patched(ref, changes, composite)
            return ReconcileResult(
                workload=ref,
                outcome=ReconcileOutcome.PATCHED,
                changes=changes,
                composite_digest=composite,
            )


def _log_patched(ref: WorkloadRef, changes: list[ChecksumChange], composite: str) -> None:
    for change in changes:
        _log.info(
            "checksum_changed",
            workload=str(ref),
            key=change.edge.env_var_name,
            source=str(change.edge.source),
            old_digest=change.old_digest,
            new_digest=change.new_digest,
        )
    _log.info(
        "workload_patched",
        workload=str(ref),
        changed_keys=[c.edge.env_var_name for c in changes],
        old_digest={c.edge.env_var_name: c.old_digest for c in changes},
        new_digest={c.edge.env_var_name: c.new_digest for c in changes},
        composite_digest=composite,
    )

