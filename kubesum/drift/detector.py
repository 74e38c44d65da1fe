"""Drift Detector.

Read-only audit: recomputes every tracked checksum and compares it with the
value each workload currently declares. Never patches anything. Reports

    staleKeys   -- declared, but differs from the content hash
    missingKeys -- referenced, but no checksum declared at all

A workload whose references cannot be resolved is reported with ``error``
set instead of aborting the pass.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from kubesum.checksum.engine import DEFAULT_ALGORITHM, compute_records
from kubesum.controller.patch import declared_value
from kubesum.errors import ChecksumMismatchWarning, MalformedReferenceError, SourceUnavailableError
from kubesum.fetcher.content_fetcher import ContentFetcher
from kubesum.graph.builder import ReferenceGraphBuilder
from kubesum.models.drift import DriftEntry, DriftReport
from kubesum.models.workloads import WorkloadRef
from kubesum.observability.logging import get_logger
from kubesum.observability.metrics import drift_stale_keys

_log = get_logger("drift.detector")


class DriftDetector:
    """Compares declared checksums against freshly computed ones."""

    def __init__(
        self,
        builder: ReferenceGraphBuilder,
        fetcher: ContentFetcher,
        algorithm: str = DEFAULT_ALGORITHM,
        patch_mode: str | None = None,
    ) -> None:
        self._builder = builder
        self._fetcher = fetcher
        self._algorithm = algorithm
        self._patch_mode = patch_mode

    async def inspect(self, ref: WorkloadRef, workload_obj: Mapping[str, Any]) -> DriftEntry:
        """Audit one workload."""
        entry = DriftEntry(workload=ref)
        try:
            objects = await self._fetcher.read_objects(self._builder.referenced_objects(workload_obj))
            edges = self._builder.build(ref, workload_obj, objects)
            contents = await self._fetcher.fetch_many(edges, objects=objects)
        except (MalformedReferenceError, SourceUnavailableError) as exc:
            entry.error = str(exc)
            _log.warning("drift_workload_unresolved", workload=str(ref), error=str(exc))
            return entry
        except Exception as exc:  # noqa: BLE001
            entry.error = str(exc) or type(exc).__name__
            _log.error("drift_workload_failed", workload=str(ref), error=str(exc), error_type=type(exc).__name__)
            return entry

        records = compute_records(contents, self._algorithm)
        for edge in edges:
            computed = records[edge.source].digest
            declared = declared_value(workload_obj, edge, self._patch_mode)
            if declared is None:
                entry.missing_keys.append(edge.env_var_name)
            elif declared != computed:
                entry.stale_keys.append(edge.env_var_name)
                mismatch = ChecksumMismatchWarning(ref, edge.env_var_name, declared, computed)
                entry.mismatches.append(mismatch)
                _log.warning(
                    "checksum_mismatch",
                    workload=str(ref),
                    key=edge.env_var_name,
                    source=str(edge.source),
                    declared=declared,
                    computed=computed,
                )
        entry.stale_keys.sort()
        entry.missing_keys.sort()
        return entry

    async def detect(self, workloads: Iterable[tuple[WorkloadRef, Mapping[str, Any]]]) -> DriftReport:
        """Audit every workload; entries are ordered by workload identity."""
        report = DriftReport()
        for ref, workload_obj in sorted(workloads, key=lambda item: item[0]):
            report.entries.append(await self.inspect(ref, workload_obj))

        stale = sum(len(entry.stale_keys) for entry in report.entries)
        drift_stale_keys.set(stale)
        _log.info(
            "drift_pass_complete",
            workloads=len(report.entries),
            drifted=len(report.drifted()),
            stale_keys=stale,
        )
        return report
