"""Drift report data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from kubesum.errors import ChecksumMismatchWarning
from kubesum.models.workloads import WorkloadRef


@dataclass
class DriftEntry:
    """Drift found on a single workload.

    ``stale_keys`` and ``missing_keys`` hold checksum names
    (e.g. ``CERT_CHECKSUM``). ``error`` is set when the workload could not be
    evaluated at all.
    """

    workload: WorkloadRef
    stale_keys: list[str] = field(default_factory=list)
    missing_keys: list[str] = field(default_factory=list)
    mismatches: list[ChecksumMismatchWarning] = field(default_factory=list)
    error: str | None = None

    @property
    def has_drift(self) -> bool:
        return bool(self.stale_keys or self.missing_keys or self.error)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "workload": str(self.workload),
            "staleKeys": list(self.stale_keys),
            "missingKeys": list(self.missing_keys),
        }
        if self.mismatches:
            payload["mismatches"] = [
                {"key": m.key, "declared": m.declared, "computed": m.computed} for m in self.mismatches
            ]
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class DriftReport:
    """Result of one Drift Detector pass, ordered by workload."""

    entries: list[DriftEntry] = field(default_factory=list)
    generated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def has_drift(self) -> bool:
        return any(entry.has_drift for entry in self.entries)

    def drifted(self) -> list[DriftEntry]:
        return [entry for entry in self.entries if entry.has_drift]

    def to_records(self, include_clean: bool = False) -> list[dict[str, object]]:
        """Serialise to the CI-consumable ``{workload, staleKeys, missingKeys}`` records."""
        entries = self.entries if include_clean else self.drifted()
        return [entry.to_dict() for entry in entries]
