"""Operator alert data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from uuid import uuid4


class Severity(StrEnum):
    """Alert severity level."""

    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ReconcileAlert:
    """Emitted by the controller when a per-workload error is surfaced."""

    severity: Severity
    workload_kind: str
    workload_name: str
    namespace: str
    reason: str
    summary: str
    detected_at: datetime
    failure_count: int = 1
    alert_id: str = field(default_factory=lambda: str(uuid4()))
