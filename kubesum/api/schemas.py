"""Pydantic request/response schemas for the kubesum REST API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error envelope returned by every non-2xx response."""

    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str  # ok | starting
    version: str
    tracked_workloads: int
    queue_depth: int


class EdgeStatus(BaseModel):
    name: str
    source: str
    origin: str


class WorkloadStatus(BaseModel):
    """Controller view of one tracked workload."""

    model_config = ConfigDict(populate_by_name=True)

    workload: str
    phase: str
    edges: list[EdgeStatus] = Field(default_factory=list)
    applied: dict[str, str] = Field(default_factory=dict)
    composite_digest: str = Field(default="", alias="compositeDigest")
    consecutive_failures: int = Field(default=0, alias="consecutiveFailures")
    last_error: str | None = Field(default=None, alias="lastError")
    last_reconciled_at: str | None = Field(default=None, alias="lastReconciledAt")


class StatusResponse(BaseModel):
    running: bool
    queue_depth: int
    workloads: list[WorkloadStatus]


class ChecksumMismatch(BaseModel):
    key: str
    declared: str
    computed: str


class DriftEntryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workload: str
    stale_keys: list[str] = Field(default_factory=list, alias="staleKeys")
    missing_keys: list[str] = Field(default_factory=list, alias="missingKeys")
    mismatches: list[ChecksumMismatch] = Field(default_factory=list)
    error: str | None = None


class DriftResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    generated_at: str = Field(alias="generatedAt")
    has_drift: bool = Field(alias="hasDrift")
    entries: list[DriftEntryResponse]


class ReconcileAccepted(BaseModel):
    workload: str
    status: str = "queued"
