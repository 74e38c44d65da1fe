"""Prometheus metrics for kubesum."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

reconciles_total = Counter(
    "kubesum_reconciles_total",
    "Reconcile attempts by outcome",
    ["outcome"],  # patched | unchanged | superseded | error
)

patches_total = Counter(
    "kubesum_patches_total",
    "Pod template patches applied",
    ["workload_kind"],
)

reconcile_errors_total = Counter(
    "kubesum_reconcile_errors_total",
    "Per-workload reconcile errors by type",
    ["error"],
)

queue_depth = Gauge(
    "kubesum_queue_depth",
    "Workloads waiting for a reconcile worker",
)

tracked_workloads = Gauge(
    "kubesum_tracked_workloads",
    "Workloads currently held in the reconciliation state",
)

drift_stale_keys = Gauge(
    "kubesum_drift_stale_keys",
    "Stale checksum keys found by the last drift pass",
)

notifications_total = Counter(
    "kubesum_notifications_total",
    "Notification deliveries by channel and outcome",
    ["channel", "success"],
)
