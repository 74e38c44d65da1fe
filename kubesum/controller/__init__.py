"""Reconciliation Controller.

Exports:
    Controller          -- Watches workloads and sources, drives the WorkQueue.
    Reconciler          -- One Scanning -> Diffing -> Patching attempt.
    ReconciliationState -- In-memory index of tracked workloads.
    WorkQueue           -- Coalescing queue over a bounded worker pool.
    LabelSelector       -- Opt-in selector matching.
    backoff_delay       -- Retry delay for consecutive failures.
"""

from kubesum.controller.manager import Controller, backoff_delay
from kubesum.controller.queue import WorkQueue
from kubesum.controller.reconciler import ReconcileOutcome, Reconciler, ReconcileResult
from kubesum.controller.selector import LabelSelector
from kubesum.controller.state import ReconciliationState, WorkloadState

__all__ = [
    "Controller",
    "LabelSelector",
    "ReconcileOutcome",
    "ReconcileResult",
    "Reconciler",
    "ReconciliationState",
    "WorkQueue",
    "WorkloadState",
    "backoff_delay",
]
