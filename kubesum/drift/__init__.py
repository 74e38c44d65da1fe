"""Drift Detector: read-only audit of declared checksums.

Exports:
    DriftDetector -- Produces a DriftReport for a set of workloads.
    ManifestSet   -- Offline workloads and sources loaded from YAML files.
"""

from kubesum.drift.detector import DriftDetector
from kubesum.drift.manifests import ManifestSet

__all__ = ["DriftDetector", "ManifestSet"]
