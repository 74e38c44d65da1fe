"""Checksum engine: stable per-key and composite digests."""

from kubesum.checksum.engine import (
    DEFAULT_ALGORITHM,
    checksum,
    composite_checksum,
    compute_records,
    normalize,
)

__all__ = [
    "DEFAULT_ALGORITHM",
    "checksum",
    "composite_checksum",
    "compute_records",
    "normalize",
]
