"""Checksum engine: content normalization and digests.

All functions are pure. Digests are lowercase hex strings of a fixed length
for a given algorithm (64 characters for the default SHA-256).
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Mapping

from kubesum.models.sources import ChecksumRecord, NormalizationPolicy, TrackedSource

DEFAULT_ALGORITHM = "sha256"

_LINE_TRAILING_WS = re.compile(rb"[ \t\f\v]+(?=\r?\n|\Z)")


def normalize(content: bytes, policy: NormalizationPolicy = NormalizationPolicy.PRESERVE) -> bytes:
    """Apply *policy* to raw *content*.

    ``preserve`` returns the bytes untouched so digests match a plain
    ``sha256sum`` of the original file.
    """
    if policy == NormalizationPolicy.PRESERVE:
        return content
    if policy == NormalizationPolicy.STRIP_TRAILING_WHITESPACE:
        return content.rstrip()
    if policy == NormalizationPolicy.STRIP_LINE_WHITESPACE:
        return _LINE_TRAILING_WS.sub(b"", content)
    if policy == NormalizationPolicy.NORMALIZE_NEWLINES:
        return content.replace(b"\r\n", b"\n").replace(b"\r", b"\n")
    raise ValueError(f"Unknown normalization policy: {policy!r}")


def checksum(content: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Return the hex digest of *content*."""
    return hashlib.new(algorithm, content).hexdigest()


def composite_checksum(records: Iterable[ChecksumRecord], algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Combine several records into one digest.

    Records are sorted by source identity first, so the result does not depend
    on the order the caller discovered them in. Fields are NUL-separated; NUL
    cannot appear in a Kubernetes object name or key.
    """
    hasher = hashlib.new(algorithm)
    for record in sorted(records, key=lambda r: r.source):
        src = record.source
        hasher.update(f"{src.kind}\0{src.namespace}\0{src.name}\0{src.key}\0{record.digest}\n".encode())
    return hasher.hexdigest()


def compute_records(
    contents: Mapping[TrackedSource, bytes],
    algorithm: str = DEFAULT_ALGORITHM,
) -> dict[TrackedSource, ChecksumRecord]:
    """Compute a ChecksumRecord for every already-normalized content entry."""
    return {
        source: ChecksumRecord(source=source, digest=checksum(content, algorithm))
        for source, content in contents.items()
    }
