"""Content Fetcher.

Turns TrackedSources into normalized bytes ready for hashing. The reader
backend is anything with ``async read_source(ref) -> SourceObject | None``:
ClusterClient for live reconciliation, FileSourceReader for offline audits.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol

from kubesum.checksum.engine import normalize
from kubesum.errors import SourceUnavailableError
from kubesum.graph.models import DependencyEdge
from kubesum.models.sources import NormalizationPolicy, SourceObject, SourceObjectRef, TrackedSource


class SourceReader(Protocol):
    async def read_source(self, ref: SourceObjectRef) -> SourceObject | None: ...


class ContentFetcher:
    """Fetches raw key content and applies the caller's normalization policy."""

    def __init__(self, reader: SourceReader) -> None:
        self._reader = reader

    async def read_object(self, ref: SourceObjectRef) -> SourceObject | None:
        """Read a whole source object; ``None`` when it does not exist."""
        return await self._reader.read_source(ref)

    async def read_objects(self, refs: Iterable[SourceObjectRef]) -> dict[SourceObjectRef, SourceObject | None]:
        return {ref: await self._reader.read_source(ref) for ref in refs}

    async def fetch(
        self,
        source: TrackedSource,
        policy: NormalizationPolicy = NormalizationPolicy.PRESERVE,
    ) -> bytes:
        """Return the normalized bytes of one key.

        Raises:
            SourceUnavailableError: the object or the key does not exist.
        """
        obj = await self._reader.read_source(source.object_ref)
        return _extract(obj, source, policy)

    async def fetch_many(
        self,
        edges: Iterable[DependencyEdge],
        objects: Mapping[SourceObjectRef, SourceObject | None] | None = None,
    ) -> dict[TrackedSource, bytes]:
        """Fetch every edge's content, reading each source object once.

        *objects* seeds the per-call cache with snapshots the caller already
        read during graph building, so a scan and its fetch see the same data.
        """
        objects = dict(objects or {})
        contents: dict[TrackedSource, bytes] = {}
        for edge in edges:
            ref = edge.source.object_ref
            if ref not in objects:
                objects[ref] = await self._reader.read_source(ref)
            contents[edge.source] = _extract(objects[ref], edge.source, edge.policy)
        return contents


def _extract(obj: SourceObject | None, source: TrackedSource, policy: NormalizationPolicy) -> bytes:
    if obj is None:
        raise SourceUnavailableError(source, "object not found")
    if source.key not in obj.data:
        raise SourceUnavailableError(source, "key not found")
    return normalize(obj.data[source.key], policy)
