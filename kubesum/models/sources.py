"""Source object and checksum data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum


class ObjectKind(StrEnum):
    """Kinds of source objects whose keys can be tracked."""

    CONFIG_MAP = "ConfigMap"
    SECRET = "Secret"

    @classmethod
    def parse(cls, value: str) -> ObjectKind:
        """Parse a case-insensitive kind name (``configmap``, ``cm``, ``Secret``)."""
        lowered = value.strip().lower()
        if lowered in ("configmap", "configmaps", "cm"):
            return cls.CONFIG_MAP
        if lowered in ("secret", "secrets"):
            return cls.SECRET
        raise ValueError(f"Unknown source kind: {value!r}")


class NormalizationPolicy(StrEnum):
    """How raw content is normalized before hashing."""

    PRESERVE = "preserve"
    STRIP_TRAILING_WHITESPACE = "strip-trailing-whitespace"
    STRIP_LINE_WHITESPACE = "strip-line-whitespace"
    NORMALIZE_NEWLINES = "normalize-newlines"


@dataclass(frozen=True, order=True)
class SourceObjectRef:
    """Identity of a whole Secret or ConfigMap."""

    kind: ObjectKind
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


@dataclass(frozen=True, order=True)
class TrackedSource:
    """One key of a Secret or ConfigMap.

    Ordering follows ``(kind, namespace, name, key)`` and is what composite
    digests sort by.
    """

    kind: ObjectKind
    namespace: str
    name: str
    key: str

    @property
    def object_ref(self) -> SourceObjectRef:
        return SourceObjectRef(kind=self.kind, namespace=self.namespace, name=self.name)

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}/{self.key}"


@dataclass(frozen=True)
class SourceObject:
    """Decoded snapshot of a source object as read from the cluster or disk.

    ``data`` holds the original bytes of every key: Secret values are already
    base64-decoded and ConfigMap ``data`` values UTF-8 encoded.
    """

    kind: ObjectKind
    namespace: str
    name: str
    data: dict[str, bytes] = field(default_factory=dict)
    resource_version: str = ""

    @property
    def ref(self) -> SourceObjectRef:
        return SourceObjectRef(kind=self.kind, namespace=self.namespace, name=self.name)

    def keys(self) -> list[str]:
        return sorted(self.data)


@dataclass(frozen=True)
class ChecksumRecord:
    """Digest of one tracked source computed during a reconciliation pass.

    Superseded by the next pass's record, never mutated.
    """

    source: TrackedSource
    digest: str
    computed_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
