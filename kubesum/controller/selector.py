"""Equality-based label selector matching (``k=v``, ``k!=v``, ``k``, ``!k``)."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class LabelSelector:
    """Parsed label selector used to decide workload opt-in."""

    raw: str = ""
    equals: dict[str, str] = field(default_factory=dict)
    not_equals: dict[str, str] = field(default_factory=dict)
    exists: frozenset[str] = frozenset()
    absent: frozenset[str] = frozenset()

    @classmethod
    def parse(cls, selector: str) -> LabelSelector:
        equals: dict[str, str] = {}
        not_equals: dict[str, str] = {}
        exists: set[str] = set()
        absent: set[str] = set()
        for part in selector.split(","):
            part = part.strip()
            if not part:
                continue
            if "!=" in part:
                key, value = part.split("!=", 1)
                not_equals[key.strip()] = value.strip()
            elif "=" in part:
                key, value = part.split("=", 1)
                equals[key.strip().rstrip("=")] = value.strip().lstrip("=")
            elif part.startswith("!"):
                absent.add(part[1:].strip())
            else:
                exists.add(part)
        return cls(
            raw=selector,
            equals=equals,
            not_equals=not_equals,
            exists=frozenset(exists),
            absent=frozenset(absent),
        )

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        labels = labels or {}
        return (
            all(labels.get(k) == v for k, v in self.equals.items())
            and all(labels.get(k) != v for k, v in self.not_equals.items())
            and all(k in labels for k in self.exists)
            and all(k not in labels for k in self.absent)
        )
