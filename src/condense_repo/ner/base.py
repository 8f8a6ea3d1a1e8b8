from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path

    from condense_repo.config import NamedEntity


@runtime_checkable
class EntityExtractor(Protocol):
    """Anything that lists the named entities of a source text."""

    def extract_entities(self, content: str, path: Path | str) -> list[NamedEntity]: ...


@dataclass(frozen=True)
class BackendStatus:
    """Outcome of bringing up an optional backend.

    Attributes:
        name: backend name.
        available: whether the backend can be used.
        reason: why it cannot, empty when available.
    """

    name: str
    available: bool
    reason: str = ""

    @classmethod
    def ok(cls, name: str) -> BackendStatus:
        return cls(name=name, available=True)

    @classmethod
    def unavailable(cls, name: str, reason: str) -> BackendStatus:
        return cls(name=name, available=False, reason=reason)


def dedupe(entities: list[NamedEntity]) -> list[NamedEntity]:
    """Drop repeated (name, type) pairs, keeping the first occurrence."""
    seen: set[tuple[str, str]] = set()
    out: list[NamedEntity] = []
    for entity in entities:
        key = (entity.name, entity.type)
        if key in seen:
            continue
        seen.add(key)
        out.append(entity)
    return out
