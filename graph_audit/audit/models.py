"""
Data model shared by the fetch → enrich → aggregate pipeline.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional


@dataclass(frozen=True)
class DirectoryRecord:
    """
    One object from a primary listing (a user, a role member).
    `key` is the stable identity used to join enrichment outcomes back.
    """
    key: str
    attributes: dict[str, Any] = field(default_factory=dict, compare=False)

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)


@dataclass(frozen=True)
class Page:
    """A single page of a cursor-linked listing."""
    records: list[DirectoryRecord]
    next_link: Optional[str] = None


@dataclass(frozen=True)
class EnrichmentOutcome:
    """Result of one per-record secondary fetch: a value or an error, never both."""
    key: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, key: str, value: Any) -> "EnrichmentOutcome":
        return cls(key=key, value=value)

    @classmethod
    def failure(cls, key: str, error: str) -> "EnrichmentOutcome":
        return cls(key=key, error=error or "unknown error")


class EnrichmentMap:
    """
    Keyed outcomes written concurrently by enrichment tasks.
    Each key may be written once; writes are serialized by a lock.
    """

    def __init__(self):
        self._outcomes: dict[str, EnrichmentOutcome] = {}
        self._lock = asyncio.Lock()

    async def record(self, outcome: EnrichmentOutcome) -> None:
        async with self._lock:
            if outcome.key in self._outcomes:
                raise KeyError(f"Enrichment outcome already recorded for {outcome.key!r}")
            self._outcomes[outcome.key] = outcome

    def get(self, key: str) -> Optional[EnrichmentOutcome]:
        return self._outcomes.get(key)

    def failures(self) -> list[EnrichmentOutcome]:
        return [o for o in self._outcomes.values() if not o.ok]

    def __contains__(self, key: object) -> bool:
        return key in self._outcomes

    def __len__(self) -> int:
        return len(self._outcomes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._outcomes)


@dataclass
class AuditReport:
    """
    Outcome of one audit run.
    `matches` and `undetermined` preserve primary discovery order.
    """
    name: str
    matches: list[str] = field(default_factory=list)
    undetermined: list[str] = field(default_factory=list)
    examined: int = 0
    dispatched: int = 0
    records: dict[str, DirectoryRecord] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.matches)

    def to_dict(self) -> dict:
        return {
            "audit": self.name,
            "examined": self.examined,
            "dispatched": self.dispatched,
            "match_count": self.count,
            "matches": [
                {"key": key, **_printable(self.records.get(key))}
                for key in self.matches
            ],
            "undetermined": list(self.undetermined),
        }


def _printable(record: Optional[DirectoryRecord]) -> dict:
    if record is None:
        return {}
    return {k: v for k, v in record.attributes.items() if isinstance(v, (str, int, bool, list))}
