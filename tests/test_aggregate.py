from __future__ import annotations

import asyncio

from graph_audit.audit.aggregate import aggregate
from graph_audit.audit.models import DirectoryRecord, EnrichmentMap, EnrichmentOutcome


def _map(*outcomes: EnrichmentOutcome) -> EnrichmentMap:
    async def build():
        result = EnrichmentMap()
        # Insert in reverse to show order comes from the records, not the map
        for outcome in reversed(outcomes):
            await result.record(outcome)
        return result
    return asyncio.run(build())


def _is_shared(record, value) -> bool:
    return value == "shared"


def test_matches_follow_discovery_order() -> None:
    records = [DirectoryRecord(k) for k in ("A", "B", "C")]
    outcomes = _map(
        EnrichmentOutcome.success("A", "shared"),
        EnrichmentOutcome.success("B", "user"),
        EnrichmentOutcome.success("C", "shared"),
    )

    report = aggregate("demo", records, outcomes, _is_shared)

    assert report.matches == ["A", "C"]
    assert report.count == 2
    assert set(report.records) == {"A", "C"}


def test_missing_and_failed_outcomes_never_match() -> None:
    records = [DirectoryRecord(k) for k in ("filtered", "failed", "ok")]
    outcomes = _map(
        EnrichmentOutcome.failure("failed", "HTTP 500"),
        EnrichmentOutcome.success("ok", "shared"),
    )

    report = aggregate("demo", records, outcomes, lambda r, v: True)

    assert report.matches == ["ok"]
    assert report.undetermined == ["failed"]
    assert report.examined == 3
    assert report.dispatched == 2


def test_empty_inputs() -> None:
    report = aggregate("demo", [], EnrichmentMap(), _is_shared)
    assert report.matches == []
    assert report.count == 0
