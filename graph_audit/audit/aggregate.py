"""
Join the primary collection with enrichment outcomes and apply the audit predicate.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence

from .models import AuditReport, DirectoryRecord, EnrichmentMap

Predicate = Callable[[DirectoryRecord, Any], bool]


def aggregate(
    name: str,
    records: Sequence[DirectoryRecord],
    enrichment: EnrichmentMap,
    predicate: Predicate,
) -> AuditReport:
    """
    Build the report in discovery order.

    Records without an outcome (filtered out before enrichment) never match.
    Records whose enrichment failed go to `undetermined` instead of being
    judged either way.
    """
    report = AuditReport(name=name, examined=len(records), dispatched=len(enrichment))

    for record in records:
        outcome = enrichment.get(record.key)
        if outcome is None:
            continue
        if not outcome.ok:
            report.undetermined.append(record.key)
            continue
        if predicate(record, outcome.value):
            report.matches.append(record.key)
            report.records[record.key] = record

    return report
