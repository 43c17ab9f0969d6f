"""
CSV exporter — One row per matched or undetermined record.
"""

from __future__ import annotations

import csv
from pathlib import Path

from ..audit.models import AuditReport

FIELDS = ["key", "status", "roles", "license_count"]


def export_csv(report: AuditReport, output_dir: Path, run_id: str) -> Path:
    """
    Write the report rows to a CSV file.

    Returns:
        Path to the created CSV file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    filepath = output_dir / f"{report.name}_{run_id}.csv"

    with open(filepath, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=FIELDS)
        writer.writeheader()
        for key in report.matches:
            record = report.records.get(key)
            roles = record.get("roles") if record else None
            licenses = record.get("assignedLicenses") if record else None
            writer.writerow({
                "key": key,
                "status": "match",
                "roles": "; ".join(roles) if roles else "",
                "license_count": len(licenses) if licenses is not None else "",
            })
        for key in report.undetermined:
            writer.writerow({"key": key, "status": "undetermined", "roles": "", "license_count": ""})

    return filepath
