"""
JSON exporter — Writes an audit report with run metadata.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .. import __version__
from ..audit.models import AuditReport


def export_json(
    report: AuditReport,
    output_dir: Path,
    run_id: str,
    extra: Optional[dict] = None,
) -> Path:
    """
    Write the report to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "tool": "graph-audit",
            "version": __version__,
            "run_id": run_id,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
            **(extra or {}),
        },
        "report": report.to_dict(),
    }

    filepath = output_dir / f"{report.name}_{run_id}.json"
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath
