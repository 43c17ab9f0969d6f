"""
Console reporter — renders an audit report to stdout.
"""

from __future__ import annotations

import sys
from typing import Callable, Optional, TextIO

from ..audit.models import AuditReport, DirectoryRecord


def print_report(
    report: AuditReport,
    describe: Callable[[DirectoryRecord], str],
    title: str = "",
    stream: Optional[TextIO] = None,
) -> None:
    """Print matches in discovery order, then anything that could not be judged."""
    stream = stream or sys.stdout
    heading = title or report.name
    print(f"\n{heading}:", file=stream)
    if not report.matches:
        print("  (none)", file=stream)
    for key in report.matches:
        record = report.records.get(key)
        print(f"  {describe(record) if record else key}", file=stream)

    print(f"\nTotal: {report.count} of {report.examined} examined", file=stream)

    if report.undetermined:
        print(
            f"\n⚠  Could not determine {len(report.undetermined)} record(s) "
            f"(mailbox lookup failed; rerun with -vv for details):",
            file=stream,
        )
        for key in report.undetermined:
            print(f"  {key}", file=stream)
