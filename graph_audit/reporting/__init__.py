"""Reporting package — console, JSON and CSV output."""

from .console import print_report
from .json_export import export_json
from .csv_export import export_csv

__all__ = [
    "print_report",
    "export_json",
    "export_csv",
]
