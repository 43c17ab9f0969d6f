from .models import AuditReport, DirectoryRecord, EnrichmentMap, EnrichmentOutcome, Page
from .pagination import FetchCancelled, FetchError, FetchErrorKind, fetch_all, iter_records
from .enrichment import EnrichmentDispatcher
from .aggregate import aggregate
from .pipeline import AuditCancelled, AuditJob, AuditRun, RunState, run_audit
from .jobs import (
    ALL_JOBS,
    shared_mailbox_adminrole_job,
    shared_mailbox_blockstatus_job,
    shared_mailbox_license_job,
)

__all__ = [
    "AuditReport",
    "DirectoryRecord",
    "EnrichmentMap",
    "EnrichmentOutcome",
    "Page",
    "FetchCancelled",
    "FetchError",
    "FetchErrorKind",
    "fetch_all",
    "iter_records",
    "EnrichmentDispatcher",
    "aggregate",
    "AuditCancelled",
    "AuditJob",
    "AuditRun",
    "RunState",
    "run_audit",
    "ALL_JOBS",
    "shared_mailbox_adminrole_job",
    "shared_mailbox_blockstatus_job",
    "shared_mailbox_license_job",
]
