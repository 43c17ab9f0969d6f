"""
Audit run orchestration: Idle → Fetching → Enriching → Aggregating → Reported.

Each phase is a barrier. Enrichment needs the complete primary collection for
its pre-filter, and aggregation waits for every dispatched task.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..config import AuditConfig, RetryPolicy
from ..graph.client import GraphClient
from .aggregate import Predicate, aggregate
from .enrichment import EnrichmentDispatcher, Prefilter
from .models import AuditReport, DirectoryRecord
from .pagination import FetchCancelled

logger = logging.getLogger("graph_audit.audit.pipeline")

Fetcher = Callable[[GraphClient, Optional[asyncio.Event]], Awaitable[list[DirectoryRecord]]]
RecordEnricher = Callable[[GraphClient, DirectoryRecord, RetryPolicy], Awaitable[Any]]


class RunState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ENRICHING = "enriching"
    AGGREGATING = "aggregating"
    REPORTED = "reported"


_NEXT_STATE = {
    RunState.IDLE: RunState.FETCHING,
    RunState.FETCHING: RunState.ENRICHING,
    RunState.ENRICHING: RunState.AGGREGATING,
    RunState.AGGREGATING: RunState.REPORTED,
}


class AuditCancelled(Exception):
    """The run was cancelled; no report is produced."""
    pass


@dataclass(frozen=True)
class AuditJob:
    """Everything that distinguishes one audit from another."""
    name: str
    description: str
    fetch: Fetcher
    prefilter: Prefilter
    enrich: RecordEnricher
    predicate: Predicate
    describe: Callable[[DirectoryRecord], str] = lambda record: record.key


class AuditRun:
    """A single pass of one AuditJob against one client."""

    def __init__(
        self,
        client: GraphClient,
        job: AuditJob,
        config: Optional[AuditConfig] = None,
        cancel: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.job = job
        self.config = config or AuditConfig()
        self.cancel = cancel or asyncio.Event()
        self.state = RunState.IDLE
        self.timings: dict[str, float] = {}

    def _advance(self, expected: RunState) -> None:
        target = _NEXT_STATE.get(self.state)
        if target is not expected:
            raise RuntimeError(f"Cannot move from {self.state.value} to {expected.value}")
        logger.debug(f"[{self.job.name}] {self.state.value} -> {target.value}")
        self.state = target

    def _check_cancelled(self, phase: str) -> None:
        if self.cancel.is_set():
            raise AuditCancelled(f"{self.job.name} cancelled during {phase}")

    async def execute(self) -> AuditReport:
        started = time.monotonic()

        self._advance(RunState.FETCHING)
        try:
            records = await self.job.fetch(self.client, self.cancel)
        except FetchCancelled as e:
            raise AuditCancelled(str(e)) from e
        self.timings["fetch_seconds"] = round(time.monotonic() - started, 2)
        logger.info(f"[{self.job.name}] {len(records)} primary record(s) fetched")
        self._check_cancelled("fetching")

        self._advance(RunState.ENRICHING)
        dispatcher = EnrichmentDispatcher(self.config.max_concurrency, cancel=self.cancel)
        retry = self.config.retry

        async def _enrich(record: DirectoryRecord) -> Any:
            return await self.job.enrich(self.client, record, retry)

        enrichment = await dispatcher.dispatch(records, self.job.prefilter, _enrich)
        self.timings["enrich_seconds"] = round(
            time.monotonic() - started - self.timings["fetch_seconds"], 2
        )
        self._check_cancelled("enrichment")

        self._advance(RunState.AGGREGATING)
        report = aggregate(self.job.name, records, enrichment, self.job.predicate)

        self._advance(RunState.REPORTED)
        logger.info(
            f"[{self.job.name}] {report.count} match(es), "
            f"{len(report.undetermined)} undetermined, "
            f"{report.dispatched}/{report.examined} enriched"
        )
        return report


async def run_audit(
    client: GraphClient,
    job: AuditJob,
    config: Optional[AuditConfig] = None,
    cancel: Optional[asyncio.Event] = None,
) -> AuditReport:
    """Convenience wrapper for a one-shot AuditRun."""
    return await AuditRun(client, job, config=config, cancel=cancel).execute()
