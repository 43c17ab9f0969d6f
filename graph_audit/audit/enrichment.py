"""
Bounded-concurrency fan-out of per-record secondary fetches.

Unlike the fetcher, the dispatcher tolerates partial failure: a record whose
enrichment raises is recorded as a failure outcome and its siblings carry on.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..config import MAX_CONCURRENT_REQUESTS
from .models import DirectoryRecord, EnrichmentMap, EnrichmentOutcome

logger = logging.getLogger("graph_audit.audit.enrichment")

Prefilter = Callable[[DirectoryRecord], bool]
Enricher = Callable[[DirectoryRecord], Awaitable[Any]]


class EnrichmentDispatcher:
    """
    Runs `enrich` for every record passing `prefilter`, at most
    `max_concurrency` at a time, and collects outcomes by record key.

    If `cancel` is set, records not yet started are left without an entry;
    tasks already in flight finish and record normally.
    """

    def __init__(
        self,
        max_concurrency: int = MAX_CONCURRENT_REQUESTS,
        cancel: Optional[asyncio.Event] = None,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self.cancel = cancel
        self.dispatched = 0
        self.skipped_by_cancel = 0
        self._in_flight = 0
        self.peak_in_flight = 0

    def select(self, records: Sequence[DirectoryRecord], prefilter: Prefilter) -> list[DirectoryRecord]:
        """Apply the pre-filter; eligible keys must be unique."""
        eligible = [r for r in records if prefilter(r)]
        seen: set[str] = set()
        for record in eligible:
            if record.key in seen:
                raise ValueError(f"Duplicate record key among eligible records: {record.key!r}")
            seen.add(record.key)
        return eligible

    async def dispatch(
        self,
        records: Sequence[DirectoryRecord],
        prefilter: Prefilter,
        enrich: Enricher,
    ) -> EnrichmentMap:
        eligible = self.select(records, prefilter)
        logger.info(
            f"Enriching {len(eligible)} of {len(records)} record(s) "
            f"(max {self.max_concurrency} in flight)"
        )

        outcomes = EnrichmentMap()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _run(record: DirectoryRecord) -> None:
            async with semaphore:
                if self.cancel is not None and self.cancel.is_set():
                    self.skipped_by_cancel += 1
                    return
                self.dispatched += 1
                self._in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
                try:
                    value = await enrich(record)
                except Exception as e:
                    logger.debug(f"Enrichment failed for {record.key}: {type(e).__name__}: {e}")
                    outcome = EnrichmentOutcome.failure(record.key, f"{type(e).__name__}: {e}")
                else:
                    outcome = EnrichmentOutcome.success(record.key, value)
                finally:
                    self._in_flight -= 1
            await outcomes.record(outcome)

        await asyncio.gather(*(_run(r) for r in eligible))

        failed = len(outcomes.failures())
        if failed:
            logger.info(f"{failed} enrichment(s) failed; see debug output for details")
        if self.skipped_by_cancel:
            logger.warning(f"Cancelled: {self.skipped_by_cancel} record(s) were not enriched")
        return outcomes
