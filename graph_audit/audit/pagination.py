"""
Cursor-following fetcher for Graph listings (`value` + `@odata.nextLink`).

Fetching is strictly sequential and all-or-nothing: any failure aborts with a
FetchError and whatever was collected so far is discarded, since a partial
listing would produce an audit that looks complete but is not.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, AsyncIterator, Callable, Optional
from urllib.parse import urlparse

import httpx

from ..config import MAX_PAGES_PER_ENDPOINT
from ..graph.client import GraphAPIError, GraphClient, GraphDecodeError
from .models import DirectoryRecord, Page

logger = logging.getLogger("graph_audit.audit.pagination")

NEXT_LINK_FIELD = "@odata.nextLink"

RecordParser = Callable[[dict], DirectoryRecord]


class FetchErrorKind(enum.Enum):
    UNAUTHORIZED = "unauthorized"
    REMOTE_ERROR = "remote_error"
    DECODE_ERROR = "decode_error"


class FetchError(Exception):
    """A primary listing could not be fetched in full."""

    def __init__(
        self,
        kind: FetchErrorKind,
        message: str,
        url: str,
        status: Optional[int] = None,
        body: str = "",
    ):
        self.kind = kind
        self.url = url
        self.status = status
        self.body = body
        super().__init__(f"{kind.value}: {message}")


class FetchCancelled(Exception):
    """The cancel signal was raised before the listing was complete."""
    pass


def parse_page(body: Any, parse_record: RecordParser, url: str) -> Page:
    """Decode one listing body into a Page."""
    if not isinstance(body, dict):
        raise FetchError(FetchErrorKind.DECODE_ERROR, "Page body is not a JSON object", url)
    values = body.get("value")
    if not isinstance(values, list):
        raise FetchError(FetchErrorKind.DECODE_ERROR, "Page body has no 'value' array", url)

    records = []
    for item in values:
        try:
            records.append(parse_record(item))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FetchError(
                FetchErrorKind.DECODE_ERROR,
                f"Unreadable record in page: {type(e).__name__}: {e}",
                url,
            )

    next_link = body.get(NEXT_LINK_FIELD)
    if next_link is not None and not isinstance(next_link, str):
        raise FetchError(FetchErrorKind.DECODE_ERROR, f"Invalid {NEXT_LINK_FIELD}", url)
    return Page(records=records, next_link=next_link or None)


def _check_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Starting URL must be an absolute http(s) URL: {url!r}")


async def iter_pages(
    client: GraphClient,
    url: str,
    parse_record: RecordParser,
    params: Optional[dict] = None,
    cancel: Optional[asyncio.Event] = None,
    max_pages: int = MAX_PAGES_PER_ENDPOINT,
) -> AsyncIterator[Page]:
    """Yield each page of a listing, following the cursor until it is absent."""
    _check_url(url)
    next_url: Optional[str] = url
    pages = 0

    while next_url:
        if cancel is not None and cancel.is_set():
            raise FetchCancelled(f"Cancelled after {pages} page(s) of {url}")
        if pages >= max_pages:
            raise FetchError(
                FetchErrorKind.REMOTE_ERROR,
                f"Pagination safety cap reached ({max_pages} pages)",
                url,
            )

        pages += 1
        logger.debug(f"Fetching page {pages}: {next_url}")
        try:
            body = await client.get(next_url, params=params)
        except GraphDecodeError as e:
            raise FetchError(
                FetchErrorKind.DECODE_ERROR, str(e), e.url, status=e.status_code, body=e.body
            ) from e
        except GraphAPIError as e:
            kind = FetchErrorKind.UNAUTHORIZED if e.is_unauthorized else FetchErrorKind.REMOTE_ERROR
            raise FetchError(kind, str(e), e.url, status=e.status_code, body=e.body) from e
        except httpx.HTTPError as e:
            raise FetchError(
                FetchErrorKind.REMOTE_ERROR, f"{type(e).__name__}: {e}", next_url
            ) from e

        page = parse_page(body, parse_record, next_url)
        logger.debug(f"Page {pages}: {len(page.records)} record(s)")
        yield page

        next_url = page.next_link
        params = None  # nextLink carries the original query

    logger.debug(f"Finished {url} after {pages} page(s)")


async def iter_records(
    client: GraphClient,
    url: str,
    parse_record: RecordParser,
    params: Optional[dict] = None,
    cancel: Optional[asyncio.Event] = None,
) -> AsyncIterator[DirectoryRecord]:
    """Stream every record of a listing in server order."""
    async for page in iter_pages(client, url, parse_record, params=params, cancel=cancel):
        for record in page.records:
            yield record


async def fetch_all(
    client: GraphClient,
    url: str,
    parse_record: RecordParser,
    params: Optional[dict] = None,
    cancel: Optional[asyncio.Event] = None,
) -> list[DirectoryRecord]:
    """
    Materialize a whole listing.
    Returns nothing on failure: the error propagates and the partial list is dropped.
    """
    records = [
        record
        async for record in iter_records(client, url, parse_record, params=params, cancel=cancel)
    ]
    logger.info(f"Fetched {len(records)} record(s) from {url}")
    return records
