"""
Async Graph API client with optional retry, throttling, and write gating.
One client (and one connection pool) is shared by every task in a run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    MAX_CONCURRENT_REQUESTS,
    NO_RETRY,
    RetryPolicy,
)
from ..safety.guardian import SafetyGuardian

logger = logging.getLogger("graph_audit.graph")


class GraphAPIError(Exception):
    """Raised when Graph API returns a non-success status."""
    def __init__(self, status_code: int, message: str, url: str, body: str = ""):
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code in (401, 403)


class GraphDecodeError(GraphAPIError):
    """Raised when a success response carries a body that is not JSON."""
    pass


class GraphClient:
    """
    Async Microsoft Graph API client.
    Features:
      - Bearer-token authenticated JSON requests
      - Per-call retry policy with exponential backoff and Retry-After
      - Write requests validated by a SafetyGuardian (dry run supported)
      - Shared connection pool sized for the concurrency bound
    """

    def __init__(
        self,
        access_token: str,
        guardian: Optional[SafetyGuardian] = None,
        max_connections: int = MAX_CONCURRENT_REQUESTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not access_token:
            raise ValueError("An access token is required.")
        self.access_token = access_token
        self.guardian = guardian or SafetyGuardian()
        self.max_connections = max_connections
        self._transport = transport
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=self.max_connections * 2,
                max_keepalive_connections=self.max_connections,
            ),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
                "ConsistencyLevel": "eventual",  # Required for $search
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def build_url(self, endpoint: str) -> str:
        """Build full Graph URL from relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        endpoint = endpoint.lstrip("/")
        return f"{GRAPH_BASE_URL}/{GRAPH_API_VERSION}/{endpoint}"

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        retry: RetryPolicy = NO_RETRY,
    ) -> Any:
        """Execute a single GET request under the given retry policy."""
        url = self.build_url(endpoint)
        self.guardian.validate_request("GET", url)
        return await self._execute_with_retry("GET", url, params=params, retry=retry)

    async def post(self, endpoint: str, json_body: Optional[dict] = None) -> Any:
        """Execute a POST. Returns {} without sending when dry run suppresses it."""
        url = self.build_url(endpoint)
        if not self.guardian.validate_request("POST", url, json_body):
            return {}
        return await self._execute_with_retry("POST", url, json_body=json_body)

    async def delete(self, endpoint: str) -> Any:
        """Execute a DELETE. Returns {} without sending when dry run suppresses it."""
        url = self.build_url(endpoint)
        if not self.guardian.validate_request("DELETE", url):
            return {}
        return await self._execute_with_retry("DELETE", url)

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        retry: RetryPolicy = NO_RETRY,
    ) -> Any:
        """Execute request, retrying retryable failures under the policy."""
        backoff = retry.initial_backoff

        for attempt in range(retry.max_retries + 1):
            try:
                response = await self._execute_raw(
                    method, url, params=params, json_body=json_body
                )
            except httpx.TransportError as e:
                logger.warning(
                    f"{type(e).__name__} on {url}, attempt {attempt + 1}/{retry.max_retries + 1}"
                )
                if attempt == retry.max_retries:
                    raise
                await asyncio.sleep(backoff)
                backoff = retry.next_backoff(backoff)
                continue

            self._request_count += 1
            logger.debug(f"{method} {url} -> {response.status_code}")

            if response.is_success:
                return self._decode(response, url)

            if retry.is_retryable(response.status_code) and attempt < retry.max_retries:
                self._throttle_count += 1
                wait_time = min(max(_retry_after(response, backoff), backoff), retry.max_backoff)
                logger.warning(
                    f"Retryable status {response.status_code} on {url}. "
                    f"Retry {attempt + 1}/{retry.max_retries} in {wait_time:.1f}s"
                )
                await asyncio.sleep(wait_time)
                backoff = retry.next_backoff(backoff)
                continue

            raise GraphAPIError(
                response.status_code, _error_message(response), url, body=response.text
            )

        # Unreachable: the final attempt either returns or raises
        raise RuntimeError(f"Retry loop exited without a result for {url}")

    @staticmethod
    def _decode(response: httpx.Response, url: str) -> Any:
        if response.status_code == 204 or not response.content.strip():
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GraphDecodeError(
                response.status_code, f"Response body is not JSON: {e}", url,
                body=response.text[:500],
            )

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params)
        elif method == "POST":
            return await self._client.post(url, json=json_body if json_body is not None else {})
        elif method == "DELETE":
            return await self._client.delete(url)
        else:
            raise ValueError(f"Unsupported method: {method}")

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "retried_responses": self._throttle_count,
        }


def _retry_after(response: httpx.Response, default: float) -> float:
    try:
        return float(response.headers.get("Retry-After", default))
    except ValueError:
        return default


def _error_message(response: httpx.Response) -> str:
    try:
        error_body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    error = error_body.get("error") if isinstance(error_body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return response.text[:200]
