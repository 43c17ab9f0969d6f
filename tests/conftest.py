from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
import pytest

from graph_audit.graph.client import GraphClient
from graph_audit.safety.guardian import SafetyGuardian

GRAPH = "https://graph.microsoft.com/v1.0"


class FakeGraph:
    """In-memory Graph endpoint: routes keyed by (method, path), requests recorded."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, json: Any = None, text: str = "") -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if json is not None:
                return httpx.Response(status, json=json)
            return httpx.Response(status, text=text)
        self.routes[(method, "/v1.0/" + path.lstrip("/"))] = respond

    def route(self, method: str, path: str, handler: Callable[[httpx.Request], Any]) -> None:
        self.routes[(method, "/v1.0/" + path.lstrip("/"))] = handler

    def paged(self, path: str, pages: list[list[dict]]) -> None:
        """Serve `pages` in order, linked by $skiptoken cursors."""
        def respond(request: httpx.Request) -> httpx.Response:
            index = int(request.url.params.get("$skiptoken", "0"))
            body: dict[str, Any] = {"value": pages[index]}
            if index + 1 < len(pages):
                body["@odata.nextLink"] = f"{GRAPH}/{path}?$skiptoken={index + 1}"
            return httpx.Response(200, json=body)
        self.route("GET", path, respond)

    def sequence(self, method: str, path: str, responses: list[httpx.Response]) -> None:
        """Serve each response once, in order; the last one repeats."""
        remaining = list(responses)

        def respond(request: httpx.Request) -> httpx.Response:
            return remaining.pop(0) if len(remaining) > 1 else remaining[0]
        self.route(method, path, respond)

    def handler(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": {"message": f"No route for {request.url.path}"}})
        return route(request)

    def paths(self, method: Optional[str] = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]


@pytest.fixture()
def graph() -> FakeGraph:
    return FakeGraph()


@pytest.fixture()
def make_client(graph: FakeGraph) -> Callable[..., GraphClient]:
    def factory(guardian: Optional[SafetyGuardian] = None, token: str = "test-token") -> GraphClient:
        return GraphClient(token, guardian=guardian, transport=httpx.MockTransport(graph.handler))
    return factory


@pytest.fixture()
def run_graph(make_client) -> Callable[..., Any]:
    """Run `fn(client)` inside an opened client and return its result."""
    def runner(fn: Callable[[GraphClient], Awaitable[Any]], guardian: Optional[SafetyGuardian] = None) -> Any:
        async def _main() -> Any:
            async with make_client(guardian=guardian) as client:
                return await fn(client)
        return asyncio.run(_main())
    return runner


def user(upn: str, licenses: int = 0, enabled: bool = True) -> dict:
    return {
        "id": f"id-{upn}",
        "userPrincipalName": upn,
        "assignedLicenses": [{"skuId": f"sku-{i}"} for i in range(licenses)],
        "accountEnabled": enabled,
    }


@pytest.fixture()
def make_user() -> Callable[..., dict]:
    return user
