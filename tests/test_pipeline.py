from __future__ import annotations

import asyncio
import logging

import httpx
import pytest

from graph_audit.audit import (
    AuditCancelled,
    AuditRun,
    FetchError,
    RunState,
    run_audit,
    shared_mailbox_license_job,
)
from graph_audit.config import AuditConfig, RetryPolicy


def _tenant(graph, make_user) -> None:
    graph.paged("users", [
        [make_user("alice@contoso.com", licenses=1), make_user("bob@contoso.com")],
        [make_user("carol@contoso.com", licenses=2)],
    ])
    graph.add("GET", "users/alice@contoso.com/mailboxSettings", json={"userPurpose": "shared"})
    graph.add("GET", "users/carol@contoso.com/mailboxSettings", status=404,
              json={"error": {"message": "mailbox not found"}})


def test_license_audit_end_to_end(graph, run_graph, make_user, caplog) -> None:
    _tenant(graph, make_user)
    caplog.set_level(logging.DEBUG, logger="graph_audit")

    report = run_graph(lambda c: run_audit(c, shared_mailbox_license_job))

    assert report.matches == ["alice@contoso.com"]
    assert report.undetermined == ["carol@contoso.com"]
    assert report.examined == 3
    assert report.dispatched == 2
    mailbox_calls = [p for p in graph.paths() if p.endswith("/mailboxSettings")]
    assert "/v1.0/users/bob@contoso.com/mailboxSettings" not in mailbox_calls
    assert len(mailbox_calls) == 2
    assert any(
        "carol@contoso.com" in r.getMessage() and r.levelno == logging.DEBUG
        for r in caplog.records
    )


def test_repeated_runs_give_the_same_report(graph, run_graph, make_user) -> None:
    _tenant(graph, make_user)

    first = run_graph(lambda c: run_audit(c, shared_mailbox_license_job))
    second = run_graph(lambda c: run_audit(c, shared_mailbox_license_job))

    assert first.to_dict() == second.to_dict()


def test_fetch_failure_aborts_before_enrichment(graph, run_graph) -> None:
    graph.add("GET", "users", status=401, json={"error": {"message": "expired token"}})

    with pytest.raises(FetchError):
        run_graph(lambda c: run_audit(c, shared_mailbox_license_job))

    assert not [p for p in graph.paths() if p.endswith("/mailboxSettings")]


def test_run_moves_through_states_once(graph, run_graph, make_user) -> None:
    _tenant(graph, make_user)

    async def scenario(client):
        run = AuditRun(client, shared_mailbox_license_job)
        assert run.state is RunState.IDLE
        await run.execute()
        assert run.state is RunState.REPORTED
        assert "fetch_seconds" in run.timings
        with pytest.raises(RuntimeError):
            await run.execute()

    run_graph(scenario)


def test_cancel_before_start_sends_nothing(graph, run_graph, make_user) -> None:
    _tenant(graph, make_user)

    async def scenario(client):
        cancel = asyncio.Event()
        cancel.set()
        return await run_audit(client, shared_mailbox_license_job, cancel=cancel)

    with pytest.raises(AuditCancelled):
        run_graph(scenario)
    assert graph.requests == []


def test_throttled_enrichment_is_retried(graph, run_graph, make_user) -> None:
    graph.paged("users", [[make_user("alice@contoso.com", licenses=1)]])
    graph.sequence("GET", "users/alice@contoso.com/mailboxSettings", [
        httpx.Response(429, headers={"Retry-After": "0"}, text="slow down"),
        httpx.Response(200, json={"userPurpose": "Shared"}),
    ])
    config = AuditConfig(retry=RetryPolicy(max_retries=2, initial_backoff=0))

    report = run_graph(lambda c: run_audit(c, shared_mailbox_license_job, config=config))

    assert report.matches == ["alice@contoso.com"]
    assert len([p for p in graph.paths() if p.endswith("/mailboxSettings")]) == 2


def test_client_errors_are_not_retried(graph, run_graph, make_user) -> None:
    graph.paged("users", [[make_user("alice@contoso.com", licenses=1)]])
    graph.add("GET", "users/alice@contoso.com/mailboxSettings", status=400, text="bad request")
    config = AuditConfig(retry=RetryPolicy(max_retries=3, initial_backoff=0))

    report = run_graph(lambda c: run_audit(c, shared_mailbox_license_job, config=config))

    assert report.matches == []
    assert report.undetermined == ["alice@contoso.com"]
    assert len([p for p in graph.paths() if p.endswith("/mailboxSettings")]) == 1


def test_cancel_during_enrichment_stops_new_lookups(graph, run_graph, make_user) -> None:
    graph.paged("users", [[make_user(f"user{i}@contoso.com", licenses=1) for i in range(6)]])
    cancel = asyncio.Event()

    def mailbox(request: httpx.Request) -> httpx.Response:
        cancel.set()
        return httpx.Response(200, json={"userPurpose": "shared"})
    for i in range(6):
        graph.route("GET", f"users/user{i}@contoso.com/mailboxSettings", mailbox)
    config = AuditConfig(max_concurrency=2, retry=RetryPolicy(max_retries=0))

    with pytest.raises(AuditCancelled):
        run_graph(lambda c: run_audit(c, shared_mailbox_license_job, config=config, cancel=cancel))

    lookups = [p for p in graph.paths() if p.endswith("/mailboxSettings")]
    assert 1 <= len(lookups) <= 2
    assert len(graph.paths("GET")) == 1 + len(lookups)
