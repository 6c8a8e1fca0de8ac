from __future__ import annotations

import asyncio
import sys

import pytest


async def test_index_lists_named_profiles(api_client) -> None:
    resp = await api_client.get("/debug/pprof/")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/html")
    for name in ("tasks", "threads", "heap", "gc", "cmdline", "profile", "symbol", "trace"):
        assert f"href='{name}" in resp.text


@pytest.mark.parametrize(
    ("name", "marker"),
    [
        ("tasks", "task "),
        ("threads", "thread MainThread"),
        ("heap", "live objects by type"),
        ("gc", "generation 0"),
    ],
)
async def test_named_profiles_render_text(api_client, name: str, marker: str) -> None:
    resp = await api_client.get(f"/debug/pprof/{name}")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert marker in resp.text


async def test_unknown_profile_is_404(api_client) -> None:
    resp = await api_client.get("/debug/pprof/goroutine")
    assert resp.status_code == 404
    assert resp.text == "Unknown profile\n"


async def test_cmdline_joins_argv_with_nul(api_client) -> None:
    resp = await api_client.get("/debug/pprof/cmdline")
    assert resp.status_code == 200
    assert resp.text == "\x00".join(sys.argv)


async def test_symbol_without_names_reports_symbol_support(api_client) -> None:
    resp = await api_client.get("/debug/pprof/symbol")
    assert resp.status_code == 200
    assert resp.text == "num_symbols: 1\n"


async def test_symbol_resolves_dotted_names(api_client) -> None:
    resp = await api_client.get("/debug/pprof/symbol?httpbase.main:route+no.such.module")
    lines = resp.text.splitlines()
    assert lines[0] == "num_symbols: 1"
    assert lines[1].startswith("httpbase.main:route ")
    assert "main.py:" in lines[1]
    assert lines[2] == "no.such.module ??"


async def test_symbol_accepts_names_in_post_body(api_client) -> None:
    resp = await api_client.post("/debug/pprof/symbol", content=b"httpbase.server:ServerLifecycle")
    lines = resp.text.splitlines()
    assert lines[1].startswith("httpbase.server:ServerLifecycle ")
    assert "server.py:" in lines[1]


async def test_profile_collects_pstats_for_requested_window(api_client) -> None:
    resp = await api_client.get("/debug/pprof/profile?seconds=0.05")
    assert resp.status_code == 200
    assert "function calls" in resp.text
    assert resp.headers["content-disposition"] == 'attachment; filename="profile"'


async def test_trace_records_events_for_requested_window(api_client) -> None:
    resp = await api_client.get("/debug/pprof/trace?seconds=0.05")
    assert resp.status_code == 200
    assert resp.text.startswith("# ")
    assert "over 0.05s" in resp.text.splitlines()[0]


@pytest.mark.parametrize("value", ["inf", "nan", "1e400", "-inf"])
async def test_trace_ignores_non_finite_seconds(api_client, value: str) -> None:
    resp = await asyncio.wait_for(api_client.get(f"/debug/pprof/trace?seconds={value}"), timeout=10)
    assert resp.status_code == 200
    assert "over 1s" in resp.text.splitlines()[0]

    # The collector was released, so the next window can run.
    follow_up = await api_client.get("/debug/pprof/profile?seconds=0.05")
    assert follow_up.status_code == 200


async def test_only_one_collector_runs_at_a_time(api_client) -> None:
    tracing = asyncio.create_task(api_client.get("/debug/pprof/trace?seconds=0.5"))
    await asyncio.sleep(0.1)

    busy = await api_client.get("/debug/pprof/profile?seconds=0.05")
    traced = await tracing

    assert busy.status_code == 500
    assert "already in use" in busy.text
    assert traced.status_code == 200


async def test_vars_snapshot_reports_process_and_http_counters(api_client) -> None:
    await api_client.get("/health")
    await api_client.get("/health")

    resp = await api_client.get("/debug/vars")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["cmdline"] == list(sys.argv)
    assert payload["memstats"]["threads"] >= 1
    assert len(payload["memstats"]["gc_count"]) == 3
    # /debug/vars does not count itself.
    assert payload["http"]["counters"]["http_requests_total"] == 2
    assert payload["http"]["responses"] == {"2xx": 2}


async def test_debug_prefix_without_route_is_404(api_client) -> None:
    resp = await api_client.get("/debug/unknown")
    assert resp.status_code == 404
