"""Diagnostic endpoints mounted under ``/debug``.

Mirrors the usual pprof/expvar layout:

- ``/debug/pprof/``          index of named profiles
- ``/debug/pprof/{name}``    tasks, threads, heap, gc
- ``/debug/pprof/cmdline``   argv joined by NUL
- ``/debug/pprof/profile``   cProfile of the event loop for ``seconds`` (default 30)
- ``/debug/pprof/symbol``    resolve ``+``-separated dotted names to source locations
- ``/debug/pprof/trace``     call/return events on the event loop for ``seconds`` (default 1)
- ``/debug/vars``            JSON snapshot of process counters
"""

from __future__ import annotations

import asyncio
import cProfile
import gc
import html
import inspect
import io
import math
import pkgutil
import pstats
import sys
import threading
import traceback
import tracemalloc
from collections import Counter
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable
from urllib.parse import unquote

from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from starlette.routing import Route, Router

from httpbase.observability.metrics import get_metrics

try:
    import resource
except ImportError:  # Windows
    resource = None  # type: ignore[assignment]


DEFAULT_PROFILE_SECONDS = 30.0
DEFAULT_TRACE_SECONDS = 1.0
PROFILE_TOP = 50
HEAP_TOP = 25
TRACE_LIMIT = 10_000


def _task_count() -> int:
    try:
        return len(asyncio.all_tasks())
    except RuntimeError:
        return 0


def _render_tasks() -> str:
    buf = io.StringIO()
    for task in asyncio.all_tasks():
        state = "done" if task.done() else "pending"
        buf.write(f"task {task.get_name()} [{state}]\n")
        task.print_stack(file=buf)
        buf.write("\n")
    return buf.getvalue()


def _render_threads() -> str:
    frames = sys._current_frames()
    buf = io.StringIO()
    for thread in threading.enumerate():
        buf.write(f"thread {thread.name} ident={thread.ident} daemon={thread.daemon}\n")
        frame = frames.get(thread.ident) if thread.ident is not None else None
        if frame is not None:
            buf.write("".join(traceback.format_stack(frame)))
        buf.write("\n")
    return buf.getvalue()


def _render_heap() -> str:
    if tracemalloc.is_tracing():
        snapshot = tracemalloc.take_snapshot()
        lines = [str(stat) for stat in snapshot.statistics("lineno")[:HEAP_TOP]]
        return "tracemalloc top allocations\n" + "\n".join(lines) + "\n"

    counts = Counter(type(obj).__qualname__ for obj in gc.get_objects())
    lines = [f"{n:>10} {name}" for name, n in counts.most_common(HEAP_TOP)]
    return "live objects by type\n" + "\n".join(lines) + "\n"


def _render_gc() -> str:
    buf = io.StringIO()
    buf.write(f"count: {gc.get_count()}\n")
    buf.write(f"threshold: {gc.get_threshold()}\n")
    for generation, stats in enumerate(gc.get_stats()):
        buf.write(
            f"generation {generation}: collections={stats['collections']} "
            f"collected={stats['collected']} uncollectable={stats['uncollectable']}\n"
        )
    return buf.getvalue()


@dataclass(frozen=True)
class _Profile:
    description: str
    count: Callable[[], int]
    render: Callable[[], str]


PROFILES: dict[str, _Profile] = {
    "tasks": _Profile("Stack traces of all asyncio tasks on the event loop.", _task_count, _render_tasks),
    "threads": _Profile("Stack traces of all running threads.", threading.active_count, _render_threads),
    "heap": _Profile(
        "Live objects by type, or top allocations when tracemalloc is tracing.",
        lambda: len(gc.get_objects()),
        _render_heap,
    ),
    "gc": _Profile("Garbage collector counters and per-generation stats.", lambda: sum(gc.get_count()), _render_gc),
}


def _seconds(request: Request, default: float) -> float:
    # Missing, unparseable, non-finite or non-positive values fall back to the default.
    try:
        value = float(request.query_params.get("seconds", ""))
    except ValueError:
        return default
    return value if math.isfinite(value) and value > 0 else default


def _lookup_symbol(name: str) -> str:
    try:
        obj = pkgutil.resolve_name(name)
    except (ValueError, ImportError, AttributeError):
        return f"{name} ??"

    obj = inspect.unwrap(obj) if callable(obj) else obj
    try:
        filename = inspect.getsourcefile(obj)
        _, lineno = inspect.getsourcelines(obj)
    except (TypeError, OSError):
        return f"{name} ??"
    return f"{name} {filename}:{max(lineno, 1)}"


def _memstats() -> dict[str, Any]:
    stats: dict[str, Any] = {
        "gc_count": list(gc.get_count()),
        "gc_collections": [generation["collections"] for generation in gc.get_stats()],
        "threads": threading.active_count(),
        "tasks": _task_count(),
    }
    if resource is not None:
        stats["max_rss"] = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    return stats


def debug_app() -> Router:
    """Build the ``/debug`` sub-router. Mount it at ``/debug``."""

    # cProfile and sys.setprofile are both per-process; run one collector at a time.
    collector = asyncio.Lock()

    async def index(request: Request) -> Response:
        rows = "".join(
            f"<tr><td>{profile.count()}</td><td><a href='{name}'>{name}</a></td></tr>\n"
            for name, profile in PROFILES.items()
        )
        descriptions = "".join(
            f"<li><b>{name}:</b> {html.escape(profile.description)}</li>\n" for name, profile in PROFILES.items()
        )
        body = (
            "<html><head><title>/debug/pprof/</title></head><body>\n"
            "/debug/pprof/<br>\n<br>\nTypes of profiles available:\n"
            "<table>\n<thead><td>Count</td><td>Profile</td></thead>\n"
            f"{rows}"
            "</table>\n"
            "<a href='cmdline'>cmdline</a><br>\n"
            "<a href='profile'>profile</a> (30 seconds by default, set ?seconds=)<br>\n"
            "<a href='symbol'>symbol</a><br>\n"
            "<a href='trace?seconds=1'>trace</a><br>\n"
            f"<p>\nProfile Descriptions:\n<ul>\n{descriptions}</ul>\n</p>\n"
            "</body></html>\n"
        )
        return HTMLResponse(body)

    async def named_profile(request: Request) -> Response:
        name = request.path_params["name"]
        profile = PROFILES.get(name)
        if profile is None:
            return PlainTextResponse("Unknown profile\n", status_code=404)
        return PlainTextResponse(profile.render(), headers={"X-Content-Type-Options": "nosniff"})

    async def cmdline(request: Request) -> Response:
        return PlainTextResponse("\x00".join(sys.argv), headers={"X-Content-Type-Options": "nosniff"})

    async def profile(request: Request) -> Response:
        seconds = _seconds(request, DEFAULT_PROFILE_SECONDS)
        if collector.locked():
            return PlainTextResponse("Could not enable profiling: collector already in use\n", status_code=500)

        async with collector:
            profiler = cProfile.Profile()
            try:
                profiler.enable()
            except ValueError as exc:
                return PlainTextResponse(f"Could not enable profiling: {exc}\n", status_code=500)
            try:
                await asyncio.sleep(seconds)
            finally:
                profiler.disable()

        buf = io.StringIO()
        pstats.Stats(profiler, stream=buf).sort_stats("cumulative").print_stats(PROFILE_TOP)
        return PlainTextResponse(
            buf.getvalue(),
            headers={"Content-Disposition": 'attachment; filename="profile"', "X-Content-Type-Options": "nosniff"},
        )

    async def symbol(request: Request) -> Response:
        if request.method == "POST":
            raw = (await request.body()).decode("utf-8", errors="replace")
        else:
            raw = request.url.query

        lines = ["num_symbols: 1"]
        for word in raw.strip().split("+"):
            name = unquote(word).strip()
            if name:
                lines.append(_lookup_symbol(name))
        return PlainTextResponse("\n".join(lines) + "\n", headers={"X-Content-Type-Options": "nosniff"})

    async def trace(request: Request) -> Response:
        seconds = _seconds(request, DEFAULT_TRACE_SECONDS)
        if collector.locked():
            return PlainTextResponse("Could not enable tracing: collector already in use\n", status_code=500)

        events: list[tuple[float, str, str, str, int]] = []
        origin = perf_counter()

        def tracer(frame: Any, event: str, arg: Any) -> None:
            if event not in ("call", "return") or len(events) >= TRACE_LIMIT:
                return
            code = frame.f_code
            events.append((perf_counter() - origin, event, code.co_name, code.co_filename, code.co_firstlineno))

        async with collector:
            previous = sys.getprofile()
            sys.setprofile(tracer)
            try:
                await asyncio.sleep(seconds)
            finally:
                sys.setprofile(previous)

        buf = io.StringIO()
        buf.write(f"# {len(events)} events over {seconds:g}s (limit {TRACE_LIMIT})\n")
        for offset, event, func, filename, lineno in events:
            buf.write(f"{offset * 1e6:14.1f}us {event:<6} {func} {filename}:{lineno}\n")
        return PlainTextResponse(
            buf.getvalue(),
            headers={"Content-Disposition": 'attachment; filename="trace"', "X-Content-Type-Options": "nosniff"},
        )

    async def expvars(request: Request) -> Response:
        return JSONResponse(
            {
                "cmdline": list(sys.argv),
                "memstats": _memstats(),
                "http": get_metrics().snapshot(),
            }
        )

    return Router(
        routes=[
            Route("/pprof/", index, methods=["GET"]),
            Route("/pprof/cmdline", cmdline, methods=["GET"]),
            Route("/pprof/profile", profile, methods=["GET"]),
            Route("/pprof/symbol", symbol, methods=["GET", "POST"]),
            Route("/pprof/trace", trace, methods=["GET"]),
            Route("/pprof/{name}", named_profile, methods=["GET"]),
            Route("/vars", expvars, methods=["GET"]),
        ]
    )
