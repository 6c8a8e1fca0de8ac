from __future__ import annotations

from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any


@dataclass
class _LatencyAgg:
    count: int = 0
    sum_ms: float = 0.0
    max_ms: float = 0.0

    def observe(self, elapsed_ms: float) -> None:
        self.count += 1
        self.sum_ms += float(elapsed_ms)
        if elapsed_ms > self.max_ms:
            self.max_ms = float(elapsed_ms)


def _status_class(status: int) -> str:
    if 100 <= status <= 599:
        return f"{status // 100}xx"
    return "unknown"


class InMemoryMetrics:
    """Thread-safe, process-local HTTP counters (reset on restart)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.http_requests_total: int = 0
        self.http_bytes_total: int = 0
        self.http_panics_total: int = 0
        self.http_responses: dict[str, int] = {}
        self.http_request_ms = _LatencyAgg()

    def observe_http_request(self, elapsed_ms: float, status: int, num_bytes: int) -> None:
        with self._lock:
            self.http_requests_total += 1
            self.http_bytes_total += num_bytes
            key = _status_class(status)
            self.http_responses[key] = self.http_responses.get(key, 0) + 1
            self.http_request_ms.observe(elapsed_ms)

    def observe_panic(self) -> None:
        with self._lock:
            self.http_panics_total += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": {
                    "http_requests_total": self.http_requests_total,
                    "http_bytes_total": self.http_bytes_total,
                    "http_panics_total": self.http_panics_total,
                },
                "responses": dict(self.http_responses),
                "latency_ms": {
                    "http_request_ms": asdict(self.http_request_ms),
                },
            }

    def reset(self) -> None:
        with self._lock:
            self.http_requests_total = 0
            self.http_bytes_total = 0
            self.http_panics_total = 0
            self.http_responses = {}
            self.http_request_ms = _LatencyAgg()


_METRICS: InMemoryMetrics | None = None


def get_metrics() -> InMemoryMetrics:
    global _METRICS
    if _METRICS is None:
        _METRICS = InMemoryMetrics()
    return _METRICS


def reset_metrics() -> None:
    """Reset metrics counters/aggregates (used by tests)."""

    get_metrics().reset()
