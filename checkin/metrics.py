from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any


_DEFAULT_MS_BUCKETS = (25, 50, 100, 250, 500, 1000, 2000, 4000, 8000)
_RECENT_SAMPLES = 256


def _prom_name(name: str) -> str:
    # Prometheus does not allow '.' in metric names.
    return (name or "").replace(".", "_")


@dataclass
class Histogram:
    """Cumulative bucket counts plus a short window of recent samples."""

    buckets: tuple[int, ...]
    bucket_counts: list[int] = field(default_factory=list)
    count: int = 0
    total: int = 0
    recent: deque[int] = field(default_factory=lambda: deque(maxlen=_RECENT_SAMPLES))

    def __post_init__(self) -> None:
        if not self.bucket_counts:
            self.bucket_counts = [0] * len(self.buckets)

    def observe(self, value: int) -> None:
        v = int(value)
        self.count += 1
        self.total += v
        self.recent.append(v)
        for i, b in enumerate(self.buckets):
            if v <= b:
                self.bucket_counts[i] += 1


@dataclass
class Metrics:
    counters: dict[str, int] = field(default_factory=dict)
    histograms: dict[str, Histogram] = field(default_factory=dict)
    gauges: dict[str, int] = field(default_factory=dict)
    ms_buckets: tuple[int, ...] = _DEFAULT_MS_BUCKETS

    def inc(self, name: str, value: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + value

    def observe(self, name: str, value: int) -> None:
        h = self.histograms.get(name)
        if h is None:
            h = self.histograms[name] = Histogram(buckets=self.ms_buckets)
        h.observe(value)

    def set(self, name: str, value: int) -> None:
        self.gauges[name] = int(value)

    def get(self, name: str) -> int:
        return int(self.counters.get(name, 0))

    def get_hist(self, name: str) -> list[int]:
        """Most recent samples only; totals live in the bucket counts."""
        h = self.histograms.get(name)
        return list(h.recent) if h is not None else []

    def get_gauge(self, name: str) -> int:
        return int(self.gauges.get(name, 0))

    def snapshot(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "histograms": {
                k: {"count": h.count, "sum": h.total, "buckets": dict(zip(h.buckets, h.bucket_counts))}
                for k, h in self.histograms.items()
            },
            "gauges": dict(self.gauges),
        }

    def render(self) -> str:
        """Prometheus text exposition of the current values."""
        lines: list[str] = []
        for name in sorted(self.counters):
            key = _prom_name(name)
            lines.append(f"# TYPE {key} counter")
            lines.append(f"{key} {int(self.counters[name])}")

        for name in sorted(self.histograms):
            key = _prom_name(name)
            h = self.histograms[name]
            lines.append(f"# TYPE {key} histogram")
            for b, n in zip(h.buckets, h.bucket_counts):
                lines.append(f'{key}_bucket{{le="{int(b)}"}} {n}')
            lines.append(f'{key}_bucket{{le="+Inf"}} {h.count}')
            lines.append(f"{key}_sum {h.total}")
            lines.append(f"{key}_count {h.count}")

        for name in sorted(self.gauges):
            key = _prom_name(name)
            lines.append(f"# TYPE {key} gauge")
            lines.append(f"{key} {int(self.gauges[name])}")
        return "\n".join(lines) + "\n"


TRIAGE = {
    # Oracle
    "oracle_requests_total": "oracle.requests_total",
    "oracle_failures_total": "oracle.failures_total",
    "oracle_timeouts_total": "oracle.timeouts_total",
    "oracle_malformed_total": "oracle.malformed_total",
    "context_fetch_total": "context.fetch_total",
    # Decisions
    "fallback_decisions_total": "decision.fallback_total",
    "decision_overrides_total": "decision.override_total",
    "hard_stop_total": "safety.hard_stop_total",
    # Sessions
    "sessions_started_total": "session.started_total",
    "sessions_completed_total": "session.completed_total",
    "turn_cap_total": "session.turn_cap_total",
    "identity_attempts_total": "identity.attempts_total",
    "sessions_active": "session.active",
    # Sinks
    "summary_sink_errors_total": "summary.sink_errors_total",
    # Latency
    "turn_latency_ms": "turn.latency_ms",
}
