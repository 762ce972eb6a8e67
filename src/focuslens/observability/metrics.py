"""Pipeline metrics instrumentation.

In-process metrics collector tracking:
  - Throughput counters for ingestion, aggregation and insight generation
  - Failure and skip counters (labeled by reason)
  - Latency histograms for event processing and insight generation

All state is held in a single process-global singleton. Snapshots are
exported as plain dicts on /metrics.

Counters and histograms use an asyncio.Lock so they are safe from
concurrent coroutines. Sync callers (rate limiter callbacks, tests) use
``inc_sync`` and ``snapshot_sync``.
"""

from __future__ import annotations

import asyncio
import bisect
import math
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator


# ---------------------------------------------------------------------------
# Histogram implementation
# ---------------------------------------------------------------------------

# Upper bounds in milliseconds. Event handling sits in the low buckets, a
# completion call in the seconds range.
LATENCY_BUCKETS_MS: tuple[float, ...] = (
    5, 25, 100, 250, 1_000, 2_500, 5_000, 10_000, 30_000, float("inf"),
)


class Histogram:
    """Bucketed latency samples with a running sum and maximum."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.buckets = [0] * len(LATENCY_BUCKETS_MS)
        self.count = 0
        self.total_ms = 0.0
        self.max_ms = 0.0

    def record(self, value_ms: float) -> None:
        self.buckets[bisect.bisect_left(LATENCY_BUCKETS_MS, value_ms)] += 1
        self.count += 1
        self.total_ms += value_ms
        self.max_ms = max(self.max_ms, value_ms)

    def percentile(self, p: float) -> float:
        """Upper bound of the bucket holding the p-th sample (max for the open bucket)."""
        if not self.count:
            return 0.0
        rank = math.ceil(p / 100 * self.count)
        seen = 0
        for bound, n in zip(LATENCY_BUCKETS_MS, self.buckets):
            seen += n
            if seen >= rank:
                return self.max_ms if math.isinf(bound) else bound
        return self.max_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "mean_ms": round(self.total_ms / self.count, 2) if self.count else 0.0,
            "max_ms": round(self.max_ms, 2),
            "p50_ms": self.percentile(50),
            "p95_ms": self.percentile(95),
            "buckets": {
                "+Inf" if math.isinf(bound) else f"le_{bound:g}": n
                for bound, n in zip(LATENCY_BUCKETS_MS, self.buckets)
            },
        }


# ---------------------------------------------------------------------------
# MetricsCollector
# ---------------------------------------------------------------------------

class MetricsCollector:
    """Process-global metrics registry.

    Counters:
        events_ingested_total          Events appended by the gateway
        events_processed_total         Events newly stored and aggregated
        events_duplicate_total         Events skipped because event_id was stored
        records_failed_total[stage]    Records consumed without being handled
        alerts_queued_total[rule]      Alert tasks appended to the task stream
        insights_generated_total       Insight rows written
        tasks_skipped_total[reason]    Tasks consumed without an insight
        rate_limit_waits_total         Times the completion limiter blocked

    Histograms (milliseconds):
        event_processing_ms            One event through storage and rules
        insight_generation_ms          One completion call, retries included
    """

    HISTOGRAMS = ("event_processing_ms", "insight_generation_ms")

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._labeled_counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._histograms: dict[str, Histogram] = {
            name: Histogram(name) for name in self.HISTOGRAMS
        }
        self._started_at: float = time.monotonic()

    @property
    def uptime_seconds(self) -> float:
        return round(time.monotonic() - self._started_at, 1)

    # ------------------------------------------------------------------
    # Async increment / record
    # ------------------------------------------------------------------

    async def inc(self, name: str, value: int = 1) -> None:
        async with self._lock:
            self._counters[name] += value

    async def inc_labeled(self, name: str, label: str, value: int = 1) -> None:
        """Bump both the total and the per-label count."""
        async with self._lock:
            self._counters[name] += value
            self._labeled_counters[name][label] += value

    async def record(self, histogram: str, value_ms: float) -> None:
        async with self._lock:
            if histogram in self._histograms:
                self._histograms[histogram].record(value_ms)

    # ------------------------------------------------------------------
    # Sync variants
    # ------------------------------------------------------------------

    def inc_sync(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    @asynccontextmanager
    async def timer(self, histogram: str) -> AsyncIterator[None]:
        """Async context manager that records elapsed ms."""
        t0 = time.monotonic()
        try:
            yield
        finally:
            await self.record(histogram, (time.monotonic() - t0) * 1000)

    # ------------------------------------------------------------------
    # Named helpers used by the pipeline
    # ------------------------------------------------------------------

    async def event_ingested(self) -> None:
        await self.inc("events_ingested_total")

    async def event_processed(self, duplicate: bool) -> None:
        await self.inc("events_duplicate_total" if duplicate else "events_processed_total")

    async def record_failed(self, stage: str) -> None:
        await self.inc_labeled("records_failed_total", stage)

    async def alert_queued(self, rule: str) -> None:
        await self.inc_labeled("alerts_queued_total", rule)

    async def insight_generated(self, elapsed_ms: float) -> None:
        await self.inc("insights_generated_total")
        await self.record("insight_generation_ms", elapsed_ms)

    async def task_skipped(self, reason: str) -> None:
        await self.inc_labeled("tasks_skipped_total", reason)

    def rate_limit_waited(self, wait_seconds: float) -> None:
        self.inc_sync("rate_limit_waits_total")

    # ------------------------------------------------------------------
    # Snapshot / export
    # ------------------------------------------------------------------

    async def snapshot(self) -> dict[str, Any]:
        async with self._lock:
            return self.snapshot_sync()

    def snapshot_sync(self) -> dict[str, Any]:
        return {
            "uptime_seconds": self.uptime_seconds,
            "counters": dict(self._counters),
            "labeled_counters": {k: dict(v) for k, v in self._labeled_counters.items()},
            "histograms": {k: v.to_dict() for k, v in self._histograms.items()},
        }

    def reset_all(self) -> None:
        """Zero every counter and histogram. Tests only."""
        self._counters.clear()
        self._labeled_counters.clear()
        self._histograms = {name: Histogram(name) for name in self.HISTOGRAMS}


# ---------------------------------------------------------------------------
# Process-global singleton
# ---------------------------------------------------------------------------

_collector: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Return (or lazily create) the process-global MetricsCollector."""
    global _collector
    if _collector is None:
        _collector = MetricsCollector()
    return _collector
