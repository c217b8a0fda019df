"""In-process run metrics.

Counters (``fetch.success``, ``snapshot.failed``, ...) and timing samples
collected while a batch run executes. One collector per tracker; the
snapshot is attached to run reports.
"""

from __future__ import annotations

import math
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Iterator


def _percentile(sorted_data: list[float], pct: float) -> float:
    """Linear-interpolated percentile over pre-sorted data."""
    if not sorted_data:
        return 0.0
    k = (len(sorted_data) - 1) * (pct / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_data[int(k)]
    return sorted_data[f] * (c - k) + sorted_data[c] * (k - f)


def _timing_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}
    s = sorted(values)
    return {
        "count": len(s),
        "min": round(s[0], 4),
        "max": round(s[-1], 4),
        "avg": round(sum(s) / len(s), 4),
        "p50": round(_percentile(s, 50), 4),
        "p95": round(_percentile(s, 95), 4),
    }


class MetricsCollector:
    """Counters and timings for one tracker instance."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._timings: dict[str, list[float]] = defaultdict(list)

    def incr(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def observe(self, name: str, seconds: float) -> None:
        self._timings[name].append(seconds)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        start = time.monotonic()
        try:
            yield
        finally:
            self.observe(name, time.monotonic() - start)

    def counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def snapshot(self) -> dict[str, Any]:
        """JSON-serializable view of all counters and timings."""
        return {
            "counters": dict(self._counters),
            "timings": {k: _timing_stats(v) for k, v in self._timings.items()},
        }

    def reset(self) -> None:
        self._counters.clear()
        self._timings.clear()
