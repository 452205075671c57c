# Copyright (c) 2026 Tenantry Contributors. All Rights Reserved.

"""
Metrics — In-memory counters for guard, cache and switch observability.

Counter names used across the service:
  guard:<outcome>            one per access decision
  cache:hit / cache:miss     ScopedCache reads
  cache:invalidated          keys removed by invalidation
  cache:legacy_evicted       keys removed by the legacy sweep
  membership:switch          accepted tenant switches
  membership:stale_discarded in-flight results dropped on arrival
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any, Dict

HISTOGRAM_WINDOW = 1000


class Metrics:
    """Simple in-memory metrics collector."""

    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, list] = defaultdict(list)
        self._start_time = time.time()

    def inc(self, name: str, amount: int = 1) -> None:
        self._counters[name] += amount

    def get_counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def get_gauge(self, name: str) -> float:
        return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        """Record an observation (e.g. guard evaluation time in ms)."""
        window = self._histograms[name]
        window.append(value)
        if len(window) > HISTOGRAM_WINDOW:
            del window[:-HISTOGRAM_WINDOW]

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()

    def snapshot(self) -> Dict[str, Any]:
        """Export all metrics as a dict."""
        result = {
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
        }
        for name, values in self._histograms.items():
            if values:
                result[f"histogram_{name}"] = {
                    "count": len(values),
                    "avg": round(sum(values) / len(values), 2),
                    "max": round(max(values), 2),
                    "min": round(min(values), 2),
                }
        return result


# Global singleton
platform_metrics = Metrics()
