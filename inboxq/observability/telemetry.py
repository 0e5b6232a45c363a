"""
Lightweight telemetry helpers.

Nothing is shipped anywhere: events go to the ``inboxq.telemetry`` logger and
counters/latencies stay in memory, so tests and run logs can assert on them.
Latency samples are bounded per metric because the API process is long-lived.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections import deque
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("inboxq.telemetry")

MAX_LATENCY_SAMPLES = 500

_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, deque[float]] = {}


def _latency_name(metric_name: str) -> str:
    if metric_name.endswith(".latency"):
        return f"{metric_name}_ms"
    return metric_name


def log_event(event_name: str, **fields: Any) -> None:
    """Structured info-level event. Callers pass ids or hashes, never message content."""
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    value = _COUNTERS.get(name, 0) + increment
    _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


def reset_counters() -> None:
    """Clear counters and latency samples (tests)."""
    _COUNTERS.clear()
    _LATENCIES.clear()


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """Record the block's wall time in milliseconds, even when it raises."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        name = _latency_name(metric_name)
        logger.debug("timing=%s ms=%.1f", name, elapsed_ms)
        _LATENCIES.setdefault(name, deque(maxlen=MAX_LATENCY_SAMPLES)).append(elapsed_ms)


def get_latency_stats(metric_name: str) -> dict[str, float]:
    """count/last/avg/p95 in milliseconds over the retained samples."""
    samples = list(_LATENCIES.get(_latency_name(metric_name), ()))
    if not samples:
        return {"count": 0, "last_ms": 0.0, "avg_ms": 0.0, "p95_ms": 0.0}

    ordered = sorted(samples)
    p95_index = min(int(len(ordered) * 0.95), len(ordered) - 1)
    return {
        "count": len(samples),
        "last_ms": round(samples[-1], 1),
        "avg_ms": round(sum(samples) / len(samples), 1),
        "p95_ms": round(ordered[p95_index], 1),
    }
