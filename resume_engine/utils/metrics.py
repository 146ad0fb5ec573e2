"""
In-process metrics for the processing pipeline.

Counters and rolling histograms for stage durations, external call outcomes
and state transitions. Snapshots are served at /metrics.
"""

import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, Any, List

from resume_engine.utils.logger import get_logger

logger = get_logger("metrics")

_counters: Dict[str, int] = defaultdict(int)
_histograms: Dict[str, List[float]] = defaultdict(list)

MAX_HISTOGRAM_SAMPLES = 500  # Rolling window


def inc(name: str, value: int = 1) -> None:
    """Increment a counter."""
    _counters[name] += value


def observe(name: str, value: float) -> None:
    """Record a histogram observation (e.g., duration)."""
    bucket = _histograms[name]
    bucket.append(value)
    if len(bucket) > MAX_HISTOGRAM_SAMPLES:
        _histograms[name] = bucket[-MAX_HISTOGRAM_SAMPLES:]


@asynccontextmanager
async def track_duration(component: str, operation: str = "call"):
    """
    Time a block and count its success or failure.

    Usage:
        async with track_duration("pipeline", "parsing"):
            record = await extractor.extract(text, file_type)
    """
    start = time.monotonic()
    outcome = "success"
    try:
        yield
    except Exception:
        outcome = "error"
        raise
    finally:
        duration_ms = (time.monotonic() - start) * 1000
        observe(f"{component}.{operation}.duration_ms", duration_ms)
        inc(f"{component}.{operation}.{outcome}")
        log_fn = logger.info if outcome == "success" else logger.warning
        log_fn(
            "metrics.call",
            extra={
                "service": component,
                "stage": operation,
                "duration_ms": round(duration_ms, 1),
                "status": outcome,
            },
        )


def _percentile(sorted_samples: List[float], fraction: float) -> float:
    idx = min(int(len(sorted_samples) * fraction), len(sorted_samples) - 1)
    return round(sorted_samples[idx], 1)


def get_snapshot() -> Dict[str, Any]:
    """Return a snapshot of all counters and histogram summaries."""
    summaries = {}
    for name, samples in _histograms.items():
        if not samples:
            continue
        ordered = sorted(samples)
        summaries[name] = {
            "count": len(ordered),
            "p50": _percentile(ordered, 0.5),
            "p95": _percentile(ordered, 0.95),
            "max": round(ordered[-1], 1),
        }
    return {"counters": dict(_counters), "histograms": summaries}


def reset() -> None:
    """Reset all metrics (used by tests)."""
    _counters.clear()
    _histograms.clear()
