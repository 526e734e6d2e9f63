# arenatickets/infra/timings.py
from __future__ import annotations
import statistics
import time
from collections import deque
from typing import Deque, Dict, List

# samples kept per kind; older ones fall off as new ones arrive
WINDOW = 10_000

# ------------ hot path: append only ------------
# one ring per kind; no locks, single-threaded event loop
_TIMINGS: Dict[str, Deque[float]] = {}


def now_ts() -> float:
    # monotonic for durations
    return time.perf_counter()


def record_timing(kind: str, value: float) -> None:
    ring = _TIMINGS.get(kind)
    if ring is None:
        ring = deque(maxlen=WINDOW)
        _TIMINGS[kind] = ring
    ring.append(float(value))


class timeit:
    """async usage:
        async with timeit("ledger.insert"):
            await fn()
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self._kind, now_ts() - self._t0)


# ------------ stats only on demand ------------

def _mean_std(values: Deque[float]) -> tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return (
        statistics.mean(values),
        statistics.stdev(values) if len(values) > 1 else 0.0
    )


def snapshot() -> List[Dict[str, float]]:
    """One aggregate per kind over its last WINDOW samples:
    {"kind","n","mean","std","max"} (seconds)."""
    out = []
    for kind, vals in sorted(_TIMINGS.items()):
        mean, std = _mean_std(vals)
        out.append({
            "kind": kind,
            "n": len(vals),
            "mean": mean,
            "std": std,
            "max": max(vals) if vals else 0.0,
        })
    return out


def reset() -> None:
    _TIMINGS.clear()
