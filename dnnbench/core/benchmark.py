# dnnbench/core/benchmark.py
"""
Timing helpers. Ensures warm-up and correct device synchronization.
"""
from statistics import mean, median
from time import perf_counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence


def time_runs(
    fn: Callable[..., Any],
    args: Iterable = (),
    runs: int = 5,
    warmup: int = 3,
    sync_fn: Optional[Callable[[], None]] = None,
) -> List[float]:
    """
    Time callable `fn(*args)`:
      - runs warmup times (not timed)
      - runs `runs` times and returns every wall time in seconds
      - if sync_fn is provided, it's called before starting and after each run to ensure device completion
    """
    args = tuple(args)
    for _ in range(warmup):
        fn(*args)
        if sync_fn:
            sync_fn()

    timings: List[float] = []
    for _ in range(runs):
        if sync_fn:
            sync_fn()
        t0 = perf_counter()
        fn(*args)
        if sync_fn:
            sync_fn()
        timings.append(perf_counter() - t0)
    return timings


def benchmark_callable(
    fn: Callable[..., Any],
    args: Iterable = (),
    runs: int = 5,
    warmup: int = 3,
    sync_fn: Optional[Callable[[], None]] = None,
) -> float:
    """Median of time_runs(); the figure used for algorithm ranking."""
    return median(time_runs(fn, args, runs=runs, warmup=warmup, sync_fn=sync_fn))


def summarize(timings: Sequence[float]) -> Dict[str, float]:
    """min/median/mean/max in milliseconds; empty input gives zeros."""
    if not timings:
        return {"count": 0, "min_ms": 0.0, "median_ms": 0.0, "mean_ms": 0.0, "max_ms": 0.0}
    ms = [t * 1e3 for t in timings]
    return {
        "count": len(ms),
        "min_ms": min(ms),
        "median_ms": median(ms),
        "mean_ms": mean(ms),
        "max_ms": max(ms),
    }
