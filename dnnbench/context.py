"""
Per-run execution context shared by every layer of a benchmark.

It bundles the backend, the buffer registry allocating through it and the
data filler, and brackets timed work in profiling regions.
"""

import logging
from collections import defaultdict
from contextlib import contextmanager
from time import perf_counter
from typing import Dict, Iterator, List, Optional

from . import config as _cfg
from .buffers import BufferRegistry
from .filler import DataFiller

logger = logging.getLogger(__name__)


class ExecutionContext:
    """
    Backend + BufferRegistry + DataFiller for one benchmark run.

    Args:
        backend: Backend instance or name ("auto", "numpy", "torch"); None
            reads DNNBENCH_BACKEND.
        seed: Filler seed; None reads DNNBENCH_SEED.
        profile: Emit backend profiler start/stop around profiling regions;
            None reads DNNBENCH_PROFILE.
    """

    def __init__(self, backend=None, seed: Optional[int] = None, profile: Optional[bool] = None, dtype: Optional[str] = None):
        if backend is None or isinstance(backend, str):
            from .backends import get_backend

            backend = get_backend(backend, dtype=dtype)
        self.backend = backend
        self.registry = BufferRegistry(backend)
        self.filler = DataFiller(seed)
        self.profile = bool(_cfg.get("DNNBENCH_PROFILE")) if profile is None else bool(profile)
        self.timings: Dict[str, List[float]] = defaultdict(list)
        self._next_layer_id = 0

    def next_layer_id(self) -> int:
        layer_id = self._next_layer_id
        self._next_layer_id += 1
        return layer_id

    def fill(self, handle: int) -> None:
        self.filler.fill(self.registry, handle)

    @contextmanager
    def profiling_region(self, name: str) -> Iterator[None]:
        """Time the enclosed device work and record it under `name`."""
        self.backend.synchronize()
        if self.profile:
            self.backend.profiler_start()
        t0 = perf_counter()
        try:
            yield
            self.backend.synchronize()
        finally:
            elapsed = perf_counter() - t0
            if self.profile:
                self.backend.profiler_stop()
        self.timings[name].append(elapsed)

    def reset_timings(self) -> None:
        self.timings.clear()

    def close(self) -> int:
        """Release every buffer still live in the registry."""
        released = self.registry.release_all()
        if released:
            logger.debug(f"context closed, released {released} buffer(s)")
        return released

    def __enter__(self) -> "ExecutionContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<ExecutionContext(backend={self.backend.name}, live_buffers={len(self.registry)})>"
