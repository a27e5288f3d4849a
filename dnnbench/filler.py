"""Seeded initialisation of buffer contents before timed compute."""

from typing import Optional

import numpy as np

from . import config as _cfg


class DataFiller:
    """Writes uniform values in [-1, 1) into registry buffers.

    One generator drives every fill, so a run with the same seed, shapes and
    call order produces the same data.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = int(_cfg.get("DNNBENCH_SEED")) if seed is None else int(seed)
        self.rng = np.random.default_rng(self.seed)

    def fill(self, registry, handle: int) -> None:
        buf = registry.get_buffer(handle)
        registry.backend.fill(buf.memory, self.rng)
        buf.mark_written()
