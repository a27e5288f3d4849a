"""
Handle-based registry of device buffers.

Every buffer a layer uses is created here and referred to by an integer
handle. Handles come from one monotonically increasing counter and are never
reused, so a stale handle can never silently alias a newer buffer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from .errors import InvalidHandle

logger = logging.getLogger(__name__)


@dataclass
class Buffer:
    """A fixed-size region of device memory owned by the registry."""

    handle: int
    size: int
    dtype: str
    memory: Any
    written: bool = False

    def mark_written(self) -> None:
        self.written = True


class BufferRegistry:
    """
    Arena of live buffers keyed by handle.

    One registry belongs to one ExecutionContext and allocates through that
    context's backend. Statistics double as an allocation probe:

        >>> reg = BufferRegistry(backend)
        >>> h = reg.create_buffer(1024)
        >>> reg.stats()["live"]
        1
        >>> reg.release_buffer(h)
    """

    def __init__(self, backend):
        self.backend = backend
        self._buffers: Dict[int, Buffer] = {}
        self._next_handle = 1
        self._stats = {
            "allocations": 0,
            "releases": 0,
            "live_elements": 0,
            "peak_elements": 0,
        }

    def create_buffer(self, size: int) -> int:
        size = int(size)
        if size <= 0:
            raise ValueError(f"buffer size must be positive, got {size}")
        memory = self.backend.allocate(size)
        handle = self._next_handle
        self._next_handle += 1
        self._buffers[handle] = Buffer(handle=handle, size=size, dtype=self.backend.dtype_name, memory=memory)

        self._stats["allocations"] += 1
        self._stats["live_elements"] += size
        self._stats["peak_elements"] = max(self._stats["peak_elements"], self._stats["live_elements"])
        logger.debug(f"create_buffer handle={handle} size={size}")
        return handle

    def get_buffer(self, handle: int) -> Buffer:
        buf = self._buffers.get(handle)
        if buf is None:
            raise InvalidHandle(f"buffer handle {handle} is not live", handle=handle, call="get_buffer")
        return buf

    def release_buffer(self, handle: int) -> None:
        buf = self._buffers.pop(handle, None)
        if buf is None:
            raise InvalidHandle(f"buffer handle {handle} is not live", handle=handle, call="release_buffer")
        self.backend.free(buf.memory)
        buf.memory = None

        self._stats["releases"] += 1
        self._stats["live_elements"] -= buf.size
        logger.debug(f"release_buffer handle={handle} size={buf.size}")

    def is_live(self, handle) -> bool:
        return handle in self._buffers

    def release_all(self) -> int:
        """Release every live buffer; returns how many were released."""
        handles = list(self._buffers)
        for handle in handles:
            self.release_buffer(handle)
        return len(handles)

    def stats(self) -> Dict[str, int]:
        data = dict(self._stats)
        data["live"] = len(self._buffers)
        return data

    def __len__(self) -> int:
        return len(self._buffers)

    def __contains__(self, handle) -> bool:
        return self.is_live(handle)
