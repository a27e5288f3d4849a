"""Backend facade with lazy imports.

Avoid importing optional heavy dependencies (torch) at module import time.
Import only when attributes are actually used.
"""
from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "Backend",
    "BackendCapabilities",
    "NumpyBackend",
    "TorchBackend",
    "is_torch_available",
    "available_backends",
    "get_backend",
]

_BACKEND_NAMES = ("numpy", "torch")


def __getattr__(name: str) -> Any:
    if name in ("Backend", "BackendCapabilities"):
        from . import base

        return getattr(base, name)
    if name == "NumpyBackend":
        from .numpy_backend import NumpyBackend

        return NumpyBackend
    if name in ("TorchBackend", "is_torch_available"):
        from . import torch_backend

        return getattr(torch_backend, name)
    raise AttributeError(name)


def available_backends():
    from .torch_backend import is_torch_available

    names = ["numpy"]
    if is_torch_available():
        names.append("torch")
    return names


def get_backend(name: Optional[str] = None, dtype: Optional[str] = None):
    """Build and initialize a backend.

    `name` defaults to DNNBENCH_BACKEND; "auto" picks torch when it finds a
    CUDA or MPS device, otherwise numpy.
    """
    from .. import config as _cfg
    from ..errors import BackendUnavailable

    name = (name or _cfg.get("DNNBENCH_BACKEND")).lower()
    dtype = dtype or _cfg.get("DNNBENCH_DTYPE")
    if name == "auto":
        from .torch_backend import _torch_device_preference

        device = _torch_device_preference()
        name = "torch" if device is not None and device.type != "cpu" else "numpy"

    if name == "numpy":
        from .numpy_backend import NumpyBackend

        backend = NumpyBackend(dtype=dtype)
    elif name == "torch":
        from .torch_backend import TorchBackend

        backend = TorchBackend(dtype=dtype)
    else:
        raise BackendUnavailable(f"unknown backend '{name}' (expected auto or one of {list(_BACKEND_NAMES)})")

    if not backend.initialize():
        raise BackendUnavailable(f"backend '{name}' unavailable: {backend.capabilities.error_msg}")
    return backend
