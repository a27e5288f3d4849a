"""
Top-level dnnbench package exports (lightweight).

To keep imports fast and avoid importing heavy optional backends (e.g., torch)
on package import, we lazily import public symbols on first access.
"""
from __future__ import annotations

import importlib
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "ExecutionContext",
    "LayerChain",
    "load_chain",
    "create_layer",
    "LayerType",
    "ShapeDescriptor",
    "StandaloneInput",
    "ComposedInput",
    "get_backend",
    "detect_hardware",
    "errors",
    "params",
]

_LAZY = {
    "ExecutionContext": ".context",
    "LayerChain": ".chain",
    "load_chain": ".chain",
    "create_layer": ".layers",
    "LayerType": ".layers",
    "ShapeDescriptor": ".shape",
    "StandaloneInput": ".shape",
    "ComposedInput": ".shape",
    "get_backend": ".backends",
    "detect_hardware": ".hardware",
}


def __getattr__(name: str) -> Any:  # lazy attribute loader
    if name in _LAZY:
        value = getattr(importlib.import_module(_LAZY[name], __name__), name)
        # Cache on the package module to avoid repeated imports
        globals()[name] = value
        return value
    if name in ("errors", "params"):
        module = importlib.import_module(__name__ + "." + name)
        globals()[name] = module
        return module
    raise AttributeError(f"module 'dnnbench' has no attribute {name!r}")
