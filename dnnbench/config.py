"""Central environment configuration for dnnbench.

Provides typed accessors and a registry of known DNNBENCH_* variables so the
CLI, the backends and the layers read settings from one place. Values are
parsed on every `get()` call, which keeps monkeypatched environments in tests
effective without reloading modules.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


@dataclass(frozen=True)
class EnvVarMeta:
    name: str
    description: str
    default: Any
    parser: Callable[[str], Any]
    choices: Optional[List[str]] = None
    category: str = "general"


def _parse_bool(val: str) -> bool:
    return str(val).lower() in ("1", "true", "yes", "on")


def _parse_int(val: str) -> int:
    try:
        return int(val)
    except Exception:
        return 0


def _parse_choice(val: str) -> str:
    return str(val).strip().lower()


def _identity(val: str) -> str:
    return val


_REGISTRY: Dict[str, EnvVarMeta] = {
    # Backend selection
    "DNNBENCH_BACKEND": EnvVarMeta(
        name="DNNBENCH_BACKEND",
        description="Compute backend: auto picks torch on an accelerator, else numpy",
        default="auto",
        parser=_parse_choice,
        choices=["auto", "numpy", "torch"],
        category="backend",
    ),
    "DNNBENCH_DTYPE": EnvVarMeta(
        name="DNNBENCH_DTYPE",
        description="Element type of every device buffer",
        default="float32",
        parser=_parse_choice,
        choices=["float32", "float64"],
        category="backend",
    ),
    "DNNBENCH_DEVICE_MEMORY_LIMIT": EnvVarMeta(
        name="DNNBENCH_DEVICE_MEMORY_LIMIT",
        description="Simulated device capacity in elements for the numpy backend (0 = unlimited)",
        default="0",
        parser=_parse_int,
        category="backend",
    ),
    "DNNBENCH_PROFILE": EnvVarMeta(
        name="DNNBENCH_PROFILE",
        description="Emit backend profiler start/stop markers around timed regions",
        default="0",
        parser=_parse_bool,
        category="backend",
    ),
    # Layer behavior
    "DNNBENCH_SCRATCH_LIFETIME": EnvVarMeta(
        name="DNNBENCH_SCRATCH_LIFETIME",
        description="Convolution scratch lifetime: run (setup..teardown) or call (per forward)",
        default="run",
        parser=_parse_choice,
        choices=["run", "call"],
        category="layers",
    ),
    "DNNBENCH_CONV_FWD_PREF": EnvVarMeta(
        name="DNNBENCH_CONV_FWD_PREF",
        description="Default convolution forward algorithm preference",
        default="prefer_fastest",
        parser=_parse_choice,
        choices=["prefer_fastest", "no_workspace", "specify_workspace_limit"],
        category="layers",
    ),
    "DNNBENCH_WORKSPACE_LIMIT": EnvVarMeta(
        name="DNNBENCH_WORKSPACE_LIMIT",
        description="Workspace limit in elements for specify_workspace_limit",
        default="0",
        parser=_parse_int,
        category="layers",
    ),
    "DNNBENCH_SEED": EnvVarMeta(
        name="DNNBENCH_SEED",
        description="Seed of the buffer data filler",
        default="0",
        parser=_parse_int,
        category="layers",
    ),
    # Timing
    "DNNBENCH_WARMUP": EnvVarMeta(
        name="DNNBENCH_WARMUP",
        description="Untimed forward passes before measurement",
        default="3",
        parser=_parse_int,
        category="timing",
    ),
    "DNNBENCH_ITERATIONS": EnvVarMeta(
        name="DNNBENCH_ITERATIONS",
        description="Timed forward passes per benchmark",
        default="10",
        parser=_parse_int,
        category="timing",
    ),
    # Logging
    "DNNBENCH_LOG_LEVEL": EnvVarMeta(
        name="DNNBENCH_LOG_LEVEL",
        description="Override log verbosity (DEBUG,INFO,WARNING,ERROR)",
        default="INFO",
        parser=_identity,
        category="logging",
    ),
}


def get(name: str) -> Any:
    meta = _REGISTRY.get(name)
    if not meta:
        return os.environ.get(name)
    raw = os.environ.get(name, str(meta.default))
    try:
        value = meta.parser(raw)
    except Exception:
        return meta.parser(str(meta.default))
    if meta.choices and value not in meta.choices:
        return meta.parser(str(meta.default))
    return value


def as_dict(include_unset: bool = False) -> Dict[str, Any]:
    data = {}
    for k in _REGISTRY:
        raw = os.environ.get(k)
        if raw is None and not include_unset:
            continue
        data[k] = get(k)
    return data


def describe() -> List[Dict[str, Any]]:
    info = []
    for meta in _REGISTRY.values():
        info.append(
            {
                "name": meta.name,
                "category": meta.category,
                "default": meta.default,
                "current": get(meta.name),
                "description": meta.description,
                "choices": meta.choices or [],
            }
        )
    return sorted(info, key=lambda x: (x["category"], x["name"]))


__all__ = ["get", "as_dict", "describe", "EnvVarMeta"]

# Runtime overrides registry (set via set()) for introspection.
_OVERRIDES: Dict[str, Any] = {}
_SET_LOCK = threading.Lock()


def set(name: str, value: Any) -> None:
    """Set an environment variable (stringifying value) and record override.

    The CLI routes its option overrides through here so `dnnbench config list`
    can show which settings came from the command line.
    """
    with _SET_LOCK:
        os.environ[name] = str(value)
        _OVERRIDES[name] = value


def overrides() -> Dict[str, Any]:
    return dict(_OVERRIDES)


__all__.extend(["set", "overrides"])
