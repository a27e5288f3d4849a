"""Per-layer parameter blocks.

Each layer variant owns exactly one of these dataclasses; it stays mutable
until the layer's setup() consumes it. `from_dict` builds one from the loose
key/value mapping a chain file or the CLI provides.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Type, TypeVar

from . import config as _cfg


class ConvFwdPreference(Enum):
    """How the backend should pick a convolution forward algorithm."""

    NO_WORKSPACE = "no_workspace"
    PREFER_FASTEST = "prefer_fastest"
    SPECIFY_WORKSPACE_LIMIT = "specify_workspace_limit"


class ConvMode(Enum):
    CROSS_CORRELATION = "cross_correlation"
    CONVOLUTION = "convolution"  # kernel flipped


class ScratchLifetime(Enum):
    """When convolution scratch memory is released.

    PER_RUN keeps the buffer from setup() until teardown(). PER_CALL
    releases it at the end of every forward() and re-creates it at the start
    of the next one.
    """

    PER_RUN = "run"
    PER_CALL = "call"


class PoolingMode(Enum):
    MAX = "max"
    AVERAGE_INCLUDE_PADDING = "avg_include_pad"
    AVERAGE_EXCLUDE_PADDING = "avg_exclude_pad"


class ActivationMode(Enum):
    SIGMOID = "sigmoid"
    RELU = "relu"
    TANH = "tanh"
    CLIPPED_RELU = "clipped_relu"
    ELU = "elu"


class SoftmaxAlgorithm(Enum):
    FAST = "fast"  # no max subtraction
    ACCURATE = "accurate"
    LOG = "log"


class SoftmaxMode(Enum):
    INSTANCE = "instance"  # over C*H*W per image
    CHANNEL = "channel"  # over C per (n, h, w)


def _default_fwd_pref() -> ConvFwdPreference:
    return ConvFwdPreference(_cfg.get("DNNBENCH_CONV_FWD_PREF"))


def _default_workspace_limit() -> int:
    return int(_cfg.get("DNNBENCH_WORKSPACE_LIMIT"))


def _default_scratch_lifetime() -> ScratchLifetime:
    return ScratchLifetime(_cfg.get("DNNBENCH_SCRATCH_LIFETIME"))


@dataclass
class ConvolutionParam:
    output_num: int = 32
    kernel_size_h: int = 5
    kernel_size_w: int = 5
    pad_h: int = 2
    pad_w: int = 2
    stride_h: int = 1
    stride_w: int = 1
    dilation_h: int = 1
    dilation_w: int = 1
    mode: ConvMode = ConvMode.CROSS_CORRELATION
    fwd_pref: ConvFwdPreference = field(default_factory=_default_fwd_pref)
    workspace_limit: int = field(default_factory=_default_workspace_limit)
    scratch_lifetime: ScratchLifetime = field(default_factory=_default_scratch_lifetime)


@dataclass
class PoolingParam:
    mode: PoolingMode = PoolingMode.MAX
    kernel_size_h: int = 3
    kernel_size_w: int = 3
    pad_h: int = 0
    pad_w: int = 0
    stride_h: int = 2
    stride_w: int = 2


@dataclass
class ActivationParam:
    mode: ActivationMode = ActivationMode.RELU
    # clipping threshold for CLIPPED_RELU, alpha for ELU
    coef: float = 1.0


@dataclass
class LRNParam:
    local_size: int = 5
    alpha: float = 1e-4
    beta: float = 0.75
    k: float = 2.0


@dataclass
class FullyConnectedParam:
    output_num: int = 4096


@dataclass
class SoftmaxParam:
    algo: SoftmaxAlgorithm = SoftmaxAlgorithm.ACCURATE
    mode: SoftmaxMode = SoftmaxMode.CHANNEL


P = TypeVar("P")

_ALIASES = {
    "kernel_size": ("kernel_size_h", "kernel_size_w"),
    "pad": ("pad_h", "pad_w"),
    "stride": ("stride_h", "stride_w"),
    "dilation": ("dilation_h", "dilation_w"),
}


def from_dict(cls: Type[P], values: Dict[str, Any]) -> P:
    """Build a parameter block, coercing strings into enum members.

    Square shortcuts (``kernel_size``, ``pad``, ``stride``, ``dilation``)
    set both the _h and _w fields.
    """
    known = {f.name: f for f in fields(cls)}
    kwargs: Dict[str, Any] = {}
    for key, value in values.items():
        targets = _ALIASES.get(key, (key,))
        for target in targets:
            if target not in known:
                raise ValueError(f"{cls.__name__} has no parameter '{key}'")
            kwargs[target] = _coerce(known[target].type, value)
    return cls(**kwargs)


def _coerce(annotation, value):
    # annotations are strings under `from __future__ import annotations`
    type_name = annotation if isinstance(annotation, str) else getattr(annotation, "__name__", "")
    enum_cls = _ENUMS_BY_NAME.get(type_name)
    if enum_cls is not None:
        return value if isinstance(value, enum_cls) else enum_cls(str(value).lower())
    if type_name == "float":
        return float(value)
    if type_name == "int":
        return int(value)
    return value


_ENUMS_BY_NAME = {
    e.__name__: e
    for e in (
        ConvFwdPreference,
        ConvMode,
        ScratchLifetime,
        PoolingMode,
        ActivationMode,
        SoftmaxAlgorithm,
        SoftmaxMode,
    )
}

__all__ = [
    "ConvFwdPreference",
    "ConvMode",
    "ScratchLifetime",
    "PoolingMode",
    "ActivationMode",
    "SoftmaxAlgorithm",
    "SoftmaxMode",
    "ConvolutionParam",
    "PoolingParam",
    "ActivationParam",
    "LRNParam",
    "FullyConnectedParam",
    "SoftmaxParam",
    "from_dict",
]
