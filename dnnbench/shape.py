"""4-D tensor extents and the two ways a layer receives its input."""

from __future__ import annotations

import operator
from dataclasses import dataclass, fields
from typing import Tuple, Union

from .errors import InvalidShape


def _as_dim(value) -> int:
    # integer-like values only (int, numpy integers); floats and bools are rejected
    if isinstance(value, bool):
        raise InvalidShape(f"shape fields must be integers, got {value!r}")
    try:
        return operator.index(value)
    except TypeError:
        raise InvalidShape(f"shape fields must be integers, got {value!r}") from None


@dataclass(frozen=True)
class ShapeDescriptor:
    """NCHW extents of a tensor.

    Either every field is zero (shape not known yet) or every field is
    strictly positive.
    """

    n: int = 0
    c: int = 0
    h: int = 0
    w: int = 0

    def __post_init__(self):
        for f in fields(self):
            object.__setattr__(self, f.name, _as_dim(getattr(self, f.name)))
        dims = self.as_tuple()
        if any(d < 0 for d in dims):
            raise InvalidShape(f"shape fields must be non-negative, got {dims}")
        if any(d == 0 for d in dims) and any(d != 0 for d in dims):
            raise InvalidShape(f"shape must be all-zero or all-positive, got {dims}")

    @classmethod
    def zero(cls) -> "ShapeDescriptor":
        return cls()

    @classmethod
    def of(cls, dims) -> "ShapeDescriptor":
        dims = tuple(dims)
        if len(dims) != 4:
            raise InvalidShape(f"expected 4 dims (n, c, h, w), got {dims}")
        return cls(*dims)

    @property
    def is_complete(self) -> bool:
        return self.n > 0

    @property
    def size(self) -> int:
        return self.n * self.c * self.h * self.w

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.n, self.c, self.h, self.w)

    def __str__(self) -> str:
        return f"({self.n}, {self.c}, {self.h}, {self.w})"


@dataclass(frozen=True)
class StandaloneInput:
    """The layer owns input buffers allocated from a known shape."""

    shape: ShapeDescriptor

    def __post_init__(self):
        if not self.shape.is_complete:
            raise InvalidShape("standalone input requires a fully positive shape")


@dataclass(frozen=True)
class ComposedInput:
    """The layer reads the output buffers of the layer named here."""

    previous_layer_name: str


InputMode = Union[StandaloneInput, ComposedInput]

__all__ = ["ShapeDescriptor", "StandaloneInput", "ComposedInput", "InputMode"]
