"""Descriptor objects handed to backend primitives.

They play the role of a primitives library's tensor/filter/convolution
descriptors: plain values describing layout, built once in setup() and
reused on every forward call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from .params import ConvMode, ConvolutionParam
from .shape import ShapeDescriptor


@dataclass(frozen=True)
class TensorDesc:
    n: int
    c: int
    h: int
    w: int

    @classmethod
    def from_shape(cls, shape: ShapeDescriptor) -> "TensorDesc":
        return cls(shape.n, shape.c, shape.h, shape.w)

    @property
    def shape(self) -> Tuple[int, int, int, int]:
        return (self.n, self.c, self.h, self.w)

    @property
    def size(self) -> int:
        return self.n * self.c * self.h * self.w


@dataclass(frozen=True)
class FilterDesc:
    k: int  # output channels
    c: int  # input channels
    h: int
    w: int

    @property
    def shape(self) -> Tuple[int, int, int, int]:
        return (self.k, self.c, self.h, self.w)

    @property
    def size(self) -> int:
        return self.k * self.c * self.h * self.w


@dataclass(frozen=True)
class ConvolutionDesc:
    pad_h: int
    pad_w: int
    stride_h: int
    stride_w: int
    dilation_h: int = 1
    dilation_w: int = 1
    mode: ConvMode = ConvMode.CROSS_CORRELATION

    @classmethod
    def from_param(cls, param: ConvolutionParam) -> "ConvolutionDesc":
        return cls(
            pad_h=param.pad_h,
            pad_w=param.pad_w,
            stride_h=param.stride_h,
            stride_w=param.stride_w,
            dilation_h=param.dilation_h,
            dilation_w=param.dilation_w,
            mode=param.mode,
        )

    @property
    def padding(self) -> Tuple[int, int]:
        return (self.pad_h, self.pad_w)

    @property
    def stride(self) -> Tuple[int, int]:
        return (self.stride_h, self.stride_w)

    @property
    def dilation(self) -> Tuple[int, int]:
        return (self.dilation_h, self.dilation_w)


__all__ = ["TensorDesc", "FilterDesc", "ConvolutionDesc"]
