"""Pooling layer."""

from ..params import PoolingParam
from .base import Layer, LayerType


class PoolingLayer(Layer):
    layer_type = LayerType.POOLING
    param_class = PoolingParam

    def configure(self) -> None:
        p = self.params
        if min(p.kernel_size_h, p.kernel_size_w, p.stride_h, p.stride_w) <= 0:
            raise ValueError(f"{self.name}: kernel and stride must be positive")
        if p.pad_h < 0 or p.pad_w < 0:
            raise ValueError(f"{self.name}: padding must be non-negative")

    def infer_output_shape(self, input_dim):
        p = self.params
        out_h = (input_dim.h + 2 * p.pad_h - p.kernel_size_h) // p.stride_h + 1
        out_w = (input_dim.w + 2 * p.pad_w - p.kernel_size_w) // p.stride_w + 1
        return (input_dim.n, input_dim.c, out_h, out_w)

    def _forward(self) -> None:
        backend = self.context.backend
        self._forward_each_input(
            lambda x, y: backend.pooling_forward(self.params, 1.0, self.input_desc, x, 0.0, self.output_desc, y)
        )
