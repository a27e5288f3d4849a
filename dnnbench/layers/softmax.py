"""Softmax layer."""

from ..params import SoftmaxParam
from .base import Layer, LayerType


class SoftmaxLayer(Layer):
    layer_type = LayerType.SOFTMAX
    param_class = SoftmaxParam

    def infer_output_shape(self, input_dim):
        return input_dim.as_tuple()

    def _forward(self) -> None:
        backend = self.context.backend
        self._forward_each_input(
            lambda x, y: backend.softmax_forward(self.params, 1.0, self.input_desc, x, 0.0, y)
        )
