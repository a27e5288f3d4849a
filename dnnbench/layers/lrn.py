"""Cross-channel local response normalization layer."""

from ..params import LRNParam
from .base import Layer, LayerType


class LRNLayer(Layer):
    """y = x / (k + alpha/n * sum of x^2 over n neighbouring channels)^beta"""

    layer_type = LayerType.LRN
    param_class = LRNParam

    def configure(self) -> None:
        if self.params.local_size < 1:
            raise ValueError(f"{self.name}: local_size must be >= 1, got {self.params.local_size}")

    def infer_output_shape(self, input_dim):
        return input_dim.as_tuple()

    def _forward(self) -> None:
        backend = self.context.backend
        self._forward_each_input(lambda x, y: backend.lrn_forward(self.params, 1.0, self.input_desc, x, 0.0, y))
