"""Element-wise activation layer."""

from ..params import ActivationParam
from .base import Layer, LayerType


class ActivationLayer(Layer):
    layer_type = LayerType.ACTIVATION
    param_class = ActivationParam

    def infer_output_shape(self, input_dim):
        return input_dim.as_tuple()

    def _forward(self) -> None:
        backend = self.context.backend
        self._forward_each_input(
            lambda x, y: backend.activation_forward(self.params, 1.0, self.input_desc, x, 0.0, y)
        )
