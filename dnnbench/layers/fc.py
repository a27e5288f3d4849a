"""Fully-connected layer."""

from typing import Optional

from ..params import FullyConnectedParam
from .base import Layer, LayerType


class FullyConnectedLayer(Layer):
    """Flattens each image to C*H*W features and multiplies by an output_num x C*H*W matrix."""

    layer_type = LayerType.FC
    param_class = FullyConnectedParam
    has_learnable_params = True

    def __init__(self, context, name=None, params=None):
        super().__init__(context, name=name, params=params)
        self.weights: Optional[int] = None
        self.weight_diff: Optional[int] = None

    def configure(self) -> None:
        if self.params.output_num <= 0:
            raise ValueError(f"{self.name}: output_num must be positive, got {self.params.output_num}")

    def infer_output_shape(self, input_dim):
        return (input_dim.n, self.params.output_num, 1, 1)

    def setup_resources(self) -> None:
        d = self.input_dim
        size = self.params.output_num * d.c * d.h * d.w
        self.weights = self._create(size)
        self.weight_diff = self._create(size)

    def _fill_params(self) -> None:
        self.context.fill(self.weights)

    def _forward(self) -> None:
        backend = self.context.backend
        w = self.context.registry.get_buffer(self.weights)
        self._forward_each_input(
            lambda x, y: backend.fully_connected_forward(1.0, self.input_desc, x, w.memory, 0.0, self.output_desc, y)
        )

    def teardown(self) -> None:
        super().teardown()
        self.weights = self.weight_diff = None
