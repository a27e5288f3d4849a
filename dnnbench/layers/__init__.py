from typing import Any, Dict, Optional, Type, Union

from .activation import ActivationLayer
from .base import Layer, LayerState, LayerType
from .conv import ConvolutionLayer
from .fc import FullyConnectedLayer
from .lrn import LRNLayer
from .pooling import PoolingLayer
from .softmax import SoftmaxLayer

LAYER_CLASSES: Dict[LayerType, Type[Layer]] = {
    LayerType.CONVOLUTION: ConvolutionLayer,
    LayerType.POOLING: PoolingLayer,
    LayerType.ACTIVATION: ActivationLayer,
    LayerType.LRN: LRNLayer,
    LayerType.FC: FullyConnectedLayer,
    LayerType.SOFTMAX: SoftmaxLayer,
}


_ALIASES = {
    "conv": LayerType.CONVOLUTION,
    "pool": LayerType.POOLING,
    "fully_connected": LayerType.FC,
}


def parse_layer_type(value: Union[LayerType, str]) -> LayerType:
    if isinstance(value, LayerType):
        return value
    key = str(value).strip().lower()
    return _ALIASES.get(key) or LayerType(key)


def create_layer(layer_type: Union[LayerType, str], context, name: Optional[str] = None, params: Any = None) -> Layer:
    """Instantiate the variant registered for `layer_type` (a LayerType or its name, "conv" and "pool" accepted)."""
    layer_type = parse_layer_type(layer_type)
    return LAYER_CLASSES[layer_type](context, name=name, params=params)


__all__ = [
    "Layer",
    "LayerState",
    "LayerType",
    "ConvolutionLayer",
    "PoolingLayer",
    "ActivationLayer",
    "LRNLayer",
    "FullyConnectedLayer",
    "SoftmaxLayer",
    "LAYER_CLASSES",
    "create_layer",
    "parse_layer_type",
]
