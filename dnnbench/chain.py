"""
Chains of layers wired output-to-input.

The first layer of a chain (or any layer given a shape) owns its inputs; the
others name their producer and read its output buffers. The chain sequences
setup, binding, forward/backward and teardown in dependency order and reports
per-layer timings collected by the context's profiling regions.

Chain files are JSON:

    {
      "backend": "numpy",
      "layers": [
        {"type": "conv", "name": "conv1", "input": [2, 3, 32, 32],
         "params": {"output_num": 16, "kernel_size": 3, "pad": 1}},
        {"type": "activation", "name": "relu1", "previous": "conv1"},
        {"type": "pooling", "name": "pool1", "previous": "relu1",
         "params": {"kernel_size": 2, "stride": 2}}
      ]
    }
"""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .core.benchmark import summarize
from .errors import ChainError
from .layers import LAYER_CLASSES, Layer, create_layer, parse_layer_type
from .params import from_dict as params_from_dict
from .shape import ShapeDescriptor

logger = logging.getLogger(__name__)


class LayerChain:
    """Ordered, name-addressed set of layers sharing one ExecutionContext."""

    def __init__(self, context):
        self.context = context
        self._layers: List[Layer] = []
        self._by_name: Dict[str, Layer] = {}

    def add(
        self,
        layer_type,
        name: Optional[str] = None,
        params: Any = None,
        input_shape: Optional[Sequence[int]] = None,
        previous: Optional[str] = None,
        num_inputs: int = 1,
    ) -> Layer:
        """Create a layer and append it. Exactly one of input_shape / previous is required."""
        layer_type = parse_layer_type(layer_type)
        if isinstance(params, dict):
            params = params_from_dict(LAYER_CLASSES[layer_type].param_class, params)
        layer = create_layer(layer_type, self.context, name=name, params=params)
        if (input_shape is None) == (previous is None):
            raise ChainError(f"layer '{layer.name}' needs exactly one of an input shape or a previous layer")
        layer.num_inputs = num_inputs
        if input_shape is not None:
            layer.set_input_shape(input_shape)
        else:
            layer.set_previous_layer(previous)
        return self.add_layer(layer)

    def add_layer(self, layer: Layer) -> Layer:
        if layer.name in self._by_name:
            raise ChainError(f"duplicate layer name '{layer.name}'")
        prev = layer.previous_layer_name
        if prev is not None and prev not in self._by_name:
            raise ChainError(f"layer '{layer.name}' consumes unknown layer '{prev}' (producers must be added first)")
        self._layers.append(layer)
        self._by_name[layer.name] = layer
        return layer

    def __getitem__(self, name: str) -> Layer:
        try:
            return self._by_name[name]
        except KeyError:
            raise ChainError(f"no layer named '{name}'") from None

    def __iter__(self) -> Iterator[Layer]:
        return iter(self._layers)

    def __len__(self) -> int:
        return len(self._layers)

    @property
    def layers(self) -> List[Layer]:
        return list(self._layers)

    # -- lifecycle -------------------------------------------------------

    def setup(self) -> None:
        for layer in self._layers:
            layer.setup()
            if layer.is_composed:
                producer = self._by_name[layer.previous_layer_name]
                layer.bind_inputs(producer.tops, producer.top_diffs, producer.output_dim)
            logger.debug(f"chain: {layer.name} {layer.input_dim} -> {layer.output_dim}")

    def forward(self) -> None:
        for layer in self._layers:
            layer.forward()

    def backward(self) -> None:
        for layer in reversed(self._layers):
            layer.backward()

    def teardown(self) -> None:
        for layer in reversed(self._layers):
            layer.teardown()

    def run(self, iterations: int = 10, warmup: int = 3, backward: bool = False) -> Dict[str, Any]:
        """Warm up, then time `iterations` passes; returns a report dict."""
        for _ in range(warmup):
            self.forward()
            if backward:
                self.backward()
        self.context.reset_timings()
        for _ in range(iterations):
            self.forward()
            if backward:
                self.backward()
        return self.report()

    def report(self) -> Dict[str, Any]:
        rows = []
        total = 0.0
        for layer in self._layers:
            timing = summarize(self.context.timings.get(layer.name, []))
            total += timing["median_ms"]
            row = {
                "name": layer.name,
                "type": layer.layer_type.value,
                "input": list(layer.input_dim.as_tuple()),
                "output": list(layer.output_dim.as_tuple()),
                "timing": timing,
            }
            if getattr(layer, "fwd_algo", None) is not None:
                row["algorithm"] = layer.fwd_algo
                row["workspace_elements"] = layer.scratch_size
            rows.append(row)
        return {
            "backend": self.context.backend.name,
            "layers": rows,
            "total_median_ms": total,
            "buffers": self.context.registry.stats(),
        }

    # -- construction from files ----------------------------------------

    @classmethod
    def from_dict(cls, spec: Dict[str, Any], context) -> "LayerChain":
        layers = spec.get("layers")
        if not isinstance(layers, list) or not layers:
            raise ChainError("chain spec needs a non-empty 'layers' list")
        chain = cls(context)
        for entry in layers:
            if "type" not in entry:
                raise ChainError(f"chain entry {entry!r} has no 'type'")
            try:
                chain.add(
                    entry["type"],
                    name=entry.get("name"),
                    params=entry.get("params") or {},
                    input_shape=ShapeDescriptor.of(entry["input"]) if "input" in entry else None,
                    previous=entry.get("previous"),
                    num_inputs=int(entry.get("num_inputs", 1)),
                )
            except ValueError as e:
                raise ChainError(f"bad chain entry {entry!r}: {e}") from e
        return chain


def load_chain(path: str, context=None, backend: Optional[str] = None) -> LayerChain:
    """Read a JSON chain file.

    Without a context, one is built from `backend` or else the file's
    "backend" and "seed" keys.
    """
    with open(path, "r", encoding="utf-8") as f:
        spec = json.load(f)
    if context is None:
        from .context import ExecutionContext

        context = ExecutionContext(backend=backend or spec.get("backend"), seed=spec.get("seed"))
    return LayerChain.from_dict(spec, context)
