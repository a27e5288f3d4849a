"""
Layer base class: lifecycle, input wiring and buffer ownership.

A layer is constructed against an ExecutionContext, given an input (a known
shape, or the name of the layer whose outputs it consumes), set up once and
then run forward/backward as many times as the timing loop needs.

    UNCONFIGURED --set_input--> CONFIGURED --setup--> READY --teardown--> TORN_DOWN
                                     |
                                     +--setup raises--> FAILED

In composed mode setup() only validates parameters; the shape-dependent part
runs when the chain driver calls bind_inputs() with the producer's outputs.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from ..descriptors import TensorDesc
from ..errors import (
    AlreadySetUp,
    DNNBenchError,
    LayerStateError,
    NotConfigured,
    NotReady,
    ShapeInferenceInvalid,
)
from ..shape import ComposedInput, InputMode, ShapeDescriptor, StandaloneInput

logger = logging.getLogger(__name__)


class LayerType(Enum):
    CONVOLUTION = "convolution"
    POOLING = "pooling"
    ACTIVATION = "activation"
    LRN = "lrn"
    FC = "fc"
    SOFTMAX = "softmax"


class LayerState(Enum):
    UNCONFIGURED = "unconfigured"
    CONFIGURED = "configured"
    READY = "ready"
    FAILED = "failed"
    TORN_DOWN = "torn_down"


class Layer(ABC):
    """
    Abstract base for every benchmarked primitive.

    Subclasses set `layer_type` and `param_class`, implement
    `infer_output_shape()` and usually override `_forward()`. Resources
    beyond inputs and outputs (weights, scratch) are created in
    `setup_resources()` through `_create()` so teardown() can release them.
    """

    layer_type: LayerType
    param_class: Optional[type] = None
    has_learnable_params = False

    def __init__(self, context, name: Optional[str] = None, params: Any = None):
        self.context = context
        self.layer_id = context.next_layer_id()
        self.name = name or f"{self.layer_type.value}{self.layer_id}"
        if params is None and self.param_class is not None:
            params = self.param_class()
        self.params = params
        self._num_inputs = 1

        self.state = LayerState.UNCONFIGURED
        self.input_mode: Optional[InputMode] = None
        self.input_dim = ShapeDescriptor.zero()
        self.output_dim = ShapeDescriptor.zero()
        self.input_desc: Optional[TensorDesc] = None
        self.output_desc: Optional[TensorDesc] = None

        self.bottoms: List[int] = []
        self.bottom_diffs: List[int] = []
        self.tops: List[int] = []
        self.top_diffs: List[int] = []
        self._owned: List[int] = []
        self._inputs_bound = False

    # -- configuration ---------------------------------------------------

    @property
    def num_inputs(self) -> int:
        return self._num_inputs

    @num_inputs.setter
    def num_inputs(self, value: int) -> None:
        self._require_unset("num_inputs")
        if int(value) < 1:
            raise ValueError(f"num_inputs must be >= 1, got {value}")
        self._num_inputs = int(value)

    @property
    def num_outputs(self) -> int:
        return self._num_inputs

    @property
    def previous_layer_name(self) -> Optional[str]:
        if isinstance(self.input_mode, ComposedInput):
            return self.input_mode.previous_layer_name
        return None

    @property
    def is_composed(self) -> bool:
        return isinstance(self.input_mode, ComposedInput)

    def set_input(self, mode: InputMode) -> None:
        self._require_unset("set_input")
        if isinstance(mode, StandaloneInput):
            self.input_dim = mode.shape
        elif isinstance(mode, ComposedInput):
            self.input_dim = ShapeDescriptor.zero()
        else:
            raise TypeError(f"expected StandaloneInput or ComposedInput, got {type(mode).__name__}")
        self.input_mode = mode
        self.state = LayerState.CONFIGURED

    def set_input_shape(self, shape) -> None:
        if not isinstance(shape, ShapeDescriptor):
            shape = ShapeDescriptor.of(shape)
        self.set_input(StandaloneInput(shape))

    def set_previous_layer(self, name: str) -> None:
        self.set_input(ComposedInput(name))

    def _require_unset(self, call: str) -> None:
        if self.state not in (LayerState.UNCONFIGURED, LayerState.CONFIGURED):
            raise LayerStateError(
                f"cannot change configuration in state {self.state.value}",
                call=call,
                layer_name=self.name,
                layer_id=self.layer_id,
            )

    # -- lifecycle -------------------------------------------------------

    @contextmanager
    def _calling(self, call: str):
        try:
            yield
        except DNNBenchError as e:
            e.with_layer(self.name, self.layer_id, call)
            raise

    def setup(self) -> None:
        if self.state is LayerState.UNCONFIGURED:
            raise NotConfigured("no input assigned", call="setup", layer_name=self.name, layer_id=self.layer_id)
        if self.state is not LayerState.CONFIGURED:
            raise AlreadySetUp(
                f"setup() already ran (state {self.state.value})",
                call="setup",
                layer_name=self.name,
                layer_id=self.layer_id,
            )
        try:
            with self._calling("setup"):
                self.configure()
                if isinstance(self.input_mode, StandaloneInput):
                    self.input_desc = TensorDesc.from_shape(self.input_dim)
                    size = self.input_dim.size
                    for _ in range(self.num_inputs):
                        self.bottoms.append(self._create(size))
                        self.bottom_diffs.append(self._create(size))
                    self._setup_shaped()
        except Exception:
            self.state = LayerState.FAILED
            raise
        self.state = LayerState.READY
        logger.debug(f"{self!r} ready: {self.input_dim} -> {self.output_dim}")

    def bind_inputs(self, buffers: Sequence[int], diff_buffers: Sequence[int], shape: ShapeDescriptor) -> None:
        """Wire producer-owned buffers into a composed layer after setup()."""
        if self.state is not LayerState.READY or not self.is_composed or self._inputs_bound:
            raise NotReady(
                "bind_inputs() needs a set-up composed layer with unbound inputs",
                call="bind_inputs",
                layer_name=self.name,
                layer_id=self.layer_id,
            )
        if len(buffers) != len(diff_buffers) or not buffers:
            raise ValueError("bind_inputs() needs one gradient buffer per input buffer")
        if not shape.is_complete:
            raise ShapeInferenceInvalid(
                f"producer shape {shape} is not known", call="bind_inputs", layer_name=self.name, layer_id=self.layer_id
            )
        try:
            with self._calling("bind_inputs"):
                self._num_inputs = len(buffers)
                self.input_dim = shape
                self.input_desc = TensorDesc.from_shape(shape)
                self.bottoms = list(buffers)
                self.bottom_diffs = list(diff_buffers)
                self._setup_shaped()
        except Exception:
            self.state = LayerState.FAILED
            raise

    def _setup_shaped(self) -> None:
        dims = tuple(int(d) for d in self.infer_output_shape(self.input_dim))
        if any(d <= 0 for d in dims):
            raise ShapeInferenceInvalid(f"output shape {dims} derived from input {self.input_dim} is not positive")
        self.output_dim = ShapeDescriptor.of(dims)
        self.output_desc = TensorDesc.from_shape(self.output_dim)
        for _ in range(self.num_outputs):
            self.tops.append(self._create(self.output_dim.size))
            self.top_diffs.append(self._create(self.output_dim.size))
        self.setup_resources()
        self._inputs_bound = True

    def configure(self) -> None:
        """Shape-independent setup: parameter validation, descriptors."""

    @abstractmethod
    def infer_output_shape(self, input_dim: ShapeDescriptor) -> Tuple[int, int, int, int]:
        raise NotImplementedError

    def setup_resources(self) -> None:
        """Shape-dependent setup after outputs exist: weights, algorithms, scratch."""

    def _check_ready(self, call: str) -> None:
        if self.state is not LayerState.READY or not self._inputs_bound:
            raise NotReady(
                f"layer is {self.state.value}" + ("" if self._inputs_bound else ", inputs not bound"),
                call=call,
                layer_name=self.name,
                layer_id=self.layer_id,
            )

    def forward(self) -> None:
        self._check_ready("forward")
        with self._calling("forward"):
            self._forward()

    def backward(self) -> None:
        self._check_ready("backward")
        with self._calling("backward"):
            self._backward()

    def _forward(self) -> None:
        pass

    def _backward(self) -> None:
        pass

    def teardown(self) -> None:
        """Release every buffer this layer created; bound inputs are left alone."""
        registry = self.context.registry
        for handle in self._owned:
            if registry.is_live(handle):
                registry.release_buffer(handle)
        self._owned = []
        self.bottoms, self.bottom_diffs = [], []
        self.tops, self.top_diffs = [], []
        self._inputs_bound = False
        self.state = LayerState.TORN_DOWN

    # -- buffers ---------------------------------------------------------

    def _create(self, size: int) -> int:
        handle = self.context.registry.create_buffer(size)
        self._owned.append(handle)
        return handle

    def _release(self, handle: int) -> None:
        self.context.registry.release_buffer(handle)
        self._owned.remove(handle)

    def owns(self, handle: int) -> bool:
        return handle in self._owned

    def _fill_params(self) -> None:
        """Fill learnable parameters before the timed pass; nothing by default."""

    def _forward_each_input(self, compute: Callable[[Any, Any], None]) -> None:
        """Fill owned inputs and params once, then time compute(x, y) over every input in one region."""
        ctx = self.context
        registry = ctx.registry
        for x_handle in self.bottoms:
            if self.owns(x_handle):
                ctx.fill(x_handle)
        self._fill_params()
        pairs = [(registry.get_buffer(x), registry.get_buffer(y)) for x, y in zip(self.bottoms, self.tops)]
        with ctx.profiling_region(self.name):
            for x, y in pairs:
                compute(x.memory, y.memory)
        for _, y in pairs:
            y.mark_written()

    def output_buffers(self) -> list:
        return [self.context.registry.get_buffer(h) for h in self.tops]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name!r}, id={self.layer_id}, state={self.state.value})>"
