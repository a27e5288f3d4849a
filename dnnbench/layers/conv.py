"""Convolution layer: algorithm selection and scratch-memory lifetime."""

import logging
from typing import Optional

from ..backends.base import convolution_output_dims
from ..descriptors import ConvolutionDesc, FilterDesc
from ..errors import AlgorithmSelectionFailed, DNNBenchError, WorkspaceQueryFailed
from ..params import ConvolutionParam, ScratchLifetime
from .base import Layer, LayerType

logger = logging.getLogger(__name__)


class ConvolutionLayer(Layer):
    """
    2-D convolution over NCHW input.

    Owns one weight buffer (+ gradient) of output_num x C x kH x kW shared by
    every input, and the scratch buffer the selected forward algorithm needs.
    Scratch follows `params.scratch_lifetime`:

    - PER_RUN: created in setup, released by teardown.
    - PER_CALL: created in setup, released at the end of every forward call
      and re-created at the start of the next.
    """

    layer_type = LayerType.CONVOLUTION
    param_class = ConvolutionParam
    has_learnable_params = True

    def __init__(self, context, name=None, params=None):
        super().__init__(context, name=name, params=params)
        self.conv_desc: Optional[ConvolutionDesc] = None
        self.filter_desc: Optional[FilterDesc] = None
        self.weights: Optional[int] = None
        self.weight_diff: Optional[int] = None
        self.fwd_algo: Optional[str] = None
        self.scratch_size = 0
        self.scratch_handle: Optional[int] = None

    def configure(self) -> None:
        p = self.params
        for field_name in ("output_num", "kernel_size_h", "kernel_size_w", "stride_h", "stride_w", "dilation_h", "dilation_w"):
            if getattr(p, field_name) <= 0:
                raise ValueError(f"{self.name}: {field_name} must be positive, got {getattr(p, field_name)}")
        if p.pad_h < 0 or p.pad_w < 0:
            raise ValueError(f"{self.name}: padding must be non-negative, got ({p.pad_h}, {p.pad_w})")
        self.conv_desc = ConvolutionDesc.from_param(p)

    def _filter_for(self, channels: int) -> FilterDesc:
        p = self.params
        return FilterDesc(p.output_num, channels, p.kernel_size_h, p.kernel_size_w)

    def infer_output_shape(self, input_dim):
        out_h, out_w = convolution_output_dims(input_dim, self._filter_for(input_dim.c), self.conv_desc)
        return (input_dim.n, self.params.output_num, out_h, out_w)

    def setup_resources(self) -> None:
        p = self.params
        backend = self.context.backend
        self.filter_desc = self._filter_for(self.input_dim.c)
        self.weights = self._create(self.filter_desc.size)
        self.weight_diff = self._create(self.filter_desc.size)

        args = (self.input_desc, self.filter_desc, self.conv_desc, self.output_desc)
        try:
            self.fwd_algo = backend.get_convolution_forward_algorithm(*args, p.fwd_pref, p.workspace_limit)
        except DNNBenchError:
            raise
        except Exception as e:
            raise AlgorithmSelectionFailed(f"backend {backend.name} failed to select an algorithm: {e}") from e
        try:
            self.scratch_size = int(backend.get_convolution_forward_workspace_size(*args, self.fwd_algo))
        except DNNBenchError:
            raise
        except Exception as e:
            raise WorkspaceQueryFailed(f"backend {backend.name} failed to size workspace for {self.fwd_algo}: {e}") from e
        logger.debug(f"{self.name}: algo={self.fwd_algo} workspace={self.scratch_size} elements")
        self._acquire_scratch()

    def _acquire_scratch(self) -> None:
        if self.scratch_size > 0 and self.scratch_handle is None:
            self.scratch_handle = self._create(self.scratch_size)

    def _release_scratch(self) -> None:
        if self.scratch_handle is not None:
            self._release(self.scratch_handle)
            self.scratch_handle = None

    def _fill_params(self) -> None:
        self.context.fill(self.weights)

    def _forward(self) -> None:
        backend = self.context.backend
        registry = self.context.registry
        per_call = self.params.scratch_lifetime is ScratchLifetime.PER_CALL
        if per_call:
            self._acquire_scratch()
        w = registry.get_buffer(self.weights)
        scratch = registry.get_buffer(self.scratch_handle).memory if self.scratch_handle is not None else None

        def compute(x, y):
            backend.convolution_forward(
                1.0,
                self.input_desc,
                x,
                self.filter_desc,
                w.memory,
                self.conv_desc,
                self.fwd_algo,
                scratch,
                self.scratch_size,
                0.0,
                self.output_desc,
                y,
            )

        try:
            self._forward_each_input(compute)
        finally:
            if per_call:
                self._release_scratch()

    def teardown(self) -> None:
        super().teardown()
        self.weights = self.weight_diff = None
        self.scratch_handle = None
