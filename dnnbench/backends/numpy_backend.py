"""
NumPy Backend for dnnbench.

Host memory plays the part of device memory, so every benchmark can run and
be tested without an accelerator. Fresh allocations are NaN-poisoned so a
kernel that reads a buffer nobody filled produces visibly invalid output.
An optional capacity (DNNBENCH_DEVICE_MEMORY_LIMIT) makes out-of-memory
failures reproducible.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from dnnbench import config as _cfg
from dnnbench.backends.base import IM2COL_GEMM, IMPLICIT_GEMM, Backend, convolution_output_dims
from dnnbench.errors import OutOfDeviceMemory
from dnnbench.params import ActivationMode, ConvMode, PoolingMode, SoftmaxAlgorithm, SoftmaxMode

logger = logging.getLogger(__name__)


def _blend(y, result, alpha: float, beta: float):
    # beta == 0 must not read y: it may hold NaN poison
    if beta == 0:
        np.multiply(result, alpha, out=y, casting="unsafe")
    else:
        y[...] = alpha * result + beta * y


class NumpyBackend(Backend):
    """
    Host-memory backend built on NumPy.

    Always available. Used by the test-suite and as the fallback of the
    `auto` backend choice.
    """

    def __init__(self, dtype: str = "float32", memory_limit: Optional[int] = None):
        super().__init__("numpy", dtype=dtype)
        if memory_limit is None:
            memory_limit = int(_cfg.get("DNNBENCH_DEVICE_MEMORY_LIMIT"))
        # capacity in elements; 0 means unlimited
        self.memory_limit = max(0, int(memory_limit))
        self.allocated_elements = 0

    def initialize(self) -> bool:
        """Initialize NumPy backend (always available)."""
        if self._initialized:
            return self.capabilities.available

        self.capabilities.available = True
        self.capabilities.device_kind = "host"
        self.capabilities.device_count = 1
        self.capabilities.device_names = ["host"]
        self.capabilities.vendor_libs["numpy"] = True
        try:
            import psutil

            self.capabilities.memory_gb = psutil.virtual_memory().total / (1024**3)
        except Exception as e:
            logger.debug(f"[numpy] psutil memory probe failed: {e}")

        logger.info(f"[numpy] Initialized host backend ({self.dtype_name})")
        self._initialized = True
        return True

    # -- memory ----------------------------------------------------------

    def allocate(self, num_elements: int):
        n = int(num_elements)
        if self.memory_limit and self.allocated_elements + n > self.memory_limit:
            raise OutOfDeviceMemory(
                f"[numpy] cannot allocate {n} elements: "
                f"{self.allocated_elements}/{self.memory_limit} in use",
                requested=n,
                call="allocate",
            )
        try:
            memory = np.full(n, np.nan, dtype=self.dtype)
        except MemoryError as e:
            raise OutOfDeviceMemory(f"[numpy] host allocation of {n} elements failed", requested=n, call="allocate") from e
        self.allocated_elements += n
        return memory

    def free(self, memory) -> None:
        self.allocated_elements -= int(memory.size)

    def fill(self, memory, rng: np.random.Generator) -> None:
        memory[...] = rng.uniform(-1.0, 1.0, size=memory.size)

    def to_numpy(self, memory) -> np.ndarray:
        return np.array(memory, copy=True)

    # -- convolution -----------------------------------------------------

    def _rank_convolution_algorithms(self, candidates: Sequence[str], x_desc, w_desc, conv_desc, y_desc) -> List[str]:
        # A 1x1 kernel makes im2col a plain copy; spatial kernels gain from one big GEMM.
        if w_desc.h * w_desc.w == 1:
            order = [IMPLICIT_GEMM, IM2COL_GEMM]
        else:
            order = [IM2COL_GEMM, IMPLICIT_GEMM]
        return [a for a in order if a in candidates]

    def _conv_windows(self, x4, w_desc, conv_desc, y_desc):
        """Strided, dilated kernel windows: (N, C, outH, outW, kH, kW) view."""
        xp = np.pad(x4, ((0, 0), (0, 0), (conv_desc.pad_h, conv_desc.pad_h), (conv_desc.pad_w, conv_desc.pad_w)))
        eff_h = conv_desc.dilation_h * (w_desc.h - 1) + 1
        eff_w = conv_desc.dilation_w * (w_desc.w - 1) + 1
        win = sliding_window_view(xp, (eff_h, eff_w), axis=(2, 3))
        win = win[:, :, :: conv_desc.stride_h, :: conv_desc.stride_w, :: conv_desc.dilation_h, :: conv_desc.dilation_w]
        return win[:, :, : y_desc.h, : y_desc.w]

    def convolution_forward(
        self, alpha, x_desc, x, w_desc, w, conv_desc, algo, workspace, workspace_size, beta, y_desc, y
    ) -> None:
        out_h, out_w = convolution_output_dims(x_desc, w_desc, conv_desc)
        if (out_h, out_w) != (y_desc.h, y_desc.w):
            raise ValueError(f"[numpy] output descriptor {y_desc.shape} does not match conv output ({out_h}, {out_w})")
        x4 = x.reshape(x_desc.shape)
        w4 = w.reshape(w_desc.shape)
        if conv_desc.mode is ConvMode.CONVOLUTION:
            w4 = w4[:, :, ::-1, ::-1]
        y4 = y.reshape(y_desc.shape)
        win = self._conv_windows(x4, w_desc, conv_desc, y_desc)

        if algo == IMPLICIT_GEMM:
            out = np.tensordot(win, w4, axes=([1, 4, 5], [1, 2, 3]))  # N, outH, outW, K
            _blend(y4, out.transpose(0, 3, 1, 2), alpha, beta)
            return
        if algo == IM2COL_GEMM:
            rows = w_desc.c * w_desc.h * w_desc.w
            cols_needed = rows * y_desc.h * y_desc.w
            if workspace is None or workspace_size < cols_needed:
                raise ValueError(f"[numpy] im2col_gemm needs {cols_needed} workspace elements, got {workspace_size}")
            cols = workspace[:cols_needed].reshape(rows, y_desc.h * y_desc.w)
            w2 = w4.reshape(w_desc.k, rows)
            for n in range(x_desc.n):
                cols[...] = win[n].transpose(0, 3, 4, 1, 2).reshape(rows, -1)
                _blend(y4[n], (w2 @ cols).reshape(w_desc.k, y_desc.h, y_desc.w), alpha, beta)
            return
        raise ValueError(f"[numpy] unknown convolution forward algorithm '{algo}'")

    # -- other primitives ------------------------------------------------

    def pooling_forward(self, pool_param, alpha, x_desc, x, beta, y_desc, y) -> None:
        p = pool_param
        x4 = x.reshape(x_desc.shape)
        pads = ((0, 0), (0, 0), (p.pad_h, p.pad_h), (p.pad_w, p.pad_w))
        fill = -np.inf if p.mode is PoolingMode.MAX else 0.0
        xp = np.pad(x4, pads, constant_values=fill)
        win = sliding_window_view(xp, (p.kernel_size_h, p.kernel_size_w), axis=(2, 3))
        win = win[:, :, :: p.stride_h, :: p.stride_w][:, :, : y_desc.h, : y_desc.w]
        if p.mode is PoolingMode.MAX:
            out = win.max(axis=(-2, -1))
        elif p.mode is PoolingMode.AVERAGE_INCLUDE_PADDING:
            out = win.mean(axis=(-2, -1))
        else:
            ones = np.pad(np.ones((1, 1, x_desc.h, x_desc.w), dtype=self.dtype), pads)
            cnt = sliding_window_view(ones, (p.kernel_size_h, p.kernel_size_w), axis=(2, 3))
            cnt = cnt[:, :, :: p.stride_h, :: p.stride_w][:, :, : y_desc.h, : y_desc.w].sum(axis=(-2, -1))
            out = win.sum(axis=(-2, -1)) / np.maximum(cnt, 1)
        _blend(y.reshape(y_desc.shape), out, alpha, beta)

    def activation_forward(self, act_param, alpha, x_desc, x, beta, y) -> None:
        mode = act_param.mode
        if mode is ActivationMode.SIGMOID:
            out = 1.0 / (1.0 + np.exp(-x))
        elif mode is ActivationMode.RELU:
            out = np.maximum(x, 0)
        elif mode is ActivationMode.TANH:
            out = np.tanh(x)
        elif mode is ActivationMode.CLIPPED_RELU:
            out = np.clip(x, 0, act_param.coef)
        elif mode is ActivationMode.ELU:
            out = np.where(x > 0, x, act_param.coef * np.expm1(np.minimum(x, 0)))
        else:
            raise ValueError(f"[numpy] unsupported activation mode {mode}")
        _blend(y, out, alpha, beta)

    def lrn_forward(self, lrn_param, alpha, x_desc, x, beta, y) -> None:
        p = lrn_param
        x4 = x.reshape(x_desc.shape)
        # even windows take the extra neighbour from the lower channels
        lo = p.local_size // 2
        hi = p.local_size - 1 - lo
        sq = np.pad(x4 * x4, ((0, 0), (lo, hi), (0, 0), (0, 0)))
        csum = np.concatenate([np.zeros_like(sq[:, :1]), np.cumsum(sq, axis=1)], axis=1)
        window = csum[:, p.local_size :] - csum[:, : -p.local_size]
        out = x4 / np.power(p.k + (p.alpha / p.local_size) * window, p.beta)
        _blend(y.reshape(x_desc.shape), out, alpha, beta)

    def fully_connected_forward(self, alpha, x_desc, x, w, beta, y_desc, y) -> None:
        x2 = x.reshape(x_desc.n, -1)
        w2 = w.reshape(y_desc.c, -1)
        _blend(y.reshape(y_desc.n, y_desc.c), x2 @ w2.T, alpha, beta)

    def softmax_forward(self, softmax_param, alpha, x_desc, x, beta, y) -> None:
        # normalize along axis 1 either way: C*H*W per image or C per pixel
        if softmax_param.mode is SoftmaxMode.INSTANCE:
            v = x.reshape(x_desc.n, -1)
        else:
            v = x.reshape(x_desc.shape)
        algo = softmax_param.algo
        shifted = v if algo is SoftmaxAlgorithm.FAST else v - v.max(axis=1, keepdims=True)
        e = np.exp(shifted)
        total = e.sum(axis=1, keepdims=True)
        out = shifted - np.log(total) if algo is SoftmaxAlgorithm.LOG else e / total
        _blend(y.reshape(v.shape), out, alpha, beta)
