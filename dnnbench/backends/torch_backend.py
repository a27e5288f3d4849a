# dnnbench/backends/torch_backend.py
"""
PyTorch backend.

Picks the best torch device at runtime (CUDA > MPS > CPU). Device memory is a
flat torch.Tensor per buffer; primitives run through torch.nn.functional, so
on CUDA they reach cuDNN/cuBLAS the same way a native harness would.
Convolution algorithms are ranked by timing each candidate on scratch tensors
of the real shapes.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from dnnbench import config as _cfg
from dnnbench.backends.base import IM2COL_GEMM, IMPLICIT_GEMM, Backend
from dnnbench.core.benchmark import benchmark_callable
from dnnbench.errors import BackendUnavailable, OutOfDeviceMemory
from dnnbench.params import ActivationMode, ConvMode, PoolingMode, SoftmaxAlgorithm, SoftmaxMode

logger = logging.getLogger(__name__)


def _torch_device_preference():
    try:
        import torch
    except Exception:
        return None
    try:
        if torch.cuda.is_available():
            return torch.device("cuda")
    except Exception:
        pass
    try:
        if getattr(torch.backends, "mps", None) is not None and torch.backends.mps.is_available():
            return torch.device("mps")
    except Exception:
        pass
    return torch.device("cpu")


def is_torch_available() -> bool:
    try:
        import torch  # noqa: F401

        return True
    except Exception:
        return False


class TorchBackend(Backend):
    """
    Backend executing every primitive with PyTorch on the preferred device.
    """

    def __init__(self, dtype: str = "float32", memory_limit: Optional[int] = None, device: Optional[str] = None):
        super().__init__("torch", dtype=dtype)
        self._torch = None
        self._F = None
        self.device = None
        self._requested_device = device
        if memory_limit is None:
            memory_limit = int(_cfg.get("DNNBENCH_DEVICE_MEMORY_LIMIT"))
        self.memory_limit = max(0, int(memory_limit))
        self.allocated_elements = 0

    def initialize(self) -> bool:
        """Import torch and pick the device."""
        if self._initialized:
            return self.capabilities.available

        try:
            import torch
            import torch.nn.functional as F

            self._torch = torch
            self._F = F
            self.device = torch.device(self._requested_device) if self._requested_device else _torch_device_preference()
            self.torch_dtype = {"float32": torch.float32, "float64": torch.float64}[self.dtype_name]

            caps = self.capabilities
            caps.available = True
            caps.device_kind = self.device.type
            caps.vendor_libs["torch"] = True
            if self.device.type == "cuda":
                caps.device_count = torch.cuda.device_count()
                for i in range(caps.device_count):
                    caps.device_names.append(torch.cuda.get_device_name(i))
                    props = torch.cuda.get_device_properties(i)
                    caps.memory_gb = props.total_memory / (1024**3)
                caps.vendor_libs["cudnn"] = bool(torch.backends.cudnn.is_available())
            else:
                caps.device_count = 1
                caps.device_names = [self.device.type]

            logger.info(f"[torch] Initialized on {self.device} ({self.dtype_name})")
        except ImportError:
            self.capabilities.available = False
            self.capabilities.error_msg = "torch not installed"
            logger.warning("[torch] torch not available")
        except Exception as e:
            self.capabilities.available = False
            self.capabilities.error_msg = str(e)
            logger.error(f"[torch] Initialization failed: {e}")

        self._initialized = True
        return self.capabilities.available

    def _require(self):
        if not self.capabilities.available:
            raise BackendUnavailable(f"[torch] backend unavailable: {self.capabilities.error_msg}")

    def synchronize(self):
        if self.device is None:
            return
        if self.device.type == "cuda":
            self._torch.cuda.synchronize()
        elif self.device.type == "mps":
            self._torch.mps.synchronize()

    def profiler_start(self):
        if self.device is not None and self.device.type == "cuda":
            self._torch.cuda.profiler.start()

    def profiler_stop(self):
        if self.device is not None and self.device.type == "cuda":
            self._torch.cuda.profiler.stop()

    # -- memory ----------------------------------------------------------

    def allocate(self, num_elements: int):
        self._require()
        n = int(num_elements)
        if self.memory_limit and self.allocated_elements + n > self.memory_limit:
            raise OutOfDeviceMemory(
                f"[torch] cannot allocate {n} elements: "
                f"{self.allocated_elements}/{self.memory_limit} in use",
                requested=n,
                call="allocate",
            )
        try:
            memory = self._torch.full((n,), float("nan"), dtype=self.torch_dtype, device=self.device)
        except RuntimeError as e:
            if "out of memory" in str(e).lower():
                raise OutOfDeviceMemory(f"[torch] {e}", requested=n, call="allocate") from e
            raise
        self.allocated_elements += n
        return memory

    def free(self, memory) -> None:
        self.allocated_elements -= int(memory.numel())

    def fill(self, memory, rng: np.random.Generator) -> None:
        gen = self._torch.Generator()
        gen.manual_seed(int(rng.integers(0, 2**62)))
        host = self._torch.empty(memory.numel(), dtype=self.torch_dtype).uniform_(-1.0, 1.0, generator=gen)
        memory.copy_(host)

    def to_numpy(self, memory) -> np.ndarray:
        return memory.detach().cpu().numpy().copy()

    def _blend(self, y, result, alpha, beta):
        # beta == 0 must not read y: it may hold NaN poison
        if beta == 0:
            y.copy_(result if alpha == 1 else result * alpha)
        else:
            y.mul_(beta).add_(result, alpha=alpha)

    # -- convolution -----------------------------------------------------

    def _rank_convolution_algorithms(self, candidates: Sequence[str], x_desc, w_desc, conv_desc, y_desc) -> List[str]:
        if len(candidates) == 1:
            return list(candidates)
        torch = self._torch
        mk = lambda n: torch.empty(n, dtype=self.torch_dtype, device=self.device).uniform_(-1.0, 1.0)  # noqa: E731
        x, w, y = mk(x_desc.size), mk(w_desc.size), mk(y_desc.size)
        timings = {}
        for algo in candidates:
            ws_size = self.get_convolution_forward_workspace_size(x_desc, w_desc, conv_desc, y_desc, algo)
            ws = mk(ws_size) if ws_size else None
            timings[algo] = benchmark_callable(
                self.convolution_forward,
                (1.0, x_desc, x, w_desc, w, conv_desc, algo, ws, ws_size, 0.0, y_desc, y),
                runs=3,
                warmup=1,
                sync_fn=self.synchronize,
            )
        logger.debug(f"[torch] conv forward timings: {timings}")
        return sorted(candidates, key=lambda a: timings[a])

    def convolution_forward(
        self, alpha, x_desc, x, w_desc, w, conv_desc, algo, workspace, workspace_size, beta, y_desc, y
    ) -> None:
        F = self._F
        x4 = x.view(x_desc.shape)
        w4 = w.view(w_desc.shape)
        if conv_desc.mode is ConvMode.CONVOLUTION:
            w4 = self._torch.flip(w4, dims=(2, 3))
        y4 = y.view(y_desc.shape)

        if algo == IMPLICIT_GEMM:
            out = F.conv2d(x4, w4, stride=conv_desc.stride, padding=conv_desc.padding, dilation=conv_desc.dilation)
            self._blend(y4, out, alpha, beta)
            return
        if algo == IM2COL_GEMM:
            rows = w_desc.c * w_desc.h * w_desc.w
            cols_needed = rows * y_desc.h * y_desc.w
            if workspace is None or workspace_size < cols_needed:
                raise ValueError(f"[torch] im2col_gemm needs {cols_needed} workspace elements, got {workspace_size}")
            cols = workspace[:cols_needed].view(rows, y_desc.h * y_desc.w)
            w2 = w4.reshape(w_desc.k, rows)
            for n in range(x_desc.n):
                unfolded = F.unfold(
                    x4[n : n + 1],
                    kernel_size=(w_desc.h, w_desc.w),
                    dilation=conv_desc.dilation,
                    padding=conv_desc.padding,
                    stride=conv_desc.stride,
                )
                cols.copy_(unfolded[0])
                self._blend(y4[n], (w2 @ cols).view(w_desc.k, y_desc.h, y_desc.w), alpha, beta)
            return
        raise ValueError(f"[torch] unknown convolution forward algorithm '{algo}'")

    # -- other primitives ------------------------------------------------

    def pooling_forward(self, pool_param, alpha, x_desc, x, beta, y_desc, y) -> None:
        F = self._F
        p = pool_param
        x4 = x.view(x_desc.shape)
        kernel = (p.kernel_size_h, p.kernel_size_w)
        stride = (p.stride_h, p.stride_w)
        padding = (p.pad_h, p.pad_w)
        if p.mode is PoolingMode.MAX:
            out = F.max_pool2d(x4, kernel, stride=stride, padding=padding)
        else:
            include = p.mode is PoolingMode.AVERAGE_INCLUDE_PADDING
            out = F.avg_pool2d(x4, kernel, stride=stride, padding=padding, count_include_pad=include)
        self._blend(y.view(y_desc.shape), out, alpha, beta)

    def activation_forward(self, act_param, alpha, x_desc, x, beta, y) -> None:
        torch, F = self._torch, self._F
        mode = act_param.mode
        if mode is ActivationMode.SIGMOID:
            out = torch.sigmoid(x)
        elif mode is ActivationMode.RELU:
            out = torch.relu(x)
        elif mode is ActivationMode.TANH:
            out = torch.tanh(x)
        elif mode is ActivationMode.CLIPPED_RELU:
            out = torch.clamp(x, min=0.0, max=act_param.coef)
        elif mode is ActivationMode.ELU:
            out = F.elu(x, alpha=act_param.coef)
        else:
            raise ValueError(f"[torch] unsupported activation mode {mode}")
        self._blend(y, out, alpha, beta)

    def lrn_forward(self, lrn_param, alpha, x_desc, x, beta, y) -> None:
        p = lrn_param
        out = self._F.local_response_norm(x.view(x_desc.shape), p.local_size, alpha=p.alpha, beta=p.beta, k=p.k)
        self._blend(y.view(x_desc.shape), out, alpha, beta)

    def fully_connected_forward(self, alpha, x_desc, x, w, beta, y_desc, y) -> None:
        x2 = x.view(x_desc.n, -1)
        w2 = w.view(y_desc.c, -1)
        self._blend(y.view(y_desc.n, y_desc.c), x2 @ w2.t(), alpha, beta)

    def softmax_forward(self, softmax_param, alpha, x_desc, x, beta, y) -> None:
        torch, F = self._torch, self._F
        if softmax_param.mode is SoftmaxMode.INSTANCE:
            v = x.view(x_desc.n, -1)
        else:
            v = x.view(x_desc.shape)
        algo = softmax_param.algo
        if algo is SoftmaxAlgorithm.FAST:
            e = torch.exp(v)
            out = e / e.sum(dim=1, keepdim=True)
        elif algo is SoftmaxAlgorithm.LOG:
            out = F.log_softmax(v, dim=1)
        else:
            out = F.softmax(v, dim=1)
        self._blend(y.view(v.shape), out, alpha, beta)
