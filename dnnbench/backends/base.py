"""
Base Backend Interface for dnnbench.

A backend stands in for the accelerator runtime and the primitives library
at once: it owns device memory allocation, profiler markers, the forward
kernels of every layer kind, and the algorithm/workspace queries the
convolution layer makes during setup.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from dnnbench.descriptors import ConvolutionDesc, FilterDesc, TensorDesc
from dnnbench.errors import AlgorithmSelectionFailed
from dnnbench.params import ConvFwdPreference

logger = logging.getLogger(__name__)

# Forward convolution algorithm identifiers shared by all backends.
IMPLICIT_GEMM = "implicit_gemm"
IM2COL_GEMM = "im2col_gemm"

_DTYPES = {"float32": np.float32, "float64": np.float64}


def resolve_dtype(name: str):
    try:
        return _DTYPES[str(name).lower()]
    except KeyError:
        raise ValueError(f"Unsupported dtype '{name}' (expected one of {sorted(_DTYPES)})") from None


def convolution_output_dims(x_desc: TensorDesc, w_desc: FilterDesc, conv_desc: ConvolutionDesc):
    """Spatial output extents (out_h, out_w), floor division, no clamping."""
    eff_h = conv_desc.dilation_h * (w_desc.h - 1) + 1
    eff_w = conv_desc.dilation_w * (w_desc.w - 1) + 1
    out_h = (x_desc.h + 2 * conv_desc.pad_h - eff_h) // conv_desc.stride_h + 1
    out_w = (x_desc.w + 2 * conv_desc.pad_w - eff_w) // conv_desc.stride_w + 1
    return out_h, out_w


class BackendCapabilities:
    """
    Tracks capabilities and availability of a backend.
    """

    def __init__(self, name: str):
        self.name = name
        self.available = False
        self.device_count = 0
        self.device_names: List[str] = []
        self.device_kind: Optional[str] = None
        self.memory_gb: float = 0.0
        self.vendor_libs: Dict[str, bool] = {}  # lib_name -> available
        self.error_msg: Optional[str] = None

    def __repr__(self) -> str:
        if not self.available:
            return f"<BackendCapabilities({self.name}, unavailable: {self.error_msg})>"
        return (
            f"<BackendCapabilities({self.name}, "
            f"device={self.device_kind}, "
            f"vendor_libs={list(self.vendor_libs.keys())})>"
        )


class Backend(ABC):
    """
    Abstract base class for all dnnbench backends.

    Each backend must implement:
    - Device detection and memory allocate/free on that device
    - Data fill and host readback
    - Forward primitives for every layer kind
    - Ranking of convolution forward algorithms

    Algorithm filtering by preference and workspace sizing are shared here so
    every backend answers those queries identically.
    """

    def __init__(self, name: str, dtype: str = "float32"):
        self.name = name
        self.dtype_name = str(dtype).lower()
        self.dtype = resolve_dtype(self.dtype_name)
        self.itemsize = np.dtype(self.dtype).itemsize
        self.capabilities = BackendCapabilities(name)
        self._initialized = False

    # -- lifecycle -------------------------------------------------------

    @abstractmethod
    def initialize(self) -> bool:
        """
        Initialize the backend and detect capabilities.

        Returns:
            True if backend is available and usable, False otherwise.
        """
        raise NotImplementedError

    def synchronize(self):
        """
        Block until queued device work has finished.
        Override in subclasses for asynchronous devices.
        """
        pass

    def profiler_start(self):
        """Open an external profiler capture range (no-op by default)."""
        pass

    def profiler_stop(self):
        """Close the capture range opened by profiler_start()."""
        pass

    # -- memory ----------------------------------------------------------

    @abstractmethod
    def allocate(self, num_elements: int) -> Any:
        """Allocate a flat device array; raise OutOfDeviceMemory on failure."""
        raise NotImplementedError

    @abstractmethod
    def free(self, memory: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def fill(self, memory: Any, rng: np.random.Generator) -> None:
        """Overwrite memory with uniform values in [-1, 1)."""
        raise NotImplementedError

    @abstractmethod
    def to_numpy(self, memory: Any) -> np.ndarray:
        """Copy device memory to a flat host array."""
        raise NotImplementedError

    # -- convolution -----------------------------------------------------

    def convolution_forward_algorithms(self) -> List[str]:
        return [IMPLICIT_GEMM, IM2COL_GEMM]

    def get_convolution_forward_workspace_size(
        self,
        x_desc: TensorDesc,
        w_desc: FilterDesc,
        conv_desc: ConvolutionDesc,
        y_desc: TensorDesc,
        algo: str,
    ) -> int:
        """Workspace in elements that `algo` needs for these shapes."""
        if algo == IMPLICIT_GEMM:
            return 0
        if algo == IM2COL_GEMM:
            # one image worth of unfolded columns
            return w_desc.c * w_desc.h * w_desc.w * y_desc.h * y_desc.w
        raise ValueError(f"Unknown convolution forward algorithm '{algo}'")

    def get_convolution_forward_algorithm(
        self,
        x_desc: TensorDesc,
        w_desc: FilterDesc,
        conv_desc: ConvolutionDesc,
        y_desc: TensorDesc,
        preference: ConvFwdPreference,
        workspace_limit: int = 0,
    ) -> str:
        """
        Pick the forward algorithm for the given shapes.

        NO_WORKSPACE keeps only algorithms needing no scratch,
        SPECIFY_WORKSPACE_LIMIT keeps those fitting `workspace_limit`
        elements, PREFER_FASTEST keeps all. The backend's ranking decides
        among the survivors.
        """
        candidates = []
        for algo in self.convolution_forward_algorithms():
            ws = self.get_convolution_forward_workspace_size(x_desc, w_desc, conv_desc, y_desc, algo)
            if preference is ConvFwdPreference.NO_WORKSPACE and ws != 0:
                continue
            if preference is ConvFwdPreference.SPECIFY_WORKSPACE_LIMIT and ws > workspace_limit:
                continue
            candidates.append(algo)
        if not candidates:
            raise AlgorithmSelectionFailed(
                f"[{self.name}] no forward algorithm satisfies {preference.value} "
                f"(workspace_limit={workspace_limit}) for input {x_desc.shape}"
            )
        ranked = self._rank_convolution_algorithms(candidates, x_desc, w_desc, conv_desc, y_desc)
        logger.debug(f"[{self.name}] conv forward candidates ranked: {ranked}")
        return ranked[0]

    @abstractmethod
    def _rank_convolution_algorithms(
        self,
        candidates: Sequence[str],
        x_desc: TensorDesc,
        w_desc: FilterDesc,
        conv_desc: ConvolutionDesc,
        y_desc: TensorDesc,
    ) -> List[str]:
        """Order candidates fastest first."""
        raise NotImplementedError

    @abstractmethod
    def convolution_forward(
        self,
        alpha: float,
        x_desc: TensorDesc,
        x: Any,
        w_desc: FilterDesc,
        w: Any,
        conv_desc: ConvolutionDesc,
        algo: str,
        workspace: Any,
        workspace_size: int,
        beta: float,
        y_desc: TensorDesc,
        y: Any,
    ) -> None:
        raise NotImplementedError

    # -- other primitives ------------------------------------------------

    @abstractmethod
    def pooling_forward(self, pool_param, alpha, x_desc, x, beta, y_desc, y) -> None:
        raise NotImplementedError

    @abstractmethod
    def activation_forward(self, act_param, alpha, x_desc, x, beta, y) -> None:
        raise NotImplementedError

    @abstractmethod
    def lrn_forward(self, lrn_param, alpha, x_desc, x, beta, y) -> None:
        raise NotImplementedError

    @abstractmethod
    def fully_connected_forward(self, alpha, x_desc, x, w, beta, y_desc, y) -> None:
        """y[n, k] = sum_j x[n, j] * w[k, j] with x flattened per image."""
        raise NotImplementedError

    @abstractmethod
    def softmax_forward(self, softmax_param, alpha, x_desc, x, beta, y) -> None:
        raise NotImplementedError

    # -- introspection ---------------------------------------------------

    def get_device_info(self) -> Dict[str, Any]:
        """Get detailed device information."""
        return {
            "name": self.name,
            "available": self.capabilities.available,
            "device_kind": self.capabilities.device_kind,
            "device_count": self.capabilities.device_count,
            "device_names": self.capabilities.device_names,
            "memory_gb": self.capabilities.memory_gb,
            "vendor_libs": self.capabilities.vendor_libs,
            "dtype": self.dtype_name,
        }

    def __repr__(self) -> str:
        status = "available" if self.capabilities.available else "unavailable"
        return f"<{self.__class__.__name__}({self.name}, {status})>"
