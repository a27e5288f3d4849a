# dnnbench/hardware.py
import platform
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class HardwareProfile:
    vendor: str
    kind: str
    name: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


def detect_hardware() -> HardwareProfile:
    """
    Best-effort detection of the device benchmarks will run on:
    Order:
      1) Torch CUDA GPU (NVIDIA, or AMD under ROCm)
      2) Torch MPS (Apple)
      3) Fallback: host CPU
    """
    try:
        import torch  # type: ignore

        if hasattr(torch, "cuda") and torch.cuda.is_available():
            name = torch.cuda.get_device_name(0)
            hip = getattr(torch.version, "hip", None)
            return HardwareProfile(
                vendor="amd" if hip else "nvidia",
                kind="cuda",
                name=name,
                details={
                    "torch": getattr(torch, "__version__", "unknown"),
                    "cudnn": torch.backends.cudnn.version() if torch.backends.cudnn.is_available() else None,
                    "device_count": torch.cuda.device_count(),
                },
            )
        if getattr(torch.backends, "mps", None) is not None and torch.backends.mps.is_available():
            return HardwareProfile(
                vendor="apple",
                kind="mps",
                name=platform.processor() or "Apple GPU",
                details={"torch": getattr(torch, "__version__", "unknown")},
            )
    except Exception:
        pass

    details: Dict[str, Any] = {"machine": platform.machine()}
    try:
        import psutil

        details["cpu_count"] = psutil.cpu_count(logical=True)
        details["memory_gb"] = round(psutil.virtual_memory().total / (1024**3), 2)
    except Exception:
        pass
    return HardwareProfile(vendor="generic", kind="cpu", name=platform.processor() or platform.machine(), details=details)
