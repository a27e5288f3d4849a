# dnnbench/core/__init__.py
from .benchmark import benchmark_callable as benchmark_callable
from .benchmark import summarize as summarize
from .benchmark import time_runs as time_runs

__all__ = [
    "benchmark_callable",
    "summarize",
    "time_runs",
]
