import os

import pytest

from dnnbench import config
from dnnbench.backends.numpy_backend import NumpyBackend
from dnnbench.context import ExecutionContext


@pytest.fixture(autouse=True)
def _clean_dnnbench_env(monkeypatch):
    # each test starts from registry defaults
    for key in list(os.environ):
        if key.startswith("DNNBENCH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config, "_OVERRIDES", {})


@pytest.fixture
def backend():
    b = NumpyBackend(memory_limit=0)
    b.initialize()
    return b


@pytest.fixture
def ctx(backend):
    c = ExecutionContext(backend=backend, seed=0, profile=False)
    yield c
    c.close()
