import json

import numpy as np
import pytest

from dnnbench.chain import LayerChain, load_chain
from dnnbench.errors import ChainError


def _small_chain(ctx):
    chain = LayerChain(ctx)
    chain.add("conv", name="conv1", input_shape=(2, 3, 8, 8), params={"output_num": 4, "kernel_size": 3, "pad": 1})
    chain.add("activation", name="relu1", previous="conv1", params={"mode": "relu"})
    chain.add("pooling", name="pool1", previous="relu1")
    return chain


def test_chain_wires_outputs_to_inputs(ctx):
    chain = _small_chain(ctx)
    chain.setup()
    conv, relu, pool = chain["conv1"], chain["relu1"], chain["pool1"]
    assert relu.bottoms == conv.tops
    assert pool.bottoms == relu.tops
    assert conv.output_dim.as_tuple() == (2, 4, 8, 8)
    assert relu.output_dim.as_tuple() == (2, 4, 8, 8)
    assert pool.output_dim.as_tuple() == (2, 4, 3, 3)

    chain.forward()
    chain.backward()
    relu_out = relu.output_buffers()[0].memory
    assert np.isfinite(relu_out).all()
    assert (relu_out >= 0).all()
    assert np.isfinite(pool.output_buffers()[0].memory).all()

    chain.teardown()
    assert len(ctx.registry) == 0


def test_composed_layers_allocate_only_their_own_buffers(ctx):
    chain = _small_chain(ctx)
    chain.setup()
    # conv: in/grad, out/grad, w/grad, scratch; relu and pool: out/grad each
    assert ctx.registry.stats()["allocations"] == 7 + 2 + 2


def test_run_reports_timings(ctx):
    chain = _small_chain(ctx)
    chain.setup()
    report = chain.run(iterations=2, warmup=1)
    assert report["backend"] == "numpy"
    assert [row["name"] for row in report["layers"]] == ["conv1", "relu1", "pool1"]
    for row in report["layers"]:
        assert row["timing"]["count"] == 2
        assert row["timing"]["median_ms"] >= 0.0
    assert report["layers"][0]["algorithm"] == "im2col_gemm"
    assert report["layers"][2]["output"] == [2, 4, 3, 3]
    chain.teardown()


def test_wiring_errors(ctx):
    chain = LayerChain(ctx)
    with pytest.raises(ChainError):
        chain.add("activation", name="orphan", previous="missing")
    chain.add("activation", name="a", input_shape=(1, 1, 2, 2))
    with pytest.raises(ChainError):
        chain.add("activation", name="a", previous="a")
    with pytest.raises(ChainError):
        chain.add("activation", name="both", input_shape=(1, 1, 2, 2), previous="a")
    with pytest.raises(ChainError):
        chain.add("activation", name="neither")
    with pytest.raises(ChainError):
        chain["nope"]


def test_from_dict_rejects_unknown_parameters(ctx):
    spec = {"layers": [{"type": "fc", "input": [1, 2, 2, 2], "params": {"kernel_size": 3}}]}
    with pytest.raises(ChainError):
        LayerChain.from_dict(spec, ctx)
    with pytest.raises(ChainError):
        LayerChain.from_dict({"layers": []}, ctx)


def test_load_chain_from_json(tmp_path):
    path = tmp_path / "chain.json"
    path.write_text(
        json.dumps(
            {
                "backend": "numpy",
                "seed": 7,
                "layers": [
                    {"type": "fc", "name": "fc1", "input": [4, 8, 2, 2], "params": {"output_num": 16}},
                    {"type": "softmax", "name": "prob", "previous": "fc1", "params": {"mode": "instance"}},
                ],
            }
        )
    )
    chain = load_chain(str(path))
    assert chain.context.backend.name == "numpy"
    assert chain.context.filler.seed == 7
    chain.setup()
    chain.forward()
    probs = chain["prob"].output_buffers()[0].memory.reshape(4, -1)
    assert np.allclose(probs.sum(axis=1), 1.0, atol=1e-5)
    chain.teardown()
    assert len(chain.context.registry) == 0
