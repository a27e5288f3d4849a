import numpy as np
import pytest

from dnnbench.backends.base import IM2COL_GEMM, IMPLICIT_GEMM
from dnnbench.backends.numpy_backend import NumpyBackend
from dnnbench.context import ExecutionContext
from dnnbench.errors import (
    AlreadySetUp,
    NotConfigured,
    NotReady,
    OutOfDeviceMemory,
    ShapeInferenceInvalid,
    WorkspaceQueryFailed,
)
from dnnbench.layers import ConvolutionLayer, LayerState
from dnnbench.params import ConvolutionParam, ScratchLifetime, from_dict


def make_conv(ctx, shape, name="conv", **params):
    layer = ConvolutionLayer(ctx, name=name, params=from_dict(ConvolutionParam, params))
    layer.set_input_shape(shape)
    return layer


def test_same_padding_keeps_spatial_extent(ctx):
    conv = make_conv(ctx, (1, 3, 32, 32), output_num=16, kernel_size=5, pad=2, stride=1)
    conv.setup()
    assert conv.output_dim.as_tuple() == (1, 16, 32, 32)


@pytest.mark.parametrize(
    "shape, params, expected",
    [
        ((1, 3, 32, 32), dict(kernel_size=3, stride=2, pad=0), (1, 8, 15, 15)),
        ((1, 3, 7, 7), dict(kernel_size=3, stride=2, pad=1), (1, 8, 4, 4)),
        ((2, 1, 8, 8), dict(kernel_size=3, stride=1, pad=0, dilation=2), (2, 8, 4, 4)),
        ((1, 3, 10, 6), dict(kernel_size_h=3, kernel_size_w=1, pad_h=1, pad_w=0), (1, 8, 10, 6)),
    ],
)
def test_output_shape_formula(ctx, shape, params, expected):
    conv = make_conv(ctx, shape, output_num=8, **params)
    conv.setup()
    assert conv.output_dim.as_tuple() == expected


def test_end_to_end_per_call_scratch(ctx):
    conv = make_conv(ctx, (2, 3, 8, 8), output_num=4, kernel_size=3, stride=1, pad=1, scratch_lifetime="call")
    conv.num_inputs = 2
    conv.setup()

    assert conv.state is LayerState.READY
    assert conv.output_dim.as_tuple() == (2, 4, 8, 8)
    assert ctx.registry.get_buffer(conv.weights).size == 4 * 3 * 3 * 3
    assert conv.fwd_algo == IM2COL_GEMM
    assert conv.scratch_size == 3 * 3 * 3 * 8 * 8
    scratch = conv.scratch_handle
    assert ctx.registry.get_buffer(scratch).size == conv.scratch_size

    outputs = conv.output_buffers()
    assert len(outputs) == 2
    assert all(np.isnan(b.memory).all() for b in outputs)

    conv.forward()

    for buf in outputs:
        assert buf.written
        assert np.isfinite(buf.memory).all()
    assert conv.scratch_handle is None
    assert not ctx.registry.is_live(scratch)


def test_per_call_scratch_is_recreated_on_next_forward(ctx):
    conv = make_conv(ctx, (1, 2, 6, 6), output_num=2, kernel_size=3, pad=1, scratch_lifetime=ScratchLifetime.PER_CALL)
    conv.setup()
    conv.forward()
    before = ctx.registry.stats()["allocations"]
    conv.forward()
    assert ctx.registry.stats()["allocations"] == before + 1
    assert conv.scratch_handle is None


def test_per_run_scratch_survives_forward_until_teardown(ctx):
    conv = make_conv(ctx, (1, 2, 6, 6), output_num=2, kernel_size=3, pad=1, scratch_lifetime="run")
    conv.setup()
    scratch = conv.scratch_handle
    allocations = ctx.registry.stats()["allocations"]
    for _ in range(3):
        conv.forward()
    assert conv.scratch_handle == scratch
    assert ctx.registry.is_live(scratch)
    assert ctx.registry.stats()["allocations"] == allocations

    conv.teardown()
    assert not ctx.registry.is_live(scratch)
    assert len(ctx.registry) == 0
    assert conv.state is LayerState.TORN_DOWN


def test_zero_workspace_allocates_no_scratch(ctx):
    conv = make_conv(ctx, (2, 3, 8, 8), output_num=4, kernel_size=3, pad=1, fwd_pref="no_workspace")
    conv.setup()
    assert conv.fwd_algo == IMPLICIT_GEMM
    assert conv.scratch_size == 0
    assert conv.scratch_handle is None
    # input + grad, output + grad, weights + grad
    assert ctx.registry.stats()["allocations"] == 6
    conv.forward()
    assert np.isfinite(conv.output_buffers()[0].memory).all()


def test_workspace_limit_selects_fitting_algorithm(ctx):
    tight = make_conv(ctx, (1, 3, 8, 8), name="tight", output_num=4, kernel_size=3, pad=1,
                      fwd_pref="specify_workspace_limit", workspace_limit=10)
    roomy = make_conv(ctx, (1, 3, 8, 8), name="roomy", output_num=4, kernel_size=3, pad=1,
                      fwd_pref="specify_workspace_limit", workspace_limit=10_000)
    tight.setup()
    roomy.setup()
    assert tight.fwd_algo == IMPLICIT_GEMM
    assert roomy.fwd_algo == IM2COL_GEMM


def test_pointwise_kernel_prefers_implicit_gemm(ctx):
    conv = make_conv(ctx, (1, 8, 4, 4), output_num=4, kernel_size=1, pad=0)
    conv.setup()
    assert conv.fwd_algo == IMPLICIT_GEMM


def test_both_algorithms_agree(ctx):
    a = make_conv(ctx, (2, 3, 7, 7), name="a", output_num=5, kernel_size=3, pad=1, stride=2, fwd_pref="no_workspace")
    b = make_conv(ctx, (2, 3, 7, 7), name="b", output_num=5, kernel_size=3, pad=1, stride=2)
    a.setup()
    b.setup()
    assert (a.fwd_algo, b.fwd_algo) == (IMPLICIT_GEMM, IM2COL_GEMM)

    backend = ctx.backend
    x = ctx.registry.get_buffer(a.bottoms[0]).memory
    w = ctx.registry.get_buffer(a.weights).memory
    ctx.fill(a.bottoms[0])
    ctx.fill(a.weights)
    y_a = np.empty(a.output_desc.size, dtype=backend.dtype)
    y_b = np.empty(b.output_desc.size, dtype=backend.dtype)
    backend.convolution_forward(1.0, a.input_desc, x, a.filter_desc, w, a.conv_desc, IMPLICIT_GEMM, None, 0, 0.0, a.output_desc, y_a)
    ws = ctx.registry.get_buffer(b.scratch_handle).memory
    backend.convolution_forward(1.0, b.input_desc, x, b.filter_desc, w, b.conv_desc, IM2COL_GEMM, ws, b.scratch_size, 0.0, b.output_desc, y_b)
    assert np.allclose(y_a, y_b, atol=1e-5)


def test_lifecycle_errors(ctx):
    conv = ConvolutionLayer(ctx, name="conv")
    with pytest.raises(NotConfigured):
        conv.setup()
    with pytest.raises(NotReady):
        conv.forward()
    conv.set_input_shape((1, 3, 8, 8))
    with pytest.raises(NotReady):
        conv.backward()
    conv.params.kernel_size_h = conv.params.kernel_size_w = 3
    conv.params.pad_h = conv.params.pad_w = 1
    conv.setup()
    conv.forward()
    conv.backward()
    with pytest.raises(AlreadySetUp):
        conv.setup()


def test_non_positive_output_is_rejected_eagerly(ctx):
    conv = make_conv(ctx, (1, 3, 4, 4), name="big", kernel_size=7, pad=0)
    with pytest.raises(ShapeInferenceInvalid) as exc:
        conv.setup()
    assert exc.value.layer_name == "big"
    assert "layer 'big'" in str(exc.value)
    assert conv.state is LayerState.FAILED
    with pytest.raises(NotReady):
        conv.forward()
    # the input buffers created before the failure are still released by teardown
    assert len(ctx.registry) == 2
    conv.teardown()
    assert len(ctx.registry) == 0


def test_out_of_memory_during_setup_names_the_layer():
    backend = NumpyBackend(memory_limit=1000)
    backend.initialize()
    ctx = ExecutionContext(backend=backend, seed=0, profile=False)
    conv = make_conv(ctx, (1, 3, 16, 16), name="oom", output_num=8, kernel_size=3, pad=1)
    with pytest.raises(OutOfDeviceMemory) as exc:
        conv.setup()
    assert exc.value.layer_name == "oom"
    assert exc.value.call == "allocate"
    assert conv.state is LayerState.FAILED
    conv.teardown()
    assert backend.allocated_elements == 0


def test_workspace_query_failure_is_wrapped():
    class BrokenWorkspace(NumpyBackend):
        def get_convolution_forward_workspace_size(self, x_desc, w_desc, conv_desc, y_desc, algo):
            if algo == self._picked:
                raise RuntimeError("driver said no")
            return super().get_convolution_forward_workspace_size(x_desc, w_desc, conv_desc, y_desc, algo)

        def get_convolution_forward_algorithm(self, *args, **kwargs):
            self._picked = None
            algo = super().get_convolution_forward_algorithm(*args, **kwargs)
            self._picked = algo
            return algo

    broken = BrokenWorkspace(memory_limit=0)
    broken.initialize()
    ctx = ExecutionContext(backend=broken, seed=0, profile=False)
    conv = make_conv(ctx, (1, 3, 8, 8), kernel_size=3, pad=1)
    with pytest.raises(WorkspaceQueryFailed) as exc:
        conv.setup()
    assert isinstance(exc.value.__cause__, RuntimeError)


def test_weights_are_shared_across_inputs(ctx):
    conv = make_conv(ctx, (1, 3, 8, 8), output_num=4, kernel_size=3, pad=1)
    conv.num_inputs = 3
    conv.setup()
    assert len(conv.bottoms) == len(conv.tops) == 3
    # 3 x (input + grad), 3 x (output + grad), weights + grad, scratch
    assert ctx.registry.stats()["allocations"] == 6 + 6 + 2 + 1


def test_forward_times_all_inputs_in_one_region(ctx):
    conv = make_conv(ctx, (1, 3, 8, 8), name="timed", output_num=4, kernel_size=3, pad=1)
    conv.num_inputs = 2
    conv.setup()
    conv.forward()
    assert len(ctx.timings["timed"]) == 1
    assert all(buf.written for buf in conv.output_buffers())


def test_chain_reports_one_sample_per_iteration_with_fan_out(ctx):
    from dnnbench.chain import LayerChain

    chain = LayerChain(ctx)
    chain.add("conv", name="conv1", input_shape=(1, 3, 8, 8), num_inputs=2,
              params={"output_num": 4, "kernel_size": 3, "pad": 1})
    chain.setup()
    report = chain.run(iterations=3, warmup=0)
    assert report["layers"][0]["timing"]["count"] == 3
    chain.teardown()


def test_weights_filled_once_per_forward(ctx):
    conv = make_conv(ctx, (1, 3, 4, 4), output_num=2, kernel_size=1)
    conv.num_inputs = 3
    conv.setup()
    fills = []
    original = ctx.fill

    def counting_fill(handle):
        fills.append(handle)
        original(handle)

    ctx.fill = counting_fill
    conv.forward()
    assert fills.count(conv.weights) == 1
    assert sorted(h for h in fills if h != conv.weights) == sorted(conv.bottoms)
