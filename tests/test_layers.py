import numpy as np
import pytest

from dnnbench.errors import LayerStateError, NotReady, ShapeInferenceInvalid
from dnnbench.layers import (
    ActivationLayer,
    ConvolutionLayer,
    FullyConnectedLayer,
    LayerState,
    LayerType,
    LRNLayer,
    PoolingLayer,
    SoftmaxLayer,
    create_layer,
)
from dnnbench.params import FullyConnectedParam, PoolingParam, SoftmaxMode, SoftmaxParam
from dnnbench.shape import ShapeDescriptor


def test_factory_maps_every_type(ctx):
    expected = {
        LayerType.CONVOLUTION: ConvolutionLayer,
        LayerType.POOLING: PoolingLayer,
        LayerType.ACTIVATION: ActivationLayer,
        LayerType.LRN: LRNLayer,
        LayerType.FC: FullyConnectedLayer,
        LayerType.SOFTMAX: SoftmaxLayer,
    }
    for layer_type, cls in expected.items():
        assert type(create_layer(layer_type, ctx)) is cls
    assert isinstance(create_layer("conv", ctx), ConvolutionLayer)
    assert isinstance(create_layer("Softmax", ctx), SoftmaxLayer)
    with pytest.raises(ValueError):
        create_layer("batchnorm", ctx)


def test_default_names_and_ids(ctx):
    a = create_layer("conv", ctx)
    b = create_layer("pooling", ctx)
    assert (a.layer_id, b.layer_id) == (0, 1)
    assert a.name == "convolution0"
    assert b.name == "pooling1"
    assert a.has_learnable_params and not b.has_learnable_params


def test_pooling_default_window(ctx):
    pool = PoolingLayer(ctx)
    pool.set_input_shape((1, 2, 9, 9))
    pool.setup()
    assert pool.output_dim.as_tuple() == (1, 2, 4, 4)
    pool.forward()
    assert np.isfinite(pool.output_buffers()[0].memory).all()


def test_pooling_window_larger_than_input_is_rejected(ctx):
    pool = PoolingLayer(ctx, params=PoolingParam(kernel_size_h=5, kernel_size_w=5))
    pool.set_input_shape((1, 1, 3, 3))
    with pytest.raises(ShapeInferenceInvalid):
        pool.setup()
    assert pool.state is LayerState.FAILED


def test_fully_connected_shapes(ctx):
    fc = FullyConnectedLayer(ctx, params=FullyConnectedParam(output_num=10))
    fc.set_input_shape((2, 3, 4, 4))
    fc.setup()
    assert fc.output_dim.as_tuple() == (2, 10, 1, 1)
    assert ctx.registry.get_buffer(fc.weights).size == 10 * 3 * 4 * 4
    fc.forward()
    out = fc.output_buffers()[0]
    assert out.written and np.isfinite(out.memory).all()


@pytest.mark.parametrize("cls", [ActivationLayer, LRNLayer, SoftmaxLayer])
def test_shape_preserving_layers(ctx, cls):
    layer = cls(ctx)
    layer.set_input_shape((2, 6, 5, 5))
    layer.setup()
    assert layer.output_dim == layer.input_dim
    layer.forward()
    layer.backward()
    assert np.isfinite(layer.output_buffers()[0].memory).all()
    # input, input grad, output, output grad
    assert ctx.registry.stats()["allocations"] == 4


def test_softmax_output_is_a_distribution(ctx):
    layer = SoftmaxLayer(ctx, params=SoftmaxParam(mode=SoftmaxMode.INSTANCE))
    layer.set_input_shape((3, 2, 2, 2))
    layer.setup()
    layer.forward()
    y = layer.output_buffers()[0].memory.reshape(3, -1)
    assert np.allclose(y.sum(axis=1), 1.0, atol=1e-5)


def test_composed_setup_allocates_nothing(ctx):
    relu = ActivationLayer(ctx, name="relu")
    relu.set_previous_layer("conv1")
    relu.setup()
    assert relu.state is LayerState.READY
    assert relu.previous_layer_name == "conv1"
    assert relu.input_dim == ShapeDescriptor.zero()
    assert ctx.registry.stats()["allocations"] == 0
    with pytest.raises(NotReady):
        relu.forward()


def test_bind_inputs_wires_producer_buffers(ctx):
    producer = ActivationLayer(ctx, name="producer")
    producer.set_input_shape((1, 4, 3, 3))
    producer.setup()

    consumer = LRNLayer(ctx, name="consumer")
    consumer.set_previous_layer("producer")
    consumer.setup()
    consumer.bind_inputs(producer.tops, producer.top_diffs, producer.output_dim)

    assert consumer.bottoms == producer.tops
    assert consumer.output_dim.as_tuple() == (1, 4, 3, 3)
    producer.forward()
    consumer.forward()
    assert np.isfinite(consumer.output_buffers()[0].memory).all()

    with pytest.raises(NotReady):
        consumer.bind_inputs(producer.tops, producer.top_diffs, producer.output_dim)

    # the consumer does not own the producer's outputs
    consumer.teardown()
    assert all(ctx.registry.is_live(h) for h in producer.tops)
    producer.teardown()
    assert len(ctx.registry) == 0


def test_composed_consumer_does_not_refill_its_input(ctx):
    producer = ActivationLayer(ctx, name="p")
    producer.set_input_shape((1, 1, 2, 2))
    producer.setup()
    consumer = ActivationLayer(ctx, name="c")
    consumer.set_previous_layer("p")
    consumer.setup()
    consumer.bind_inputs(producer.tops, producer.top_diffs, producer.output_dim)

    producer.forward()
    before = producer.output_buffers()[0].memory.copy()
    consumer.forward()
    assert np.array_equal(producer.output_buffers()[0].memory, before)
    # relu of a relu output is the identity
    assert np.array_equal(consumer.output_buffers()[0].memory, before)


def test_configuration_is_frozen_after_setup(ctx):
    layer = ActivationLayer(ctx)
    layer.set_input_shape((1, 1, 1, 1))
    layer.setup()
    with pytest.raises(LayerStateError):
        layer.set_input_shape((2, 1, 1, 1))
    with pytest.raises(LayerStateError):
        layer.num_inputs = 2


def test_teardown_then_forward_is_not_ready(ctx):
    layer = ActivationLayer(ctx)
    layer.set_input_shape((1, 1, 2, 2))
    layer.setup()
    layer.teardown()
    assert layer.state is LayerState.TORN_DOWN
    with pytest.raises(NotReady):
        layer.forward()
