import pytest

from dnnbench.params import (
    ActivationMode,
    ActivationParam,
    ConvolutionParam,
    LRNParam,
    PoolingMode,
    PoolingParam,
    from_dict,
)


def test_square_aliases_expand():
    p = from_dict(ConvolutionParam, {"kernel_size": 3, "pad": 1, "stride": "2"})
    assert (p.kernel_size_h, p.kernel_size_w) == (3, 3)
    assert (p.pad_h, p.pad_w) == (1, 1)
    assert (p.stride_h, p.stride_w) == (2, 2)


def test_enum_and_float_coercion():
    pool = from_dict(PoolingParam, {"mode": "AVG_EXCLUDE_PAD"})
    assert pool.mode is PoolingMode.AVERAGE_EXCLUDE_PADDING
    act = from_dict(ActivationParam, {"mode": "clipped_relu", "coef": "6"})
    assert act.mode is ActivationMode.CLIPPED_RELU
    assert act.coef == 6.0
    lrn = from_dict(LRNParam, {"local_size": "3", "beta": "0.5"})
    assert lrn.local_size == 3 and lrn.beta == 0.5


def test_unknown_key_and_bad_enum_rejected():
    with pytest.raises(ValueError):
        from_dict(PoolingParam, {"output_num": 3})
    with pytest.raises(ValueError):
        from_dict(ActivationParam, {"mode": "swish"})


def test_defaults_match_reference_values():
    assert ConvolutionParam().output_num == 32
    lrn = LRNParam()
    assert (lrn.local_size, lrn.alpha, lrn.beta, lrn.k) == (5, 1e-4, 0.75, 2.0)
