import numpy as np
import pytest
import importlib.util

from graphgrad.backend import normalize_device
from graphgrad.factories import constant, full, ones, randn, zeros
from graphgrad.node import make_leaf
from tests.utils import assert_close, to_numpy


def test_factories_shapes_dtypes_requires_grad(device):
    z = zeros(2, 3, 4, requires_grad=False, device=device)
    o = ones(2, 3, 4, device=device)
    r = randn(2, 3, 4, device=device, seed=0)
    f = full((2, 3, 4), 1.5, device=device)
    c = constant([[1, 2], [3, 4]], device=device)

    for v in (z, o, r, f):
        assert v.shape == (2, 3, 4)
        assert v.dtype == np.float32
        assert v.device == device
        assert v.op_tag == "leaf"

    assert z.requires_grad is False
    assert o.requires_grad is True
    assert c.requires_grad is False
    assert c.dtype == np.float32

    assert_close(to_numpy(z.value), np.zeros((2, 3, 4), dtype=np.float32))
    assert_close(to_numpy(o.value), np.ones((2, 3, 4), dtype=np.float32))
    assert_close(to_numpy(f.value), np.full((2, 3, 4), 1.5, dtype=np.float32))


def test_randn_seed_is_reproducible():
    a = randn(3, 4, seed=7, scale=0.5)
    b = randn(3, 4, seed=7, scale=0.5)
    np.testing.assert_array_equal(a.numpy(), b.numpy())


def test_xp_returns_backend_module(device):
    x = randn(2, 3, 4, requires_grad=False, device=device)
    xp = x.xp()
    assert xp.__name__ == ("numpy" if device == "cpu" else "cupy")


def test_make_leaf_converts_to_float32(device):
    x = make_leaf([1, 2, 3], name="x", device=device)
    assert x.dtype == np.float32
    assert x.name == "x"
    assert "name='x'" in repr(x)


def test_make_leaf_from_value_is_detached():
    a = make_leaf(np.ones(2))
    b = make_leaf(a * 2)
    assert b.op_tag == "leaf"
    assert b.operands == ()
    assert_close(b.value, np.full(2, 2.0, dtype=np.float32))


def test_normalize_device():
    assert normalize_device("cuda:1") == "cuda"
    assert normalize_device("CPU") == "cpu"
    assert normalize_device(None) is None
    with pytest.raises(ValueError):
        normalize_device("gpu")


@pytest.mark.skipif(importlib.util.find_spec("cupy") is None, reason="cupy not installed")
def test_cuda_leaf_roundtrip():
    import cupy as cp

    x = randn(2, 3, 4, requires_grad=False, device="cpu")
    xc = make_leaf(x.value, device="cuda")
    assert xc.xp().__name__.startswith("cupy")
    assert isinstance(xc.value, cp.ndarray)

    back = make_leaf(xc.value, device="cpu")
    assert back.xp().__name__ == "numpy"
    assert_close(to_numpy(back.value), to_numpy(x.value), atol=1e-6, rtol=1e-5)
