import numpy as np
import pytest
import torch
import torch.nn.functional as F

from graphgrad.ops import elementwise as E
from tests.utils import make_value, make_torch, vdata, assert_close, assert_grad_close


TORCH_REFS = {
    "exp": torch.exp,
    "sin": torch.sin,
    "cos": torch.cos,
    "sinh": torch.sinh,
    "cosh": torch.cosh,
    "tanh": torch.tanh,
    "sigmoid": torch.sigmoid,
    "relu": torch.relu,
    "softplus": F.softplus,
    "silu": F.silu,
    "mish": F.mish,
    "gaus": lambda t: torch.exp(-t * t),
    "gcu": lambda t: t * torch.cos(t),
    "parcon": lambda t: t * (2 - t),
    "lisht": lambda t: t * torch.tanh(t),
}


@pytest.mark.parametrize("op", sorted(TORCH_REFS))
def test_unary_ops_forward_backward(rng, op, device):
    shape = tuple(int(x) for x in rng.integers(1, 6, size=int(rng.integers(1, 6))))
    x_np = rng.normal(size=shape).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_value(x_np, requires_grad=True, device=device)

    yt = TORCH_REFS[op](xt)
    y = getattr(E, op)(x)

    yt.sum().backward()
    y.sum().backward()

    assert y.op_tag == op
    assert_close(vdata(y), yt.detach().cpu().numpy(), atol=1e-5, rtol=1e-5)
    assert_grad_close(x, xt, atol=1e-5, rtol=1e-5)


def test_log_forward_backward_positive(rng, device):
    shape = tuple(int(x) for x in rng.integers(1, 6, size=int(rng.integers(1, 6))))
    x_np = (rng.random(size=shape).astype(np.float32) + 0.1)

    xt = make_torch(x_np, requires_grad=True)
    x = make_value(x_np, requires_grad=True, device=device)

    yt = xt.log()
    y = E.log(x)

    yt.sum().backward()
    y.sum().backward()

    assert_close(vdata(y), yt.detach().cpu().numpy())
    assert_grad_close(x, xt)


def test_neg_forward_backward(rng, device):
    x_np = rng.normal(size=(3, 4)).astype(np.float32)
    x = make_value(x_np, device=device)

    y = -x
    y.sum().backward()

    assert_close(vdata(y), -x_np)
    assert_close(x.grad, -np.ones_like(x_np))


@pytest.mark.parametrize("alpha", [0.01, 0.2])
def test_leaky_relu_forward_backward(rng, alpha, device):
    x_np = rng.normal(size=(4, 5)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_value(x_np, requires_grad=True, device=device)

    yt = F.leaky_relu(xt, negative_slope=alpha)
    y = E.leaky_relu(x, alpha=alpha)

    yt.sum().backward()
    y.sum().backward()

    assert y.node.params == {"alpha": alpha}
    assert_close(vdata(y), yt.detach().cpu().numpy())
    assert_grad_close(x, xt)


def test_relu_subgradient_at_zero_is_zero():
    x = make_value(np.array([-1.0, 0.0, 2.0]))
    E.relu(x).sum().backward()
    assert_close(x.grad, np.array([0.0, 0.0, 1.0], dtype=np.float32))


def test_relu_saves_mask():
    x = make_value(np.array([-1.0, 3.0]))
    y = E.relu(x)
    assert_close(y.node.saved["mask"], np.array([0.0, 1.0], dtype=np.float32))


def test_gelu_tanh_approx_forward_backward(rng, device):
    shape = (2, 3, 4, 5)
    x_np = rng.normal(size=shape).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_value(x_np, requires_grad=True, device=device)

    yt = F.gelu(xt, approximate="tanh")
    y = E.gelu(x)

    yt.sum().backward()
    y.sum().backward()

    assert_close(vdata(y), yt.detach().cpu().numpy(), atol=2e-6, rtol=2e-5)
    assert_grad_close(x, xt, atol=2e-6, rtol=2e-5)


@pytest.mark.parametrize("op", ["exp", "tanh", "relu", "gelu"])
def test_unary_ops_on_zero_sized_input(op):
    x = make_value(np.zeros((0, 5)))
    y = getattr(E, op)(x)
    y.sum().backward()

    assert y.shape == (0, 5)
    assert x.grad.shape == (0, 5)
