import numpy as np
import pytest
import torch.nn.functional as F

from graphgrad.errors import ShapeError, UnsupportedOperationError
from graphgrad.ops import loss as L
from tests.utils import make_value, make_torch, vdata, assert_close, assert_grad_close


def _one_hot(rng, n, c):
    t = np.zeros((n, c), dtype=np.float32)
    t[np.arange(n), rng.integers(0, c, size=n)] = 1.0
    return t


def _soft_targets(rng, n, c):
    p = rng.random(size=(n, c)).astype(np.float32) + 0.05
    return p / p.sum(axis=-1, keepdims=True)


@pytest.mark.parametrize("targets", ["one_hot", "soft"])
def test_cross_entropy_matches_torch(rng, device, targets):
    z_np = rng.normal(size=(6, 5)).astype(np.float32)
    t_np = _one_hot(rng, 6, 5) if targets == "one_hot" else _soft_targets(rng, 6, 5)

    zt = make_torch(z_np, requires_grad=True)
    z = make_value(z_np, requires_grad=True, device=device)
    t = make_value(t_np, requires_grad=False, device=device)

    yt = F.cross_entropy(zt, make_torch(t_np, requires_grad=False))
    y = L.cross_entropy_with_logits(z, t)

    yt.backward()
    y.backward()

    assert y.shape == ()
    assert_close(vdata(y), yt.detach().cpu().numpy(), atol=1e-5, rtol=1e-5)
    assert_grad_close(z, zt, atol=1e-6, rtol=1e-4)
    assert t.grad is None


def test_cross_entropy_target_gradient(rng):
    z_np = rng.normal(size=(4, 3)).astype(np.float32)
    t_np = _soft_targets(rng, 4, 3)

    zt = make_torch(z_np, requires_grad=True)
    tt = make_torch(t_np, requires_grad=True)
    z = make_value(z_np)
    t = make_value(t_np)

    (-(F.log_softmax(zt, dim=-1) * tt).sum() / 4).backward()
    L.cross_entropy_with_logits(z, t).backward()

    assert_grad_close(t, tt, atol=1e-6, rtol=1e-4)


def test_cross_entropy_is_stable_for_large_logits():
    z = make_value(np.array([[1000.0, 0.0, -1000.0]]))
    t = make_value(np.array([[1.0, 0.0, 0.0]]), requires_grad=False)

    y = L.cross_entropy_with_logits(z, t)
    y.backward()

    assert np.isfinite(vdata(y))
    assert np.all(np.isfinite(z.grad))


def test_kldivergence_matches_torch(rng, device):
    z_np = rng.normal(size=(5, 4)).astype(np.float32)
    t_np = _soft_targets(rng, 5, 4)
    t_np[0] = [0.0, 1.0, 0.0, 0.0]

    zt = make_torch(z_np, requires_grad=True)
    z = make_value(z_np, requires_grad=True, device=device)

    yt = F.kl_div(F.log_softmax(zt, dim=-1), make_torch(t_np, requires_grad=False), reduction="batchmean")
    y = L.kldivergence(z, make_value(t_np, requires_grad=False, device=device))

    yt.backward()
    y.backward()

    assert_close(vdata(y), yt.detach().cpu().numpy(), atol=1e-5, rtol=1e-5)
    assert_grad_close(z, zt, atol=1e-6, rtol=1e-4)


@pytest.mark.parametrize("op", ["mse_loss", "mae_loss"])
def test_regression_losses_match_torch(rng, device, op):
    p_np = rng.normal(size=(3, 4, 2)).astype(np.float32)
    t_np = rng.normal(size=(3, 4, 2)).astype(np.float32)

    pt, tt = make_torch(p_np), make_torch(t_np)
    p, t = make_value(p_np, device=device), make_value(t_np, device=device)

    yt = F.mse_loss(pt, tt) if op == "mse_loss" else F.l1_loss(pt, tt)
    y = getattr(L, op)(p, t)

    yt.backward()
    y.backward()

    assert_close(vdata(y), yt.detach().cpu().numpy(), atol=1e-6, rtol=1e-5)
    assert_grad_close(p, pt)
    assert_grad_close(t, tt)


@pytest.mark.parametrize("op", ["cross_entropy_with_logits", "kldivergence", "mse_loss", "mae_loss"])
def test_losses_require_identical_shapes(op):
    a = make_value(np.zeros((2, 3)))
    b = make_value(np.zeros((1, 3)))
    with pytest.raises(ShapeError) as exc:
        getattr(L, op)(a, b)
    assert exc.value.op == op


@pytest.mark.parametrize("shape", [(0, 3), (2, 0)])
def test_cross_entropy_rejects_empty_input(shape):
    with pytest.raises(UnsupportedOperationError):
        L.cross_entropy_with_logits(make_value(np.zeros(shape)), make_value(np.zeros(shape)))
