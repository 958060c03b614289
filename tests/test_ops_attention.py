import math

import numpy as np
import pytest
import torch
import torch.nn.functional as F

from graphgrad.errors import ShapeError
from graphgrad.ops import attention as At
from tests.utils import make_value, make_torch, vdata, assert_close, assert_grad_close


def _torch_scores(xt, wqt, wkt):
    q, k = xt @ wqt, xt @ wkt
    return q @ k.transpose(-1, -2) / math.sqrt(wkt.shape[-1])


def _alibi(t, m):
    pos = torch.arange(t, dtype=torch.float32)
    return -m * (pos[:, None] - pos[None, :]).abs()


TORCH_REFS = {
    "attention": lambda xt, wq, wk, wv: torch.softmax(_torch_scores(xt, wq, wk), dim=-1) @ (xt @ wv),
    "sigatt": lambda xt, wq, wk, wv: torch.sigmoid(_torch_scores(xt, wq, wk)) @ (xt @ wv),
    "reluatt": lambda xt, wq, wk, wv: torch.relu(_torch_scores(xt, wq, wk)) @ (xt @ wv),
}


@pytest.mark.parametrize("op", sorted(TORCH_REFS))
def test_attention_variants_match_torch(rng, device, op):
    x_np = rng.normal(size=(2, 5, 6)).astype(np.float32)
    ws_np = [rng.normal(size=(6, 4)).astype(np.float32) * 0.5 for _ in range(3)]

    ts = [make_torch(a, requires_grad=True) for a in [x_np] + ws_np]
    vs = [make_value(a, device=device) for a in [x_np] + ws_np]

    yt = TORCH_REFS[op](*ts)
    y = getattr(At, op)(*vs)

    yt.sum().backward()
    y.sum().backward()

    assert y.op_tag == op
    assert y.shape == (2, 5, 4)
    assert_close(vdata(y), yt.detach().cpu().numpy(), atol=1e-4, rtol=1e-3)
    for v, t in zip(vs, ts):
        assert_grad_close(v, t, atol=1e-4, rtol=1e-3)


def test_alibiatt_matches_torch(rng, device):
    m = 0.25
    x_np = rng.normal(size=(7, 6)).astype(np.float32)
    ws_np = [rng.normal(size=(6, 3)).astype(np.float32) * 0.5 for _ in range(3)]

    ts = [make_torch(a, requires_grad=True) for a in [x_np] + ws_np]
    vs = [make_value(a, device=device) for a in [x_np] + ws_np]

    xt, wqt, wkt, wvt = ts
    yt = torch.softmax(_torch_scores(xt, wqt, wkt) + _alibi(7, m), dim=-1) @ (xt @ wvt)
    y = At.alibiatt(*vs, m)
    assert y.op_tag == "alibiatt"
    assert y.node.params == {"m": m}

    yt.sum().backward()
    y.sum().backward()

    assert_close(vdata(y), yt.detach().cpu().numpy(), atol=1e-4, rtol=1e-3)
    for v, t in zip(vs, ts):
        assert_grad_close(v, t, atol=1e-4, rtol=1e-3)


def test_swiglu_matches_torch(rng, device):
    x_np = rng.normal(size=(4, 6)).astype(np.float32)
    w_np = rng.normal(size=(6, 5)).astype(np.float32)
    b_np = rng.normal(size=(5,)).astype(np.float32)
    v_np = rng.normal(size=(6, 5)).astype(np.float32)
    c_np = rng.normal(size=(5,)).astype(np.float32)
    arrays = [x_np, w_np, b_np, v_np, c_np]

    ts = [make_torch(a, requires_grad=True) for a in arrays]
    vs = [make_value(a, device=device) for a in arrays]

    xt, wt, bt, vt, ct = ts
    yt = F.silu(xt @ wt + bt) * (xt @ vt + ct)
    y = At.swiglu(*vs)
    assert y.op_tag == "swiglu"

    yt.sum().backward()
    y.sum().backward()

    assert_close(vdata(y), yt.detach().cpu().numpy(), atol=1e-4, rtol=1e-3)
    for v, t in zip(vs, ts):
        assert_grad_close(v, t, atol=1e-4, rtol=1e-3)


def test_attention_rejects_mismatched_projections():
    x = make_value(np.ones((5, 6), dtype=np.float32))
    w = make_value(np.ones((6, 4), dtype=np.float32))
    with pytest.raises(ShapeError) as exc:
        At.attention(x, w, make_value(np.ones((6, 3), dtype=np.float32)), w)
    assert exc.value.op == "attention"
    with pytest.raises(ShapeError) as exc:
        At.reluatt(x, w, w, make_value(np.ones((5, 4), dtype=np.float32)))
    assert exc.value.op == "reluatt"
