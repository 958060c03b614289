"""
Single-head attention variants and the SwiGLU gate.

Each variant is one registered op over ``(x, wq, wk, wv)``. The forward pass
saves the projections ``q``, ``k``, ``v`` and the activated scores ``p`` so
the backward rule only does matrix products. The variants differ in the
score activation: row softmax, elementwise sigmoid or ReLU.
"""
import math
from typing import Any, Dict

from graphgrad.broadcast import broadcast_shapes, reduce_to_shape
from graphgrad.errors import ShapeError
from graphgrad.node import Value
from graphgrad.registry import Shapes, apply_op, register_op


def _swap(xp, a):
    return xp.swapaxes(a, -1, -2)


def _check_attention(shapes: Shapes, params: Dict[str, Any]) -> None:
    x, wq, wk, wv = shapes[:4]
    if len(x) < 2:
        raise ShapeError(f"expected x of shape (..., T, D), got {x}", shapes=shapes)
    for w in (wq, wk, wv):
        if len(w) != 2 or w[0] != x[-1]:
            raise ShapeError(f"projection of shape {w} does not match {x[-1]} input features", shapes=shapes)
    if wq != wk:
        raise ShapeError(f"query and key projections differ: {wq} and {wk}", shapes=shapes)


def _alibi_bias(xp, t, m):
    pos = xp.arange(t)
    return -m * xp.abs(pos[:, None] - pos[None, :])


def _activate(xp, kind, s):
    if kind == "softmax":
        e = xp.exp(s - xp.max(s, axis=-1, keepdims=True))
        return e / xp.sum(e, axis=-1, keepdims=True)
    if kind == "sigmoid":
        return 1 / (1 + xp.exp(-s))
    return xp.maximum(s, 0)


def _activate_backward(xp, kind, p, gp):
    if kind == "softmax":
        return p * (gp - xp.sum(gp * p, axis=-1, keepdims=True))
    if kind == "sigmoid":
        return gp * p * (1 - p)
    return gp * (p > 0)


def _attention_forward(kind):
    def forward(ctx, x, wq, wk, wv):
        xp = ctx.xp
        q, k, v = xp.matmul(x, wq), xp.matmul(x, wk), xp.matmul(x, wv)
        s = xp.matmul(q, _swap(xp, k)) * (1.0 / math.sqrt(wk.shape[-1]))
        if "m" in ctx.params:
            s = s + _alibi_bias(xp, x.shape[-2], ctx.params["m"]).astype(s.dtype)
        p = _activate(xp, kind, s)
        ctx.save(q=q, k=k, v=v, p=p)
        return xp.matmul(p, v)
    return forward


def _attention_backward(kind):
    def backward(node, grad):
        xp = node.xp
        x, wq, wk, wv = node.operands
        q, k, v, p = (node.saved[n] for n in ("q", "k", "v", "p"))

        gv = xp.matmul(_swap(xp, p), grad)
        gs = _activate_backward(xp, kind, p, xp.matmul(grad, _swap(xp, v)))
        gs = gs * (1.0 / math.sqrt(wk.shape[-1]))
        gq = xp.matmul(gs, k)
        gk = xp.matmul(_swap(xp, gs), q)

        xt = _swap(xp, x.value)
        gx = (
            xp.matmul(gq, wq.value.T)
            + xp.matmul(gk, wk.value.T)
            + xp.matmul(gv, wv.value.T)
        )
        return (
            gx,
            reduce_to_shape(xp.matmul(xt, gq), wq.shape),
            reduce_to_shape(xp.matmul(xt, gk), wk.shape),
            reduce_to_shape(xp.matmul(xt, gv), wv.shape),
        )
    return backward


for _tag, _kind in (("attention", "softmax"), ("sigatt", "sigmoid"), ("reluatt", "relu"), ("alibiatt", "softmax")):
    register_op(_tag, _attention_forward(_kind), _attention_backward(_kind), _check_attention)


def _check_swiglu(shapes: Shapes, params: Dict[str, Any]) -> None:
    x, w, b, v, c = shapes
    if len(x) < 1 or len(w) != 2 or w[0] != x[-1]:
        raise ShapeError(f"expected x of shape (..., D) and a (D, H) weight, got {x} and {w}", shapes=shapes)
    if v != w:
        raise ShapeError(f"gate weights differ: {w} and {v}", shapes=shapes)
    out = x[:-1] + (w[1],)
    for bias in (b, c):
        if broadcast_shapes(out, bias) != out:
            raise ShapeError(f"bias of shape {bias} does not broadcast to {out}", shapes=shapes)


def _swiglu_forward(ctx, x, w, b, v, c):
    xp = ctx.xp
    a = xp.matmul(x, w) + b
    h = xp.matmul(x, v) + c
    s = 1 / (1 + xp.exp(-a))
    ctx.save(a=a, h=h, s=s)
    return a * s * h


def _swiglu_backward(node, grad):
    xp = node.xp
    x, w, b, v, c = node.operands
    a, h, s = node.saved["a"], node.saved["h"], node.saved["s"]

    ga = grad * h * s * (1 + a * (1 - s))
    gh = grad * a * s
    ga2 = ga.reshape(-1, w.shape[1])
    gh2 = gh.reshape(-1, v.shape[1])
    x2 = x.value.reshape(-1, w.shape[0])
    return (
        xp.matmul(ga, w.value.T) + xp.matmul(gh, v.value.T),
        xp.matmul(x2.T, ga2),
        reduce_to_shape(ga, b.shape),
        xp.matmul(x2.T, gh2),
        reduce_to_shape(gh, c.shape),
    )


register_op("swiglu", _swiglu_forward, _swiglu_backward, _check_swiglu)


def attention(x: Value, wq: Value, wk: Value, wv: Value) -> Value:
    """
    Scaled dot-product self-attention.

    Parameters
    ----------
    x : Value
        Sequence of shape ``(..., T, D)``.
    wq, wk : Value
        Query and key projections of shape ``(D, dk)``.
    wv : Value
        Value projection of shape ``(D, dv)``.

    Returns
    -------
    Value
        ``softmax_row((x @ wq) @ (x @ wk)^T / sqrt(dk)) @ (x @ wv)``,
        shape ``(..., T, dv)``. No causal mask is applied.

    Notes
    -----
    With ``P`` the attention weights and ``g`` the upstream gradient, the
    backward rule computes ``dV = P^T g``, ``dS = softmax'(P, g V^T) / sqrt(dk)``,
    ``dQ = dS K`` and ``dK = dS^T Q``, then maps them back through the
    projections. Batch axes of ``x`` are summed out of the weight gradients.
    """
    return apply_op("attention", x, wq, wk, wv)


def sigatt(x: Value, wq: Value, wk: Value, wv: Value) -> Value:
    """Attention with an elementwise sigmoid in place of the row softmax."""
    return apply_op("sigatt", x, wq, wk, wv)


def reluatt(x: Value, wq: Value, wk: Value, wv: Value) -> Value:
    """Attention with ReLU scores in place of the row softmax."""
    return apply_op("reluatt", x, wq, wk, wv)


def alibiatt(x: Value, wq: Value, wk: Value, wv: Value, m: float) -> Value:
    """
    Attention with an ALiBi linear position bias.

    The bias ``-m * |i - j|`` is added to the scaled scores before the
    softmax. ``m`` is stored on ``node.params``; the bias is a constant and
    receives no gradient.
    """
    return apply_op("alibiatt", x, wq, wk, wv, m=float(m))


def swiglu(x: Value, w: Value, b: Value, v: Value, c: Value) -> Value:
    """SwiGLU gate: ``silu(x @ w + b) * (x @ v + c)``."""
    return apply_op("swiglu", x, w, b, v, c)
