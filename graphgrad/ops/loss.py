"""
Scalar losses. Classification losses treat the last axis as classes and
average over rows; regression losses average over every element. Both
operands must have the same shape.
"""
from typing import Any, Dict

from graphgrad.errors import UnsupportedOperationError
from graphgrad.node import Value
from graphgrad.registry import Shapes, apply_op, check_rows, check_same_shape, register_op


def _check_classification(tag: str):
    rows = check_rows(tag)

    def _check(shapes: Shapes, params: Dict[str, Any]) -> None:
        check_same_shape(shapes, params)
        rows(shapes, params)
        if 0 in shapes[0]:
            raise UnsupportedOperationError(tag, f"no rows to average over (shape {shapes[0]})")
    return _check


def _check_regression(tag: str):
    def _check(shapes: Shapes, params: Dict[str, Any]) -> None:
        check_same_shape(shapes, params)
        if 0 in shapes[0]:
            raise UnsupportedOperationError(tag, f"mean of an empty tensor is undefined (shape {shapes[0]})")
    return _check


def _log_softmax(ctx, z):
    xp = ctx.xp
    m = xp.max(z, axis=-1, keepdims=True)
    lse = xp.log(xp.sum(xp.exp(z - m), axis=-1, keepdims=True)) + m
    logp = z - lse
    ctx.save(logp=logp, probs=xp.exp(logp))
    return logp


def _n_rows(shape) -> int:
    n = 1
    for d in shape[:-1]:
        n *= d
    return n


def _cross_entropy_forward(ctx, z, t):
    logp = _log_softmax(ctx, z)
    return -ctx.xp.sum(t * logp) / _n_rows(z.shape)


def _logits_grad(node, grad):
    z, t = node.operands
    probs = node.saved["probs"]
    scale = grad / _n_rows(z.shape)
    return (probs * node.xp.sum(t.value, axis=-1, keepdims=True) - t.value) * scale


def _cross_entropy_backward(node, grad):
    z, _ = node.operands
    scale = grad / _n_rows(z.shape)
    return _logits_grad(node, grad), -node.saved["logp"] * scale


def _xlogx(xp, t):
    return xp.where(t > 0, t * xp.log(xp.where(t > 0, t, 1)), 0)


def _kl_forward(ctx, z, t):
    logp = _log_softmax(ctx, z)
    return ctx.xp.sum(_xlogx(ctx.xp, t) - t * logp) / _n_rows(z.shape)


def _kl_backward(node, grad):
    xp = node.xp
    z, t = node.operands
    scale = grad / _n_rows(z.shape)
    dlogt = xp.where(t.value > 0, xp.log(xp.where(t.value > 0, t.value, 1)) + 1, 0)
    return _logits_grad(node, grad), (dlogt - node.saved["logp"]) * scale


def _mse_forward(ctx, p, t):
    return ctx.xp.mean((p - t) ** 2)


def _mse_backward(node, grad):
    p, t = node.operands
    d = 2 * (p.value - t.value) / p.size * grad
    return d, -d


def _mae_forward(ctx, p, t):
    return ctx.xp.mean(ctx.xp.abs(p - t))


def _mae_backward(node, grad):
    p, t = node.operands
    d = node.xp.sign(p.value - t.value) / p.size * grad
    return d, -d


register_op(
    "cross_entropy_with_logits",
    _cross_entropy_forward,
    _cross_entropy_backward,
    _check_classification("cross_entropy_with_logits"),
)
register_op("kldivergence", _kl_forward, _kl_backward, _check_classification("kldivergence"))
register_op("mse_loss", _mse_forward, _mse_backward, _check_regression("mse_loss"))
register_op("mae_loss", _mae_forward, _mae_backward, _check_regression("mae_loss"))


def cross_entropy_with_logits(logits: Value, target: Any) -> Value:
    """
    Cross entropy between ``softmax(logits)`` and a target distribution.

    Computes ``-sum(target * log_softmax(logits)) / rows`` where ``rows`` is
    the number of rows (every axis but the last).

    Parameters
    ----------
    logits : Value
        Unnormalized scores, shape ``(..., C)``.
    target : Value or array-like
        One-hot labels or class probabilities, same shape as ``logits``.

    Returns
    -------
    Value
        Scalar loss. Matches ``torch.nn.functional.cross_entropy`` with
        probability targets for 2-D inputs.

    Notes
    -----
    The logits gradient is ``(softmax(logits) * sum(target) - target) / rows``,
    which reduces to the familiar ``softmax - onehot`` for one-hot targets.
    """
    return apply_op("cross_entropy_with_logits", logits, target)


def kldivergence(logits: Value, target: Any) -> Value:
    """
    ``KL(target || softmax(logits))`` averaged over rows.

    Target entries equal to zero contribute nothing (``0 * log 0 = 0``).
    Equivalent to ``F.kl_div(F.log_softmax(logits, -1), target, reduction="batchmean")``
    for 2-D inputs.
    """
    return apply_op("kldivergence", logits, target)


def mse_loss(pred: Value, target: Any) -> Value:
    """Mean squared error ``mean((pred - target) ** 2)``."""
    return apply_op("mse_loss", pred, target)


def mae_loss(pred: Value, target: Any) -> Value:
    """Mean absolute error ``mean(|pred - target|)``; the subgradient at 0 is 0."""
    return apply_op("mae_loss", pred, target)
