from typing import Any, Dict

from graphgrad.broadcast import broadcast_shapes, reduce_to_shape
from graphgrad.errors import ShapeError
from graphgrad.node import Value
from graphgrad.registry import Shapes, apply_op, check_matmul, check_min_ndim, register_op


def _matmul_forward(ctx, a, b):
    return ctx.xp.matmul(a, b)


def _matmul_grads(xp, a, b, grad):
    return (
        reduce_to_shape(xp.matmul(grad, xp.swapaxes(b.value, -1, -2)), a.shape),
        reduce_to_shape(xp.matmul(xp.swapaxes(a.value, -1, -2), grad), b.shape),
    )


def _matmul_backward(node, grad):
    a, b = node.operands
    return _matmul_grads(node.xp, a, b, grad)


def _transpose_forward(ctx, x):
    return ctx.xp.swapaxes(x, -1, -2)


def _transpose_backward(node, grad):
    return (node.xp.swapaxes(grad, -1, -2),)


def _check_linear(shapes: Shapes, params: Dict[str, Any]) -> None:
    x, w, b = shapes
    if len(x) < 1 or len(w) != 2:
        raise ShapeError(f"expected x of ndim >= 1 and a 2-D weight, got {x} and {w}", shapes=shapes)
    if x[-1] != w[-1]:
        raise ShapeError(f"input features {x[-1]} do not match weight {w}", shapes=shapes)
    if b != (w[0],):
        raise ShapeError(f"bias of shape {b} does not match {w[0]} output features", shapes=shapes)


def _linear_forward(ctx, x, w, b):
    return ctx.xp.matmul(x, w.T) + b


def _linear_backward(node, grad):
    x, w, b = node.operands
    out_features, in_features = w.shape
    g2 = grad.reshape(-1, out_features)
    x2 = x.value.reshape(-1, in_features)
    return (
        node.xp.matmul(grad, w.value),
        node.xp.matmul(g2.T, x2),
        g2.sum(axis=0),
    )


def _check_fmab(shapes: Shapes, params: Dict[str, Any]) -> None:
    a, b, c = shapes
    check_matmul((a, b), params)
    out = broadcast_shapes(a[:-2], b[:-2]) + (a[-2], b[-1])
    if broadcast_shapes(out, c) != out:
        raise ShapeError(f"addend of shape {c} does not broadcast to the product shape {out}", shapes=shapes)


def _fmab_forward(ctx, a, b, c):
    return ctx.xp.matmul(a, b) + c


def _fmab_backward(node, grad):
    a, b, c = node.operands
    ga, gb = _matmul_grads(node.xp, a, b, grad)
    return ga, gb, reduce_to_shape(grad, c.shape)


register_op("matmul", _matmul_forward, _matmul_backward, check_matmul)
register_op("transpose", _transpose_forward, _transpose_backward, check_min_ndim(2))
register_op("linear", _linear_forward, _linear_backward, _check_linear)
register_op("fmab", _fmab_forward, _fmab_backward, _check_fmab)


def matmul(a: Any, b: Any) -> Value:
    """
    Matrix multiply (supports batched matmul) with NumPy/CuPy semantics.

    Computes ``(..., m, k) @ (..., k, n) -> (..., m, n)``. Both operands need
    at least two dimensions; leading batch dimensions broadcast.

    Raises
    ------
    ShapeError
        If an operand has fewer than two dimensions, the contracted
        dimensions differ, or the batch dimensions do not broadcast.

    Notes
    -----
    Gradients, with batch broadcasting undone by ``reduce_to_shape``:

    - ``dL/da = reduce_to_shape(g @ swapaxes(b, -1, -2), a.shape)``
    - ``dL/db = reduce_to_shape(swapaxes(a, -1, -2) @ g, b.shape)``

    Examples
    --------
    >>> a = make_leaf(np.ones((5, 2, 3)))
    >>> b = make_leaf(np.ones((1, 3, 4)))
    >>> matmul(a, b).shape
    (5, 2, 4)
    """
    return apply_op("matmul", a, b)


def transpose(x: Value) -> Value:
    """Swap the last two axes."""
    return apply_op("transpose", x)


def linear(x: Value, w: Value, b: Value) -> Value:
    """
    Affine map ``x @ w.T + b``.

    Parameters
    ----------
    x : Value
        Input of shape ``(..., in_features)``.
    w : Value
        Weight of shape ``(out_features, in_features)``.
    b : Value
        Bias of shape ``(out_features,)``.

    Returns
    -------
    Value
        Output of shape ``(..., out_features)``; matches
        ``torch.nn.functional.linear``.
    """
    return apply_op("linear", x, w, b)


def fmab(a: Value, b: Value, c: Value) -> Value:
    """Fused multiply-add ``a @ b + c`` (``c`` broadcasts against the product)."""
    return apply_op("fmab", a, b, c)
