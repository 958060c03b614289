"""
Reductions. "Row" ops reduce the last axis and keep it with size 1, so their
output broadcasts back against the input.
"""
from typing import Any, Dict, Optional, Tuple, Union

from graphgrad.broadcast import expand_to
from graphgrad.errors import ShapeError, UnsupportedOperationError
from graphgrad.node import Value
from graphgrad.registry import Shapes, apply_op, check_min_ndim, check_rows, register_op


def _normalize_axis(axis: Union[None, int, Tuple[int, ...]], ndim: int) -> Optional[Tuple[int, ...]]:
    if axis is None:
        return None
    axes = (axis,) if isinstance(axis, int) else tuple(axis)
    for ax in axes:
        if not -ndim <= ax < ndim:
            raise ShapeError(f"axis {ax} is out of range for a {ndim}-d operand")
    normalized = tuple(sorted(ax % ndim for ax in axes))
    if len(set(normalized)) != len(normalized):
        raise ShapeError(f"duplicate axes in {axes} for a {ndim}-d operand")
    return normalized


def _check_sum(shapes: Shapes, params: Dict[str, Any]) -> None:
    _normalize_axis(params["axis"], len(shapes[0]))


def _sum_forward(ctx, x):
    axis = _normalize_axis(ctx.params["axis"], x.ndim)
    return ctx.xp.sum(x, axis=axis, keepdims=ctx.params["keepdims"])


def _sum_backward(node, grad):
    x = node.operands[0]
    axis = _normalize_axis(node.params["axis"], x.ndim)
    reduced = None if (axis is None or node.params["keepdims"]) else axis
    return (expand_to(grad, x.shape, reduced),)


def _check_mean_all(shapes: Shapes, params: Dict[str, Any]) -> None:
    if 0 in shapes[0]:
        raise UnsupportedOperationError("mean_all", f"mean of an empty tensor is undefined (shape {shapes[0]})")


def _mean_all_backward(node, grad):
    x = node.operands[0]
    return (expand_to(grad / x.size, x.shape),)


def _rowmax_forward(ctx, x):
    xp = ctx.xp
    out = xp.max(x, axis=-1, keepdims=True)
    mask = (x == out).astype(x.dtype)
    ctx.save(weights=mask / xp.sum(mask, axis=-1, keepdims=True))
    return out


def _rowmax_backward(node, grad):
    return (node.saved["weights"] * grad,)


def _softmax(xp, x):
    e = xp.exp(x - xp.max(x, axis=-1, keepdims=True))
    return e / xp.sum(e, axis=-1, keepdims=True)


def _softmax_row_backward(node, grad):
    y = node.value
    return (y * (grad - node.xp.sum(grad * y, axis=-1, keepdims=True)),)


def _logsumexp_row_forward(ctx, x):
    xp = ctx.xp
    m = xp.max(x, axis=-1, keepdims=True)
    s = xp.sum(xp.exp(x - m), axis=-1, keepdims=True)
    ctx.save(probs=xp.exp(x - m) / s)
    return xp.log(s) + m


register_op("sum", _sum_forward, _sum_backward, _check_sum)
register_op(
    "mean_all",
    lambda ctx, x: ctx.xp.mean(x),
    _mean_all_backward,
    _check_mean_all,
)
register_op(
    "rowsum",
    lambda ctx, x: ctx.xp.sum(x, axis=-1, keepdims=True),
    lambda node, grad: (expand_to(grad, node.operands[0].shape),),
    check_min_ndim(1),
)
register_op("rowmax", _rowmax_forward, _rowmax_backward, check_rows("rowmax"))
register_op(
    "softmax_row",
    lambda ctx, x: _softmax(ctx.xp, x),
    _softmax_row_backward,
    check_rows("softmax_row"),
)
register_op(
    "logsumexp_row",
    _logsumexp_row_forward,
    lambda node, grad: (node.saved["probs"] * grad,),
    check_rows("logsumexp_row"),
)


def sum(
    x: Value,
    axis: Union[None, int, Tuple[int, ...]] = None,
    keepdims: bool = False,
) -> Value:
    """
    Sum of elements over ``axis`` (all axes when None).

    Parameters
    ----------
    x : Value
        Input.
    axis : int or tuple of int, optional
        Axes to reduce. Negative values count from the end.
    keepdims : bool, default=False
        If True, reduced axes are kept with size 1.

    Returns
    -------
    Value
        The summed value(s). A full sum of a zero-sized tensor is ``0``.

    Notes
    -----
    **Gradient behavior:** the upstream gradient is broadcast back to the
    input shape, re-inserting reduced axes first when ``keepdims`` is False.
    """
    return apply_op("sum", x, axis=axis, keepdims=bool(keepdims))


def mean_all(x: Value) -> Value:
    """
    Mean over every element, returned as a scalar (shape ``()``).

    Raises
    ------
    UnsupportedOperationError
        If ``x`` has no elements.
    """
    return apply_op("mean_all", x)


def rowsum(x: Value) -> Value:
    """Sum over the last axis, kept with size 1."""
    return apply_op("rowsum", x)


def rowmax(x: Value) -> Value:
    """
    Maximum over the last axis, kept with size 1.

    Notes
    -----
    When several elements tie for the maximum, the gradient is split equally
    among them (``g / count``).
    """
    return apply_op("rowmax", x)


def softmax_row(x: Value) -> Value:
    """
    Softmax over the last axis, computed as ``exp(x - max) / sum(exp(x - max))``.

    The backward rule reuses the output ``y``:
    ``dL/dx = y * (g - sum(g * y, axis=-1))``.
    """
    return apply_op("softmax_row", x)


def logsumexp_row(x: Value) -> Value:
    """
    Numerically stable log-sum-exp over the last axis, kept with size 1.

    The forward pass saves the softmax probabilities, which are the gradient
    of log-sum-exp with respect to its input.
    """
    return apply_op("logsumexp_row", x)
