"""
Elementwise arithmetic with NumPy-style broadcasting.

Binary ops accept any mix of :class:`~graphgrad.node.Value` and array-like
operands; gradients flowing back to a broadcast operand are summed back to
its original shape with :func:`~graphgrad.broadcast.reduce_to_shape`.
"""
from typing import Any, Union

from graphgrad.broadcast import reduce_to_shape
from graphgrad.node import Value
from graphgrad.registry import apply_op, check_broadcast, register_op

Operand = Union[Value, Any]


def _add_forward(ctx, a, b):
    return a + b


def _add_backward(node, grad):
    a, b = node.operands
    return reduce_to_shape(grad, a.shape), reduce_to_shape(grad, b.shape)


def _sub_forward(ctx, a, b):
    return a - b


def _sub_backward(node, grad):
    a, b = node.operands
    return reduce_to_shape(grad, a.shape), reduce_to_shape(-grad, b.shape)


def _mul_forward(ctx, a, b):
    return a * b


def _mul_backward(node, grad):
    a, b = node.operands
    return (
        reduce_to_shape(grad * b.value, a.shape),
        reduce_to_shape(grad * a.value, b.shape),
    )


def _div_forward(ctx, a, b):
    return a / b


def _div_backward(node, grad):
    a, b = node.operands
    return (
        reduce_to_shape(grad / b.value, a.shape),
        reduce_to_shape(-grad * a.value / (b.value * b.value), b.shape),
    )


def _pow_backward(node, grad):
    p = node.params["exponent"]
    if p == 0:
        # x ** -1 would turn a zero gradient into NaN at x == 0
        return (node.xp.zeros_like(grad),)
    return (grad * p * node.operands[0].value ** (p - 1),)


register_op("add", _add_forward, _add_backward, check_broadcast)
register_op("sub", _sub_forward, _sub_backward, check_broadcast)
register_op("mul", _mul_forward, _mul_backward, check_broadcast)
register_op("div", _div_forward, _div_backward, check_broadcast)

register_op(
    "neg",
    lambda ctx, x: -x,
    lambda node, grad: (-grad,),
)
register_op("pow", lambda ctx, x: x ** ctx.params["exponent"], _pow_backward)
register_op(
    "reci",
    lambda ctx, x: 1.0 / x,
    lambda node, grad: (-grad * node.value * node.value,),
)
register_op(
    "sign",
    lambda ctx, x: ctx.xp.sign(x),
    lambda node, grad: (node.xp.zeros_like(grad),),
)
register_op(
    "abs",
    lambda ctx, x: ctx.xp.abs(x),
    lambda node, grad: (grad * node.xp.sign(node.operands[0].value),),
)
register_op(
    "floadd",
    lambda ctx, x: x + ctx.params["scalar"],
    lambda node, grad: (grad,),
)
register_op(
    "flomul",
    lambda ctx, x: x * ctx.params["scalar"],
    lambda node, grad: (grad * node.params["scalar"],),
)
register_op(
    "flodiv",
    lambda ctx, x: ctx.params["scalar"] / x,
    lambda node, grad: (-grad * node.params["scalar"] / (node.operands[0].value ** 2),),
)


def add(a: Operand, b: Operand) -> Value:
    """Elementwise ``a + b`` with broadcasting."""
    return apply_op("add", a, b)


def sub(a: Operand, b: Operand) -> Value:
    """Elementwise ``a - b`` with broadcasting."""
    return apply_op("sub", a, b)


def mul(a: Operand, b: Operand) -> Value:
    """
    Elementwise ``a * b`` with broadcasting.

    Notes
    -----
    Gradients:
    ``dL/da = reduce_to_shape(b * g, a.shape)`` and
    ``dL/db = reduce_to_shape(a * g, b.shape)``.
    """
    return apply_op("mul", a, b)


def div(a: Operand, b: Operand) -> Value:
    """
    Elementwise ``a / b`` with broadcasting.

    Notes
    -----
    Division by zero follows backend (NumPy/CuPy) semantics and yields
    ``inf``/``nan`` rather than raising.
    """
    return apply_op("div", a, b)


def neg(x: Value) -> Value:
    return apply_op("neg", x)


def pow_scalar(x: Value, exponent: Union[int, float]) -> Value:
    """
    Elementwise ``x ** exponent`` for a Python scalar exponent.

    The gradient is ``exponent * x ** (exponent - 1) * g``, and zero for
    ``exponent == 0``. For non-integer exponents and negative bases the
    result is NaN, as in NumPy.
    """
    return apply_op("pow", x, exponent=exponent)


def reci(x: Value) -> Value:
    """Elementwise reciprocal ``1 / x``."""
    return apply_op("reci", x)


def sign(x: Value) -> Value:
    """Elementwise sign. Its derivative is zero everywhere it is defined."""
    return apply_op("sign", x)


def abs_(x: Value) -> Value:
    """Elementwise absolute value; the subgradient at 0 is 0."""
    return apply_op("abs", x)


def floadd(x: Value, scalar: float) -> Value:
    """``x + scalar`` with the scalar recorded as a parameter instead of a constant leaf."""
    return apply_op("floadd", x, scalar=float(scalar))


def flomul(x: Value, scalar: float) -> Value:
    """``x * scalar`` with the scalar recorded as a parameter."""
    return apply_op("flomul", x, scalar=float(scalar))


def flodiv(x: Value, scalar: float) -> Value:
    """``scalar / x`` elementwise (the scalar is the numerator)."""
    return apply_op("flodiv", x, scalar=float(scalar))
