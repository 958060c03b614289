"""
Unary elementwise functions and activations.

Each op is a registered (forward, backward) pair. Where the derivative is
cheaper to express through the forward output or an intermediate (sigmoid,
tanh, the ReLU mask), the forward saves it on the Node.
"""
import math

from graphgrad.node import Value
from graphgrad.registry import apply_op, register_op

_GELU_C = math.sqrt(2.0 / math.pi)
_GELU_K = 0.044715


def _sigmoid(xp, x):
    return 1 / (1 + xp.exp(-x))


register_op(
    "exp",
    lambda ctx, x: ctx.xp.exp(x),
    lambda node, grad: (node.value * grad,),
)
register_op(
    "log",
    lambda ctx, x: ctx.xp.log(x),
    lambda node, grad: (grad / node.operands[0].value,),
)
register_op(
    "sin",
    lambda ctx, x: ctx.xp.sin(x),
    lambda node, grad: (node.xp.cos(node.operands[0].value) * grad,),
)
register_op(
    "cos",
    lambda ctx, x: ctx.xp.cos(x),
    lambda node, grad: (-node.xp.sin(node.operands[0].value) * grad,),
)
register_op(
    "sinh",
    lambda ctx, x: ctx.xp.sinh(x),
    lambda node, grad: (node.xp.cosh(node.operands[0].value) * grad,),
)
register_op(
    "cosh",
    lambda ctx, x: ctx.xp.cosh(x),
    lambda node, grad: (node.xp.sinh(node.operands[0].value) * grad,),
)
register_op(
    "tanh",
    lambda ctx, x: ctx.xp.tanh(x),
    lambda node, grad: ((1 - node.value ** 2) * grad,),
)
register_op(
    "sigmoid",
    lambda ctx, x: _sigmoid(ctx.xp, x),
    lambda node, grad: ((node.value - node.value ** 2) * grad,),
)


def _relu_forward(ctx, x):
    mask = (x > 0).astype(x.dtype)
    ctx.save(mask=mask)
    return x * mask


def _relu_backward(node, grad):
    return (node.saved["mask"] * grad,)


def _leaky_relu_forward(ctx, x):
    alpha = ctx.params["alpha"]
    slope = ctx.xp.where(x > 0, 1.0, alpha).astype(x.dtype)
    ctx.save(slope=slope)
    return x * slope


def _leaky_relu_backward(node, grad):
    return (node.saved["slope"] * grad,)


def _softplus_forward(ctx, x):
    return ctx.xp.logaddexp(0, x)


def _softplus_backward(node, grad):
    return (_sigmoid(node.xp, node.operands[0].value) * grad,)


def _gelu_forward(ctx, x):
    t = ctx.xp.tanh(_GELU_C * (x + _GELU_K * x ** 3))
    ctx.save(t=t)
    return 0.5 * x * (1 + t)


def _gelu_backward(node, grad):
    x = node.operands[0].value
    t = node.saved["t"]
    dt = (1 - t ** 2) * _GELU_C * (1 + 3 * _GELU_K * x ** 2)
    return ((0.5 * (1 + t) + 0.5 * x * dt) * grad,)


def _silu_forward(ctx, x):
    s = _sigmoid(ctx.xp, x)
    ctx.save(s=s)
    return x * s


def _silu_backward(node, grad):
    x = node.operands[0].value
    s = node.saved["s"]
    return (s * (1 + x * (1 - s)) * grad,)


def _mish_forward(ctx, x):
    t = ctx.xp.tanh(ctx.xp.logaddexp(0, x))
    ctx.save(t=t)
    return x * t


def _mish_backward(node, grad):
    x = node.operands[0].value
    t = node.saved["t"]
    return ((t + x * (1 - t ** 2) * _sigmoid(node.xp, x)) * grad,)


def _lisht_forward(ctx, x):
    t = ctx.xp.tanh(x)
    ctx.save(t=t)
    return x * t


def _lisht_backward(node, grad):
    x = node.operands[0].value
    t = node.saved["t"]
    return ((t + x * (1 - t ** 2)) * grad,)


register_op("relu", _relu_forward, _relu_backward)
register_op("leaky_relu", _leaky_relu_forward, _leaky_relu_backward)
register_op("softplus", _softplus_forward, _softplus_backward)
register_op("gelu", _gelu_forward, _gelu_backward)
register_op("silu", _silu_forward, _silu_backward)
register_op("mish", _mish_forward, _mish_backward)
register_op("lisht", _lisht_forward, _lisht_backward)
register_op(
    "gaus",
    lambda ctx, x: ctx.xp.exp(-x * x),
    lambda node, grad: (-2 * node.operands[0].value * node.value * grad,),
)
register_op(
    "gcu",
    lambda ctx, x: x * ctx.xp.cos(x),
    lambda node, grad: (
        (node.xp.cos(node.operands[0].value) - node.operands[0].value * node.xp.sin(node.operands[0].value)) * grad,
    ),
)
register_op(
    "parcon",
    lambda ctx, x: x * (2 - x),
    lambda node, grad: ((2 - 2 * node.operands[0].value) * grad,),
)


def exp(x: Value) -> Value:
    """
    Element-wise exponential function.

    Notes
    -----
    **Gradient:** the derivative of ``exp(x)`` is ``exp(x)`` itself, so the
    backward rule reuses the forward value: ``out * g``.
    """
    return apply_op("exp", x)


def log(x: Value) -> Value:
    """
    Element-wise natural logarithm.

    Input values must be positive to avoid NaNs or ``-inf``.
    """
    return apply_op("log", x)


def sin(x: Value) -> Value:
    return apply_op("sin", x)


def cos(x: Value) -> Value:
    return apply_op("cos", x)


def sinh(x: Value) -> Value:
    return apply_op("sinh", x)


def cosh(x: Value) -> Value:
    return apply_op("cosh", x)


def tanh(x: Value) -> Value:
    """Element-wise hyperbolic tangent; gradient ``1 - tanh(x)^2``."""
    return apply_op("tanh", x)


def sigmoid(x: Value) -> Value:
    """Element-wise logistic sigmoid; gradient ``s * (1 - s)``."""
    return apply_op("sigmoid", x)


def relu(x: Value) -> Value:
    """
    Element-wise Rectified Linear Unit.

    The forward pass saves the ``x > 0`` mask; the subgradient at 0 is 0.
    """
    return apply_op("relu", x)


def leaky_relu(x: Value, alpha: float = 0.01) -> Value:
    """
    Leaky ReLU: ``x`` where ``x > 0``, else ``alpha * x``.

    Parameters
    ----------
    x : Value
        Input.
    alpha : float, default=0.01
        Slope for non-positive inputs, stored on ``node.params``.
    """
    return apply_op("leaky_relu", x, alpha=float(alpha))


def softplus(x: Value) -> Value:
    """Numerically stable ``log(1 + exp(x))``; gradient ``sigmoid(x)``."""
    return apply_op("softplus", x)


def gelu(x: Value) -> Value:
    """
    Gaussian Error Linear Unit (tanh approximation).

    .. math::
        \\text{GELU}(x) \\approx 0.5x\\left[1 + \\tanh\\left(\\sqrt{\\frac{2}{\\pi}}(x + 0.044715x^3)\\right)\\right]

    Equivalent to ``torch.nn.functional.gelu(x, approximate="tanh")``.
    """
    return apply_op("gelu", x)


def silu(x: Value) -> Value:
    """SiLU / swish: ``x * sigmoid(x)``."""
    return apply_op("silu", x)


def mish(x: Value) -> Value:
    """Mish: ``x * tanh(softplus(x))``."""
    return apply_op("mish", x)


def gaus(x: Value) -> Value:
    """Gaussian activation ``exp(-x^2)``."""
    return apply_op("gaus", x)


def gcu(x: Value) -> Value:
    """Growing cosine unit ``x * cos(x)``."""
    return apply_op("gcu", x)


def parcon(x: Value) -> Value:
    """Parabolic cone activation ``x * (2 - x)``."""
    return apply_op("parcon", x)


def lisht(x: Value) -> Value:
    """LiSHT: ``x * tanh(x)``."""
    return apply_op("lisht", x)
