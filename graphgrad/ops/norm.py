"""
Normalizations over the last axis.

All of them save the per-row reciprocal scale (and the normalized output
where it helps) during the forward pass so the backward rule does not
recompute statistics. Rows of length zero are rejected.
"""
from graphgrad.node import Value
from graphgrad.registry import apply_op, check_rows, register_op

EPS = 1e-5


def _rms_forward(ctx, x):
    xp = ctx.xp
    rstd = 1 / xp.sqrt(xp.mean(x * x, axis=-1, keepdims=True) + EPS)
    ctx.save(rstd=rstd)
    return x * rstd * ctx.params.get("gain", 1.0)


def _rms_backward(node, grad):
    x = node.operands[0].value
    rstd = node.saved["rstd"]
    g = grad * node.params.get("gain", 1.0)
    mean_gx = node.xp.mean(g * x, axis=-1, keepdims=True)
    return (rstd * g - x * rstd ** 3 * mean_gx,)


def _laynor_forward(ctx, x):
    xp = ctx.xp
    mu = xp.mean(x, axis=-1, keepdims=True)
    var = xp.mean((x - mu) ** 2, axis=-1, keepdims=True)
    rstd = 1 / xp.sqrt(var + EPS)
    xhat = (x - mu) * rstd
    ctx.save(rstd=rstd, xhat=xhat)
    return xhat * ctx.params.get("gain", 1.0) + ctx.params.get("bias", 0.0)


def _laynor_backward(node, grad):
    xp = node.xp
    rstd = node.saved["rstd"]
    xhat = node.saved["xhat"]
    g = grad * node.params.get("gain", 1.0)
    return (
        rstd * (
            g
            - xp.mean(g, axis=-1, keepdims=True)
            - xhat * xp.mean(g * xhat, axis=-1, keepdims=True)
        ),
    )


def _dyntanh_forward(ctx, x):
    t = ctx.xp.tanh(ctx.params["alpha"] * x)
    ctx.save(t=t)
    return ctx.params["gain"] * t + ctx.params["bias"]


def _dyntanh_backward(node, grad):
    t = node.saved["t"]
    return (grad * node.params["gain"] * node.params["alpha"] * (1 - t ** 2),)


register_op("rms", _rms_forward, _rms_backward, check_rows("rms"))
register_op("realrms", _rms_forward, _rms_backward, check_rows("realrms"))
register_op("laynor", _laynor_forward, _laynor_backward, check_rows("laynor"))
register_op("relaynor", _laynor_forward, _laynor_backward, check_rows("relaynor"))
register_op("dyntanh", _dyntanh_forward, _dyntanh_backward)


def rms(x: Value) -> Value:
    """
    RMS normalization over the last axis: ``x / sqrt(mean(x^2) + eps)``.

    Notes
    -----
    With ``r = (mean(x^2) + eps)^(-1/2)`` the gradient is
    ``r * g - x * r^3 * mean(g * x)``.
    """
    return apply_op("rms", x)


def realrms(x: Value, gain: float) -> Value:
    """RMS normalization followed by a scalar gain."""
    return apply_op("realrms", x, gain=float(gain))


def laynor(x: Value) -> Value:
    """
    Layer normalization over the last axis without affine parameters.

    Uses the biased (population) variance, as ``torch.nn.functional.layer_norm``
    does, and ``eps = 1e-5``.
    """
    return apply_op("laynor", x)


def relaynor(x: Value, bias: float, gain: float) -> Value:
    """Layer normalization followed by ``* gain + bias`` with scalar parameters."""
    return apply_op("relaynor", x, bias=float(bias), gain=float(gain))


def dyntanh(x: Value, alpha: float, bias: float, gain: float) -> Value:
    """
    Dynamic tanh: ``gain * tanh(alpha * x) + bias``.

    An elementwise drop-in for layer normalization; no row statistics are
    involved, so any shape (including zero-sized) is accepted.
    """
    return apply_op("dyntanh", x, alpha=float(alpha), bias=float(bias), gain=float(gain))
