from typing import Any, Optional

from graphgrad.backend import DTYPE, get_backend
from graphgrad.node import Node, Value, make_leaf


def zeros(
    *shape: int,
    requires_grad: bool = True,
    device: Optional[str] = "cpu",
    name: Optional[str] = None,
) -> Value:
    """
    Create a leaf filled with zeros.

    Parameters
    ----------
    *shape : int
        Shape of the leaf.
    requires_grad : bool, default=True
        Whether ``backward`` accumulates a gradient into the leaf.
    device : str or None, default="cpu"
        Target device (``"cpu"`` or ``"cuda"``).
    name : str, optional
        Label for ``repr`` and graph dumps.

    Returns
    -------
    Value
        A float32 leaf of zeros with the given shape and device.
    """
    xp = get_backend(device)
    return Value(Node(xp.zeros(shape, dtype=DTYPE), requires_grad=requires_grad, name=name))


def ones(
    *shape: int,
    requires_grad: bool = True,
    device: Optional[str] = "cpu",
    name: Optional[str] = None,
) -> Value:
    """Create a leaf filled with ones. See :func:`zeros` for the parameters."""
    xp = get_backend(device)
    return Value(Node(xp.ones(shape, dtype=DTYPE), requires_grad=requires_grad, name=name))


def full(
    shape: Any,
    fill_value: float,
    requires_grad: bool = True,
    device: Optional[str] = "cpu",
    name: Optional[str] = None,
) -> Value:
    xp = get_backend(device)
    return Value(Node(xp.full(shape, fill_value, dtype=DTYPE), requires_grad=requires_grad, name=name))


def randn(
    *shape: int,
    requires_grad: bool = True,
    scale: float = 1.0,
    device: Optional[str] = "cpu",
    name: Optional[str] = None,
    seed: Optional[int] = None,
) -> Value:
    """
    Create a leaf with values sampled from ``N(0, scale^2)``.

    Parameters
    ----------
    *shape : int
        Shape of the leaf.
    requires_grad : bool, default=True
        Whether ``backward`` accumulates a gradient into the leaf.
    scale : float, default=1.0
        Multiplicative scale applied to standard normal samples.
    device : str or None, default="cpu"
        Target device (``"cpu"`` or ``"cuda"``).
    name : str, optional
        Label for ``repr`` and graph dumps.
    seed : int, optional
        Seed for a private generator; the global RNG state is untouched.

    Returns
    -------
    Value
        A float32 leaf with normally distributed values.
    """
    xp = get_backend(device)
    rng = xp.random.default_rng(seed)
    data = (rng.standard_normal(shape, dtype=DTYPE) * DTYPE(scale)).astype(DTYPE)
    return Value(Node(data, requires_grad=requires_grad, name=name))


def constant(data: Any, device: Optional[str] = None, name: Optional[str] = None) -> Value:
    """Leaf that never receives a gradient (``requires_grad=False``)."""
    return make_leaf(data, name=name, requires_grad=False, device=device)
