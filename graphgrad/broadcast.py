from typing import Any, Tuple, Union

import numpy as np

from graphgrad.backend import backend_of
from graphgrad.errors import ShapeError


def broadcast_shapes(*shapes: Tuple[int, ...]) -> Tuple[int, ...]:
    """
    Infer the shape produced by broadcasting ``shapes`` together.

    Shapes are aligned from the trailing dimension; a dimension of size 1 (or
    a missing leading dimension) expands to match the other shapes.

    Raises
    ------
    ShapeError
        If the shapes cannot be broadcast together.

    Examples
    --------
    >>> broadcast_shapes((2, 2), (2,))
    (2, 2)
    >>> broadcast_shapes((0, 5), (1, 5))
    (0, 5)
    """
    try:
        return tuple(np.broadcast_shapes(*shapes))
    except ValueError:
        raise ShapeError(
            f"shapes {' and '.join(str(tuple(s)) for s in shapes)} are not broadcast-compatible",
            shapes=shapes,
        ) from None


def can_broadcast(shape: Tuple[int, ...], target: Tuple[int, ...]) -> bool:
    """Return whether ``shape`` broadcasts to exactly ``target``."""
    if len(shape) > len(target):
        return False
    for s, t in zip(reversed(shape), reversed(target)):
        if s != t and s != 1:
            return False
    return True


def reduce_to_shape(
    grad: Any,
    target_shape: Tuple[int, ...],
) -> Any:
    """
    Reduce a broadcasted gradient ``grad`` back to ``target_shape`` by summing over broadcasted axes.

    Every backward rule whose forward pass allowed broadcasting routes each
    operand's contribution through this helper, so that contributions always
    have the operand's original shape.

    Parameters
    ----------
    grad : numpy.ndarray or cupy.ndarray
        Gradient array with the broadcast (output) shape ``B``.
    target_shape : tuple[int, ...]
        Original (pre-broadcast) operand shape ``T``.

    Returns
    -------
    numpy.ndarray or cupy.ndarray
        Reduced gradient with shape ``target_shape``.

    Raises
    ------
    ShapeError
        If ``target_shape`` does not broadcast to ``grad.shape``.

    Notes
    -----
    - Leading axes that ``T`` lacks are summed away first, then every axis
      where ``T`` has size 1 and ``B`` does not is summed with ``keepdims``.
    - A broadcast axis of extent zero sums to zeros, so zero-sized graphs
      yield zero gradients of the right shape.

    Examples
    --------
    >>> g = np.ones((2, 2), dtype=np.float32)
    >>> reduce_to_shape(g, (2,))
    array([2., 2.], dtype=float32)
    """
    target_shape = tuple(target_shape)
    if tuple(grad.shape) == target_shape:
        return grad
    if not can_broadcast(target_shape, tuple(grad.shape)):
        raise ShapeError(
            f"cannot reduce gradient of shape {tuple(grad.shape)} to {target_shape}",
            op="reduce_to_shape",
            shapes=(tuple(grad.shape), target_shape),
        )

    lead = grad.ndim - len(target_shape)
    if lead:
        grad = grad.sum(axis=tuple(range(lead)))
    axes = tuple(i for i, (g, t) in enumerate(zip(grad.shape, target_shape)) if g != t)
    if axes:
        grad = grad.sum(axis=axes, keepdims=True)

    return grad.reshape(target_shape)


def expand_to(
    grad: Any,
    target_shape: Tuple[int, ...],
    axes: Union[None, int, Tuple[int, ...]] = None,
) -> Any:
    """
    Expand a reduced gradient to ``target_shape`` by re-inserting reduced axes and broadcasting.

    Parameters
    ----------
    grad : numpy.ndarray or cupy.ndarray
        Gradient of a reduction's output.
    target_shape : tuple[int, ...]
        Shape of the reduction's input.
    axes : int or tuple[int, ...], optional
        Axes that were reduced without ``keepdims``. ``None`` means the
        reduced axes were kept (or everything was reduced to a scalar).

    Returns
    -------
    numpy.ndarray or cupy.ndarray
        Read-only broadcast view with shape ``target_shape``.
    """
    xp = backend_of(grad)
    if axes is not None:
        if isinstance(axes, int):
            axes = (axes,)
        ndim = len(target_shape)
        for ax in sorted(a % ndim for a in axes):
            grad = xp.expand_dims(grad, axis=ax)
    return xp.broadcast_to(grad, tuple(target_shape))
