"""
Operation registry and eager graph builder.

Every differentiable operation is a registered :class:`OpDef`: a forward
function that computes the result from raw arrays, a backward rule that maps
the upstream gradient to one contribution per operand, and an optional shape
check run before the forward function. :func:`apply_op` looks the op up by
tag, evaluates it eagerly and wires the resulting Node to its operands.

Contracts
---------
``check(shapes, params)``
    Receives the operand shapes (tuple of tuples) and the scalar params.
    Raises :class:`~graphgrad.errors.ShapeError` (or
    :class:`~graphgrad.errors.UnsupportedOperationError`) to reject the call.
``forward(ctx, *arrays)``
    Receives a :class:`ForwardContext` and the operand values. Returns the
    output array. Auxiliary state needed by the backward rule is stored with
    ``ctx.save(name=array)`` and ends up on ``node.saved``.
``backward(node, grad)``
    Receives the output Node and the upstream gradient (shape of
    ``node.value``). Returns a tuple with one entry per operand: ``None`` or
    an array with exactly that operand's shape. Broadcast operands must be
    reduced with :func:`~graphgrad.broadcast.reduce_to_shape`.
"""
from typing import Any, Callable, Dict, List, Optional, Tuple

from graphgrad.backend import DTYPE, as_array, backend_of
from graphgrad.broadcast import broadcast_shapes
from graphgrad.errors import ShapeError, UnsupportedOperationError
from graphgrad.grad_mode import is_grad_enabled
from graphgrad.logger import get_logger
from graphgrad.node import Node, Value

logger = get_logger(__name__)

Shapes = Tuple[Tuple[int, ...], ...]
ShapeCheck = Callable[[Shapes, Dict[str, Any]], None]


class OpDef:
    """A registered operation: tag, forward function, backward rule and shape check."""
    def __init__(
        self,
        tag: str,
        forward: Callable[..., Any],
        backward: Callable[[Node, Any], Tuple[Any, ...]],
        check: Optional[ShapeCheck] = None,
    ) -> None:
        self.tag = tag
        self.forward = forward
        self.backward = backward
        self.check = check

    def __repr__(self) -> str:
        return f"OpDef({self.tag!r})"


class ForwardContext:
    """
    Scratch space handed to a forward function.

    Attributes
    ----------
    xp : module
        Array backend of the operands.
    params : dict[str, Any]
        Scalar parameters passed to :func:`apply_op`.
    saved : dict[str, array]
        Arrays stored with :meth:`save`; moved onto the output Node.
    """
    def __init__(self, xp: Any, params: Dict[str, Any]) -> None:
        self.xp = xp
        self.params = params
        self.saved: Dict[str, Any] = {}

    def save(self, **arrays: Any) -> None:
        self.saved.update(arrays)


_REGISTRY: Dict[str, OpDef] = {}


def register_op(
    tag: str,
    forward: Callable[..., Any],
    backward: Callable[[Node, Any], Tuple[Any, ...]],
    check: Optional[ShapeCheck] = None,
    replace: bool = False,
) -> OpDef:
    """
    Register an operation under ``tag``.

    Raises
    ------
    ValueError
        If ``tag`` is already registered and ``replace`` is False, or if
        ``tag`` is the reserved leaf tag.
    """
    if tag == "leaf":
        raise ValueError("'leaf' is reserved for leaf Nodes")
    if tag in _REGISTRY and not replace:
        raise ValueError(f"operation {tag!r} is already registered")
    op = OpDef(tag, forward, backward, check)
    _REGISTRY[tag] = op
    logger.debug("registered op %r", tag)
    return op


def get_op(tag: str) -> OpDef:
    """Return the :class:`OpDef` for ``tag`` or raise ``UnsupportedOperationError``."""
    try:
        return _REGISTRY[tag]
    except KeyError:
        raise UnsupportedOperationError(tag, "operation is not registered") from None


def registered_ops() -> List[str]:
    """list[str]: Sorted tags of every registered operation."""
    return sorted(_REGISTRY)


def _as_node(x: Any, xp: Any) -> Node:
    if isinstance(x, Value):
        return x.node
    if isinstance(x, Node):
        return x
    return Node(as_array(x, xp=xp))


def apply_op(tag: str, *operands: Any, **params: Any) -> Value:
    """
    Build a Node for operation ``tag`` applied to ``operands``.

    Parameters
    ----------
    tag : str
        Registered operation name.
    *operands : Value or array-like
        Inputs. Non-Value operands become constant leaves
        (``requires_grad=False``) on the backend of the first Value operand.
    **params : Any
        Scalar parameters forwarded to the op (stored on ``node.params``).

    Returns
    -------
    Value
        Handle to the new Node. ``requires_grad`` is True if any operand
        requires gradients and grad mode is enabled.

    Raises
    ------
    ShapeError
        If the op's shape check rejects the operand shapes.
    UnsupportedOperationError
        If ``tag`` is unknown or operands live on different devices.
    """
    op = get_op(tag)

    xp = next((backend_of(x.value) for x in operands if isinstance(x, (Value, Node))), None)
    nodes = tuple(_as_node(x, xp) for x in operands)
    if nodes:
        xp = nodes[0].xp
        if any(n.xp is not xp for n in nodes):
            devices = ", ".join(n.device for n in nodes)
            raise UnsupportedOperationError(tag, f"operands on different devices ({devices})")
    else:
        xp = backend_of(None)

    shapes = tuple(n.shape for n in nodes)
    if op.check is not None:
        try:
            op.check(shapes, params)
        except ShapeError as e:
            if e.op is not None:
                raise
            raise ShapeError(e.message, op=tag, shapes=e.shapes) from None

    ctx = ForwardContext(xp, params)
    out = op.forward(ctx, *(n.value for n in nodes))
    out = xp.asarray(out, dtype=DTYPE)

    if is_grad_enabled():
        requires_grad = any(n.requires_grad for n in nodes)
        node = Node(
            out,
            operands=nodes,
            requires_grad=requires_grad,
            op_tag=tag,
            backward_rule=op.backward,
            saved=ctx.saved,
            params=params,
        )
    else:
        node = Node(out, op_tag=tag, params=params)

    return Value(node)


def check_broadcast(shapes: Shapes, params: Dict[str, Any]) -> None:
    """Elementwise ops: every operand shape must broadcast together."""
    broadcast_shapes(*shapes)


def check_same_shape(shapes: Shapes, params: Dict[str, Any]) -> None:
    """Operand shapes must match exactly (no broadcasting)."""
    if any(s != shapes[0] for s in shapes[1:]):
        raise ShapeError(
            f"expected identical shapes, got {', '.join(map(str, shapes))}",
            shapes=shapes,
        )


def check_min_ndim(n: int) -> ShapeCheck:
    """Return a check requiring every operand to have at least ``n`` dimensions."""
    def _check(shapes: Shapes, params: Dict[str, Any]) -> None:
        for s in shapes:
            if len(s) < n:
                raise ShapeError(f"expected at least {n} dimension(s), got shape {s}", shapes=shapes)
    return _check


def check_matmul(shapes: Shapes, params: Dict[str, Any]) -> None:
    """
    Matrix-style ops: ``(..., m, k) @ (..., k, n)``.

    Both operands need at least two dimensions, the contracted dimensions must
    be equal, and the leading batch dimensions must broadcast.
    """
    a, b = shapes
    if len(a) < 2 or len(b) < 2:
        raise ShapeError(f"matmul needs operands with ndim >= 2, got {a} and {b}", shapes=shapes)
    if a[-1] != b[-2]:
        raise ShapeError(f"inner dimensions differ: {a} @ {b}", shapes=shapes)
    broadcast_shapes(a[:-2], b[:-2])


def check_rows(tag: str) -> ShapeCheck:
    """
    Row-wise reductions (last axis): need ``ndim >= 1`` and a non-empty last axis.

    An empty row has no maximum, no softmax and no mean, so those are
    rejected as unsupported rather than producing NaNs.
    """
    def _check(shapes: Shapes, params: Dict[str, Any]) -> None:
        (s,) = shapes[:1]
        if len(s) < 1:
            raise ShapeError("expected at least 1 dimension, got a scalar", op=tag, shapes=shapes)
        if s[-1] == 0:
            raise UnsupportedOperationError(tag, f"rows of length zero are undefined (shape {s})")
    return _check

