"""
Exceptions raised while building or differentiating a computation graph.

All of them derive from :class:`GraphGradError` so callers can catch the
whole family at once, and each one also derives from the builtin exception
that best matches its meaning (``ValueError`` for shape problems,
``RuntimeError`` for the rest).
"""
from typing import Any, Optional, Sequence, Tuple


class GraphGradError(Exception):
    """Base class for every error raised by graphgrad."""


class ShapeError(GraphGradError, ValueError):
    """
    Raised when shapes are incompatible.

    This covers operand shapes that an operation's forward rule cannot
    combine, a ``backward`` seed whose shape differs from the root value,
    a broadcast-reduction target that does not broadcast to the gradient,
    and a backward rule handing back a contribution of the wrong shape.

    Attributes
    ----------
    op : str or None
        The operation (or engine step) that detected the mismatch.
    shapes : tuple of tuple of int
        The offending shapes, in the order they were checked.
    """

    def __init__(
        self,
        message: str,
        op: Optional[str] = None,
        shapes: Sequence[Tuple[int, ...]] = (),
    ) -> None:
        prefix = f"{op}: " if op else ""
        super().__init__(prefix + message)
        self.message = message
        self.op = op
        self.shapes = tuple(tuple(s) for s in shapes)


class GraphIntegrityError(GraphGradError, RuntimeError):
    """
    Raised when the graph reachable from a ``backward`` root is malformed.

    A correctly built graph cannot trigger this: Nodes only reference
    operands that already existed when they were created. It signals an
    externally corrupted Node (e.g. an operand list edited into a cycle)
    or a backward rule that broke its contract.
    """


class UnsupportedOperationError(GraphGradError, RuntimeError):
    """
    Raised when an operation is asked to handle a configuration it does not define.

    Examples are a row-wise maximum over rows of length zero, operands that
    live on different devices, or an op tag that was never registered.

    Attributes
    ----------
    op : str
        Name of the rejected operation.
    """

    def __init__(self, op: str, reason: Any) -> None:
        super().__init__(f"{op}: {reason}")
        self.op = op
