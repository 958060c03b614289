from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from graphgrad.backend import as_array, backend_of, device_of, freeze, to_numpy

BackwardRule = Callable[["Node", Any], Tuple[Any, ...]]


class Node:
    """
    One computed tensor value plus the record of how it was produced.

    A Node is created exactly once, by :func:`make_leaf` or by an operation
    builder, and is immutable afterwards except for ``grad``, which only the
    backward engine (and :meth:`zero_grad`) writes.

    Attributes
    ----------
    value : numpy.ndarray or cupy.ndarray
        Forward result, ``float32``. NumPy values are marked read-only.
    grad : same as ``value`` or None
        Accumulated gradient. ``None`` until the first backward pass that
        reaches this Node; afterwards always the shape of ``value``. Nodes
        with ``requires_grad=False`` keep ``None`` forever.
    requires_grad : bool
        Whether gradients are accumulated here and propagated further back.
    op_tag : str
        Registered name of the producing operation, ``"leaf"`` for leaves.
    operands : tuple[Node, ...]
        Input Nodes in argument order. Aliasing is allowed: ``a + a`` lists
        the same Node twice.
    backward_rule : callable or None
        ``rule(node, grad) -> tuple`` returning one contribution per operand.
    saved : dict[str, array]
        Forward-time auxiliary arrays the backward rule needs.
    params : dict[str, Any]
        Scalar parameters of the operation (e.g. ``alpha`` of leaky ReLU).
    name : str or None
        Optional label used by graph dumps and ``repr``.
    """
    def __init__(
        self,
        value: Any,
        operands: Iterable["Node"] = (),
        requires_grad: bool = False,
        op_tag: str = "leaf",
        backward_rule: Optional[BackwardRule] = None,
        saved: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> None:
        self.value = freeze(value)
        self.xp = backend_of(value)
        self.grad = None
        self.requires_grad = bool(requires_grad)
        self.op_tag = op_tag
        self.operands = tuple(operands)
        self.backward_rule = backward_rule
        self.saved = dict(saved) if saved else {}
        self.params = dict(params) if params else {}
        self.name = name

    @property
    def shape(self) -> Tuple[int, ...]:
        """tuple of int: Shape of ``value``."""
        return tuple(self.value.shape)

    @property
    def ndim(self) -> int:
        return self.value.ndim

    @property
    def size(self) -> int:
        return self.value.size

    @property
    def dtype(self) -> Any:
        return self.value.dtype

    @property
    def device(self) -> str:
        """str: ``'cpu'`` or ``'cuda'``."""
        return device_of(self.xp)

    @property
    def is_leaf(self) -> bool:
        """bool: True if the Node has no operands."""
        return not self.operands

    def accumulate(self, grad: Any) -> None:
        """
        Add ``grad`` into this Node's gradient buffer.

        The first contribution is copied so the buffer never aliases an
        array owned by someone else; later ones are added in place.
        """
        if self.grad is None:
            self.grad = self.xp.array(grad, dtype=self.value.dtype)
        else:
            self.grad += grad

    def zero_grad(self) -> None:
        """Reset ``grad`` to zeros in place (only for ``requires_grad`` Nodes)."""
        if self.requires_grad:
            self.grad = self.xp.zeros_like(self.value)

    def __repr__(self) -> str:
        label = f", name={self.name!r}" if self.name else ""
        return f"Node(op={self.op_tag!r}, shape={self.shape}, requires_grad={self.requires_grad}{label})"


class Value:
    """
    A user-facing handle to a :class:`Node`.

    Copying a Value (assignment, ``copy.copy``) yields another handle to the
    same Node; nothing is duplicated. Several Values may alias one Node, which
    is how graph reuse such as ``a + a + a`` is expressed. Handles hash and
    compare by their own identity; use ``a.node is b.node`` to test aliasing.

    Arithmetic operators dispatch to the registered operation builders, so
    ``a + b`` is the same as ``graphgrad.ops.arithmetic.add(a, b)``. Python
    scalars and arrays mixed into an expression become constant leaves.

    Examples
    --------
    >>> a = make_leaf([[1., 2.], [3., 4.]], name="a")
    >>> b = a * 2 + a
    >>> b.backward()
    >>> a.grad
    array([[3., 3.],
           [3., 3.]], dtype=float32)
    """
    def __init__(self, node: Node) -> None:
        if not isinstance(node, Node):
            raise TypeError(f"Value wraps a Node, got {type(node).__name__}")
        self._node = node

    @property
    def node(self) -> Node:
        """Node: The Node this handle points at."""
        return self._node

    @property
    def value(self) -> Any:
        """array: Forward value (read-only)."""
        return self._node.value

    @property
    def grad(self) -> Any:
        """array or None: Accumulated gradient of the underlying Node."""
        return self._node.grad

    @property
    def shape(self) -> Tuple[int, ...]:
        return self._node.shape

    @property
    def ndim(self) -> int:
        return self._node.ndim

    @property
    def dtype(self) -> Any:
        return self._node.dtype

    @property
    def requires_grad(self) -> bool:
        return self._node.requires_grad

    @property
    def op_tag(self) -> str:
        return self._node.op_tag

    @property
    def name(self) -> Optional[str]:
        return self._node.name

    @property
    def device(self) -> str:
        return self._node.device

    @property
    def operands(self) -> Tuple["Value", ...]:
        """tuple[Value, ...]: Handles to the operand Nodes, in argument order."""
        return tuple(Value(n) for n in self._node.operands)

    @property
    def T(self) -> "Value":
        """Value: Swap of the last two axes."""
        from graphgrad.ops.linalg import transpose
        return transpose(self)

    def sum(self, axis: Union[None, int, Tuple[int, ...]] = None, keepdims: bool = False) -> "Value":
        from graphgrad.ops.reduction import sum as sum_
        return sum_(self, axis=axis, keepdims=keepdims)

    def mean(self) -> "Value":
        """Mean over every element (see :func:`graphgrad.ops.reduction.mean_all`)."""
        from graphgrad.ops.reduction import mean_all
        return mean_all(self)

    def xp(self) -> Any:
        """Return the array backend (NumPy or CuPy) of the underlying Node."""
        return self._node.xp

    def numpy(self) -> Any:
        """Return a host NumPy copy of the forward value."""
        return to_numpy(self._node.value).copy()

    def backward(self, seed: Optional[Any] = None) -> None:
        """
        Run reverse-mode differentiation from this Value.

        Shortcut for :func:`graphgrad.engine.backward`.
        """
        from graphgrad.engine import backward
        backward(self, seed)

    def zero_grad(self) -> None:
        """Reset the gradient of the underlying Node to zeros."""
        self._node.zero_grad()

    def __add__(self, other: Any) -> "Value":
        from graphgrad.ops.arithmetic import add
        return add(self, other)

    def __radd__(self, other: Any) -> "Value":
        from graphgrad.ops.arithmetic import add
        return add(other, self)

    def __sub__(self, other: Any) -> "Value":
        from graphgrad.ops.arithmetic import sub
        return sub(self, other)

    def __rsub__(self, other: Any) -> "Value":
        from graphgrad.ops.arithmetic import sub
        return sub(other, self)

    def __mul__(self, other: Any) -> "Value":
        from graphgrad.ops.arithmetic import mul
        return mul(self, other)

    def __rmul__(self, other: Any) -> "Value":
        from graphgrad.ops.arithmetic import mul
        return mul(other, self)

    def __truediv__(self, other: Any) -> "Value":
        from graphgrad.ops.arithmetic import div
        return div(self, other)

    def __rtruediv__(self, other: Any) -> "Value":
        from graphgrad.ops.arithmetic import div
        return div(other, self)

    def __pow__(self, exponent: Union[int, float]) -> "Value":
        from graphgrad.ops.arithmetic import pow_scalar
        return pow_scalar(self, exponent)

    def __neg__(self) -> "Value":
        from graphgrad.ops.arithmetic import neg
        return neg(self)

    def __matmul__(self, other: Any) -> "Value":
        from graphgrad.ops.linalg import matmul
        return matmul(self, other)

    def __rmatmul__(self, other: Any) -> "Value":
        from graphgrad.ops.linalg import matmul
        return matmul(other, self)

    def __repr__(self) -> str:
        xp = self._node.xp
        data_str = xp.array2string(self._node.value, separator=", ", prefix="value(")
        details = [f"op={self.op_tag!r}", f"requires_grad={self.requires_grad}", f"device='{self.device}'"]
        if self.name:
            details.insert(0, f"name={self.name!r}")
        return f"value({data_str}, {', '.join(details)})"


def make_leaf(
    data: Any,
    name: Optional[str] = None,
    requires_grad: bool = True,
    device: Optional[str] = None,
) -> Value:
    """
    Introduce external data into the graph as a leaf Node.

    Parameters
    ----------
    data : Any
        Array-like input (Python scalar/list, ``numpy.ndarray``,
        ``cupy.ndarray``) or a :class:`Value`, whose forward value is copied
        into a new, detached leaf. Always converted to a fresh ``float32``
        array, so later edits to ``data`` never reach the graph.
    name : str, optional
        Label shown by ``repr`` and :func:`graphgrad.debug.to_dot`.
    requires_grad : bool, default True
        Whether ``backward`` accumulates a gradient into this leaf. Leaves
        keep this flag even inside :class:`graphgrad.grad_mode.no_grad`.
    device : {'cpu', 'cuda', 'cuda:0', ...} or None, optional
        Target device; inferred from ``data`` when None.

    Returns
    -------
    Value
        Handle to the new leaf Node.

    Examples
    --------
    >>> w = make_leaf(np.zeros((3, 4)), name="w")
    >>> w.shape, w.requires_grad, w.op_tag
    ((3, 4), True, 'leaf')
    """
    if isinstance(data, Value):
        data = data.value
    value = as_array(data, device=device)
    return Value(Node(value, requires_grad=requires_grad, name=name))
