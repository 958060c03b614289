from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from graphgrad.backend import as_array
from graphgrad.errors import GraphIntegrityError, ShapeError
from graphgrad.logger import get_logger
from graphgrad.node import Node, Value

logger = get_logger(__name__)

_VISITING = 1
_DONE = 2


def _node_of(x: Union[Value, Node]) -> Node:
    if isinstance(x, Value):
        return x.node
    if isinstance(x, Node):
        return x
    raise TypeError(f"expected a Value or Node, got {type(x).__name__}")


def _grad_operands(node: Node) -> Tuple[Node, ...]:
    """Operands the engine descends into: only through expandable Nodes, only to requires_grad operands."""
    for operand in node.operands:
        if not isinstance(operand, Node):
            raise GraphIntegrityError(
                f"{node.op_tag} node has an operand of type {type(operand).__name__}, expected Node"
            )
    if not node.requires_grad or node.backward_rule is None:
        return ()
    return tuple(op for op in node.operands if op.requires_grad)


def topological_order(root: Union[Value, Node]) -> List[Node]:
    """
    Order the Nodes that receive gradient from ``root``, consumers first.

    Parameters
    ----------
    root : Value or Node
        Start of the backward traversal.

    Returns
    -------
    list[Node]
        ``root`` first; every Node appears exactly once and only after all of
        its consumers within the traversed subgraph.

    Raises
    ------
    GraphIntegrityError
        If a cycle is found or an operand is not a Node.

    Notes
    -----
    - This is a reverse post-order of an iterative depth-first search, so
      deep chains are not limited by Python's recursion depth.
    - The search does not descend past Nodes with ``requires_grad=False``
      or without a backward rule, and never enters operands that do not
      require gradients. Everything else stays unvisited.
    """
    root = _node_of(root)
    state: Dict[int, int] = {id(root): _VISITING}
    post: List[Node] = []
    stack = [(root, iter(_grad_operands(root)))]

    while stack:
        node, children = stack[-1]
        for child in children:
            s = state.get(id(child))
            if s is None:
                state[id(child)] = _VISITING
                stack.append((child, iter(_grad_operands(child))))
                break
            if s == _VISITING:
                raise GraphIntegrityError(
                    f"cycle detected: {child.op_tag} node is its own ancestor"
                )
        else:
            stack.pop()
            state[id(node)] = _DONE
            post.append(node)

    post.reverse()
    return post


def iter_graph(root: Union[Value, Node]) -> Iterator[Node]:
    """
    Yield every Node reachable from ``root`` through ``operands``, once each.

    Unlike :func:`topological_order` this ignores ``requires_grad``; it is the
    walk used for graph dumps and for clearing gradients.
    """
    root = _node_of(root)
    seen = {id(root)}
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        for operand in node.operands:
            if not isinstance(operand, Node):
                raise GraphIntegrityError(
                    f"{node.op_tag} node has an operand of type {type(operand).__name__}, expected Node"
                )
            if id(operand) not in seen:
                seen.add(id(operand))
                stack.append(operand)


def _prepare_seed(node: Node, seed: Optional[Any]) -> Any:
    if seed is None:
        return node.xp.ones_like(node.value)
    if isinstance(seed, Value):
        seed = seed.value
    seed = as_array(seed, xp=node.xp)
    if tuple(seed.shape) != node.shape:
        raise ShapeError(
            f"seed of shape {tuple(seed.shape)} does not match root of shape {node.shape}",
            op="backward",
            shapes=(tuple(seed.shape), node.shape),
        )
    return seed


def _contributions(node: Node, grad: Any) -> Tuple[Any, ...]:
    grads = node.backward_rule(node, grad)
    if not isinstance(grads, (tuple, list)) or len(grads) != len(node.operands):
        got = len(grads) if isinstance(grads, (tuple, list)) else type(grads).__name__
        raise GraphIntegrityError(
            f"{node.op_tag} backward rule returned {got} contribution(s) for {len(node.operands)} operand(s)"
        )
    return tuple(grads)


def backward(
    root: Union[Value, Node],
    seed: Optional[Any] = None,
) -> None:
    """
    Accumulate gradients of ``root`` into every Node it depends on.

    Parameters
    ----------
    root : Value or Node
        Output to differentiate. Must require gradients.
    seed : array-like or Value, optional
        Gradient of the final target with respect to ``root``. Defaults to
        ones of ``root``'s shape, which also allows non-scalar roots.

    Raises
    ------
    RuntimeError
        If ``root`` does not require gradients.
    ShapeError
        If ``seed`` does not match ``root``'s shape, or a backward rule
        returns a contribution whose shape differs from its operand.
    GraphIntegrityError
        If the reachable graph contains a cycle or a backward rule returns
        the wrong number of contributions.

    Notes
    -----
    - Each Node's backward rule runs at most once per call, and only after
      every consumer has handed it its contribution for this pass.
    - Contributions for this pass are collected first and added (``+=``)
      into ``grad`` only once the whole traversal has succeeded: a failure
      leaves every ``grad`` exactly as it was.
    - Repeated calls accumulate, so gradients from several outputs that share
      a subgraph add up. Reset with :func:`zero_grad` or :func:`clear_grads`.
    - Nodes with ``requires_grad=False`` are never written; their ``grad``
      stays ``None``.

    Examples
    --------
    >>> a = make_leaf([1., 2.])
    >>> b = a * 2
    >>> c = a + 1
    >>> backward(b + c)
    >>> a.grad
    array([3., 3.], dtype=float32)
    """
    node = _node_of(root)
    if not node.requires_grad:
        raise RuntimeError("backward root does not require gradient")

    seed = _prepare_seed(node, seed)
    order = topological_order(node)
    logger.debug("backward from %s node %s: %d node(s) to visit", node.op_tag, node.shape, len(order))

    pending: Dict[int, Any] = {id(node): seed}
    for n in order:
        upstream = pending.get(id(n))
        # a rule may decline to contribute (None) to an operand
        if upstream is None or n.backward_rule is None or not n.operands:
            continue
        grads = _contributions(n, upstream)
        for operand, g in zip(n.operands, grads):
            if g is None or not operand.requires_grad:
                continue
            if tuple(g.shape) != operand.shape:
                raise ShapeError(
                    f"backward rule produced a gradient of shape {tuple(g.shape)} "
                    f"for an operand of shape {operand.shape}",
                    op=n.op_tag,
                    shapes=(tuple(g.shape), operand.shape),
                )
            key = id(operand)
            pending[key] = g if key not in pending else pending[key] + g

    reached = [n for n in order if id(n) in pending]
    for n in reached:
        n.accumulate(pending[id(n)])
    logger.debug("backward finished: %d gradient(s) accumulated", len(reached))


def zero_grad(*values: Union[Value, Node]) -> None:
    """Reset the gradients of ``values`` to zeros."""
    for v in values:
        _node_of(v).zero_grad()


def clear_grads(root: Union[Value, Node]) -> None:
    """Drop the gradient buffer (``grad = None``) of every Node reachable from ``root``."""
    for node in iter_graph(root):
        node.grad = None
