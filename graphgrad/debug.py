"""
Graph dumps for debugging.

:func:`to_dot` renders the graph reachable from a Value as Graphviz DOT text.
Render it with ``dot -Tsvg graph.dot -o graph.svg``.
"""
import os
from typing import Dict, List, Union

from graphgrad.engine import iter_graph
from graphgrad.logger import get_logger
from graphgrad.node import Node, Value

logger = get_logger(__name__)


def _label(node: Value) -> str:
    head = f"{node.name}: {node.op_tag}" if node.name else node.op_tag
    label = f"{head}\\n{node.shape}"
    if node.requires_grad:
        label += "\\nrequires_grad"
    return label.replace('"', '\\"')


def to_dot(root: Union[Value, Node]) -> str:
    """
    Render the graph reachable from ``root`` as DOT text.

    Every Node becomes a box labelled with its name (if any), op tag and
    shape; leaves are drawn as ellipses. Edges run from operand to consumer,
    one per operand slot, so ``a + a`` shows two edges from ``a``. Nodes that
    require gradients are filled.
    """
    if isinstance(root, Node):
        root = Value(root)
    ids: Dict[int, str] = {}
    lines: List[str] = ["digraph graphgrad {", "  rankdir=BT;"]
    edges: List[str] = []

    for node in iter_graph(root):
        v = Value(node)
        ids[id(node)] = f"n{len(ids)}"
        attrs = [f'label="{_label(v)}"', "shape=ellipse" if node.is_leaf else "shape=box"]
        if v.requires_grad:
            attrs.append('style=filled fillcolor="lightblue"')
        lines.append(f"  {ids[id(node)]} [{' '.join(attrs)}];")

    for node in iter_graph(root):
        for slot, operand in enumerate(Value(node).operands):
            edges.append(f'  {ids[id(operand.node)]} -> {ids[id(node)]} [label="{slot}"];')

    lines.extend(edges)
    lines.append("}")
    return "\n".join(lines) + "\n"


def dump_dot(root: Union[Value, Node], path: Union[str, "os.PathLike[str]"]) -> None:
    """Write :func:`to_dot` output for ``root`` to ``path``."""
    text = to_dot(root)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    logger.info("wrote graph dump to %s", os.fspath(path))
