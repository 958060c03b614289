_grad_enabled = True
"""bool: Global flag indicating whether graph edges are recorded.

This flag is toggled by the :class:`no_grad` and :class:`enable_grad`
context managers. When ``_grad_enabled`` is ``False``, builders still
evaluate the forward value eagerly but produce Nodes with
``requires_grad=False`` and no operands.
"""


def is_grad_enabled() -> bool:
    """bool: Whether builders currently record gradient edges."""
    return _grad_enabled


class no_grad:
    """
    Context manager that temporarily disables gradient tracking.

    Values built inside the block carry their forward result but are
    detached leaves: ``requires_grad`` is False and ``operands`` is empty,
    so a later ``backward`` never reaches their inputs through them.

    Examples
    --------
    >>> with no_grad():
    ...     y = x * 2          # y is a constant leaf
    >>> y.requires_grad
    False

    Notes
    -----
    It is safe to nest ``no_grad`` contexts; the previous state of
    ``_grad_enabled`` is restored upon exit.
    """
    _mode = False

    def __enter__(self):
        global _grad_enabled
        self.prev = _grad_enabled
        _grad_enabled = self._mode

    def __exit__(self, *args):
        global _grad_enabled
        _grad_enabled = self.prev


class enable_grad(no_grad):
    """Context manager that re-enables gradient tracking inside a ``no_grad`` block."""
    _mode = True
