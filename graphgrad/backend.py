from typing import Any, Literal, Optional, Union

import numpy as np
try:
    import cupy as cp
    _HAS_CUPY = True
except Exception:
    cp = None
    _HAS_CUPY = False

DTYPE = np.float32
"""numpy.dtype: The single floating point dtype used for values, seeds and gradients."""

_DeviceStr = Literal["cpu", "cuda"]


def is_cupy_array(x: Any) -> bool:
    """
    Return whether ``x`` is a CuPy ndarray.

    This is safe when CuPy is not installed: it short-circuits on ``_HAS_CUPY``.
    """
    return _HAS_CUPY and hasattr(cp, "ndarray") and isinstance(x, cp.ndarray)


def has_cuda() -> bool:
    """bool: Whether the CuPy backend could be imported."""
    return _HAS_CUPY


def normalize_device(device: Optional[Union[str, _DeviceStr]]) -> Optional[_DeviceStr]:
    """
    Normalize a device specifier to 'cpu', 'cuda', or None.

    Parameters
    ----------
    device : {None, 'cpu', 'cuda', str}
        Device specifier. If a string starts with 'cuda' (e.g. 'cuda', 'cuda:0'),
        it is normalized to 'cuda'. 'cpu' is preserved. None is returned as None.

    Returns
    -------
    {'cpu', 'cuda', None}
        Normalized device identifier.

    Raises
    ------
    ValueError
        If ``device`` is a string that is neither 'cpu' nor startswith 'cuda'.

    Examples
    --------
    >>> normalize_device('cuda:1')
    'cuda'
    >>> normalize_device('gpu')
    Traceback (most recent call last):
        ...
    ValueError: Unknown device spec: 'gpu'
    """
    if device is None:
        return None
    if isinstance(device, str):
        dev = device.lower()
        if dev.startswith("cuda"):
            return "cuda"
        if dev == "cpu":
            return "cpu"
    raise ValueError(f"Unknown device spec: {device!r}")


def get_backend(device: Optional[str] = None) -> Any:
    """
    Return the array module serving ``device``.

    Raises
    ------
    RuntimeError
        If CUDA is requested but CuPy is not installed/available.
    """
    dev = normalize_device(device) or "cpu"
    if dev == "cuda":
        if not _HAS_CUPY:
            raise RuntimeError("CUDA requested but CuPy is not installed/available.")
        return cp
    return np


def backend_of(x: Any) -> Any:
    """Return ``cupy`` for CuPy arrays and ``numpy`` for everything else."""
    return cp if is_cupy_array(x) else np


def device_of(xp: Any) -> _DeviceStr:
    """Map an array module back to its device name."""
    return "cuda" if (_HAS_CUPY and xp is cp) else "cpu"


def as_array(
    data: Any,
    device: Optional[str] = None,
    xp: Any = None,
) -> Any:
    """
    Convert array-like ``data`` into a fresh float32 array.

    Parameters
    ----------
    data : Any
        Python scalar, nested list, ``numpy.ndarray`` or ``cupy.ndarray``.
    device : {'cpu', 'cuda', 'cuda:0', ...} or None, optional
        Target device. If None, the backend is taken from ``xp`` when given,
        otherwise inferred from ``data`` (CuPy array → 'cuda', else 'cpu').
    xp : module, optional
        Explicit array module; ignored when ``device`` is given.

    Returns
    -------
    numpy.ndarray or cupy.ndarray
        A new ``float32`` array that does not alias ``data``.
    """
    if device is not None:
        xp = get_backend(device)
    elif xp is None:
        xp = backend_of(data)

    if xp is np and is_cupy_array(data):
        data = cp.asnumpy(data)
    return xp.array(data, dtype=DTYPE)


def freeze(x: Any) -> Any:
    """
    Mark a NumPy array read-only and return it.

    CuPy arrays have no writeable flag and are returned unchanged.
    """
    if isinstance(x, np.ndarray):
        x.flags.writeable = False
    return x


def to_numpy(x: Any) -> np.ndarray:
    """Copy ``x`` to host memory as a NumPy array."""
    if is_cupy_array(x):
        return cp.asnumpy(x)
    return np.asarray(x)
