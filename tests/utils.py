import numpy as np
import torch

from graphgrad.node import Value, make_leaf

ATOL = 1e-6
RTOL = 1e-5

def _is_cupy(x):
    return x.__class__.__module__.startswith("cupy")

def to_numpy(x):
    if _is_cupy(x):
        import cupy as cp
        return cp.asnumpy(x)
    return np.asarray(x)

def vdata(v: Value):
    return to_numpy(v.value)

def vgrad(v: Value):
    return None if v.grad is None else to_numpy(v.grad)

def make_value(x_np: np.ndarray, requires_grad: bool = True, device: str = "cpu", name=None) -> Value:
    return make_leaf(np.asarray(x_np, dtype=np.float32), name=name, requires_grad=requires_grad, device=device)

def make_torch(x_np: np.ndarray, requires_grad: bool = True) -> torch.Tensor:
    return torch.tensor(np.asarray(x_np, dtype=np.float32), requires_grad=requires_grad)

def assert_close(a, b, atol=ATOL, rtol=RTOL):
    a = to_numpy(a)
    b = to_numpy(b)
    assert a.shape == b.shape, f"shape {a.shape} != {b.shape}"
    assert np.allclose(a, b, atol=atol, rtol=rtol), f"max|diff|={np.max(np.abs(a-b))}"

def assert_grad_close(v: Value, tt: torch.Tensor, atol=ATOL, rtol=RTOL):
    assert v.grad is not None, "Value.grad is None"
    assert tt.grad is not None, "Torch grad is None"
    assert_close(vgrad(v), tt.grad.detach().cpu().numpy(), atol=atol, rtol=rtol)
