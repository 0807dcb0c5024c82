from contextlib import contextmanager
from contextvars import ContextVar

import numpy as np


__all__ = [
    "get_dtype",
    "with_precision",
    "use_64bit_precision",
    "get_floating_point_info",
]

_state_dtype: ContextVar[np.dtype] = ContextVar(
    "_state_dtype", default=np.dtype(np.float64)
)


def get_dtype() -> np.dtype:
    """Floating point type of solution and residual arrays."""
    return _state_dtype.get()


@contextmanager
def with_precision(dtype: np.typing.DTypeLike):
    """
    Run a block with solution arrays allocated in `dtype`.

    Models allocate their arrays in `finish_init`, so the model has to be
    attached to its problem inside the block.

    :param dtype: A numpy floating point type.
    """
    token = _state_dtype.set(np.dtype(dtype))
    try:
        yield
    finally:
        _state_dtype.reset(token)


def use_64bit_precision() -> None:
    """
    Allocate solution arrays as float64 from now on. This is the default;
    Newton tolerances below ~1e-6 are out of reach in single precision.
    """
    _state_dtype.set(np.dtype(np.float64))


def get_floating_point_info() -> np.finfo:
    """Machine limits of the current solution dtype, e.g. for FD perturbations."""
    return np.finfo(get_dtype())
