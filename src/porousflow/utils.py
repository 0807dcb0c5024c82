import typing

import numba
import numpy as np


__all__ = ["clip", "harmonic_mean", "upwind", "relative_shift", "is_finite"]


@numba.vectorize(cache=True)
def clip(val, min_, max_):
    return np.maximum(np.minimum(val, max_), min_)


@numba.vectorize(cache=True)
def harmonic_mean(value1, value2):
    """Harmonic average of two face-adjacent cell values. Zero if either is zero."""
    if value1 <= 0.0 or value2 <= 0.0:
        return 0.0
    return 2.0 * value1 * value2 / (value1 + value2)


@numba.vectorize(cache=True)
def upwind(potential_difference, inside_value, outside_value):
    """Pick the value of the cell the flow comes from, given `potential_inside - potential_outside`."""
    if potential_difference >= 0.0:
        return inside_value
    return outside_value


def relative_shift(
    old: np.typing.NDArray[np.floating], new: np.typing.NDArray[np.floating]
) -> float:
    """
    Maximum relative change between two solution arrays.

    Each entry's change is scaled by `max(1, |average|)` so that pressures
    (order 1e5) and saturations (order 1) can be compared against one tolerance.

    :param old: Primary variables before the update.
    :param new: Primary variables after the update.
    :return: The largest scaled change over all entries.
    """
    if old.size == 0:
        return 0.0
    scale = np.maximum(1.0, np.abs(0.5 * (old + new)))
    return float(np.max(np.abs(new - old) / scale))


def is_finite(array: typing.Any) -> bool:
    """Whether all entries of the array are finite."""
    return bool(np.all(np.isfinite(array)))
