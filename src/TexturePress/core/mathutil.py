"""Numeric helpers: tolerance comparisons, power-of-two math, vector ops.

All functions are pure. The tolerance is never global mutable state: every
comparison takes an explicit ``epsilon`` that defaults to :data:`EPSILON`.
"""

import numpy as np

from ..errors import InvalidArgument

# Suitable for typical single-precision texture data.
EPSILON = 1e-5


def _check_epsilon(epsilon: float) -> None:
    if epsilon <= 0.0:
        raise InvalidArgument(f"Epsilon value must be greater than 0, got {epsilon!r}.")


def bitmask(value: int) -> int:
    """Return the smallest all-ones bitmask that is >= ``value``.

    ``bitmask(x) + 1`` is the next power of two greater than ``x``.
    """
    if value < 0:
        raise InvalidArgument(f"bitmask() requires a non-negative value, got {value}.")
    value |= value >> 1
    value |= value >> 2
    value |= value >> 4
    value |= value >> 8
    value |= value >> 16
    value |= value >> 32
    return value


def is_power_of_two(value: int) -> bool:
    """Return True if ``value`` is a positive integer with exactly one set bit."""
    return value > 0 and (value & (value - 1)) == 0


def next_power_of_two(value: int) -> int:
    """Return the smallest power of two strictly greater than ``value``.

    ``next_power_of_two(7) == 8`` and ``next_power_of_two(8) == 16``.
    """
    return bitmask(value) + 1


def round_up_to_power_of_two(value: int) -> int:
    """Return the smallest power of two >= ``value`` (``8 -> 8``, ``9 -> 16``)."""
    if value < 1:
        raise InvalidArgument(f"Cannot round {value} up to a power of two.")
    return next_power_of_two(value - 1)


def round_to_multiple_of_four(value: int) -> int:
    """Round ``value`` up to the next multiple of four."""
    if value < 0:
        raise InvalidArgument(f"Cannot round negative value {value} to a multiple of four.")
    result = (value + 3) & ~0x3
    assert result % 4 == 0
    return result


def are_equal(value1: float, value2: float, epsilon: float = EPSILON) -> bool:
    """Return True if the values are equal within ``epsilon``.

    Identical values (including matching infinities) always compare equal.
    Results are undefined for NaN inputs.
    """
    _check_epsilon(epsilon)
    if value1 == value2:
        return True
    delta = value1 - value2
    return -epsilon < delta < epsilon


def is_zero(value: float, epsilon: float = EPSILON) -> bool:
    """Return True if ``|value| < epsilon``."""
    _check_epsilon(epsilon)
    return -epsilon < value < epsilon


def is_less(value1: float, value2: float, epsilon: float = EPSILON) -> bool:
    return value1 < value2 and not are_equal(value1, value2, epsilon)


def is_greater(value1: float, value2: float, epsilon: float = EPSILON) -> bool:
    return value1 > value2 and not are_equal(value1, value2, epsilon)


def are_numerically_equal(vector1, vector2, epsilon: float = EPSILON) -> bool:
    """Compare two vectors component-wise within ``epsilon``."""
    _check_epsilon(epsilon)
    a = np.asarray(vector1, dtype=np.float64)
    b = np.asarray(vector2, dtype=np.float64)
    if a.shape != b.shape:
        return False
    delta = a - b
    close = (a == b) | ((-epsilon < delta) & (delta < epsilon))
    return bool(np.all(close))


def clamp(values: np.ndarray, min_value: float, max_value: float) -> np.ndarray:
    """Clamp each component of ``values`` to ``[min_value, max_value]``."""
    return np.clip(values, min_value, max_value)


def try_normalize(vectors: np.ndarray, epsilon: float = EPSILON):
    """Normalize vectors stored along the last axis.

    Returns ``(normalized, ok)`` where ``ok`` marks vectors whose squared length
    was not numerically zero. Degenerate vectors are returned unchanged.
    """
    _check_epsilon(epsilon)
    vectors = np.asarray(vectors, dtype=np.float32)
    length_sq = np.sum(vectors * vectors, axis=-1, keepdims=True)
    ok = length_sq >= epsilon * epsilon
    length = np.sqrt(np.where(ok, length_sq, 1.0))
    normalized = np.where(ok, vectors / length, vectors).astype(np.float32)
    return normalized, ok[..., 0]
