"""Integer arithmetic shared by the ledger, rate and fee kernels.

Every function operates on plain Python ints. Rounding is explicit: ``mul_div``
floors, ``mul_div_up`` ceils. Callers pick the direction that favors the
ledger.
"""

from __future__ import annotations

from typing import Any

from .errors import InvalidAmount

BPS: int = 10_000
WAD: int = 10**18
SECONDS_PER_HOUR: int = 3600
SECONDS_PER_DAY: int = 24 * SECONDS_PER_HOUR
SECONDS_PER_WEEK: int = 7 * SECONDS_PER_DAY
SECONDS_PER_YEAR: int = 365 * SECONDS_PER_DAY


def require_int(value: Any, *, name: str, minimum: int | None = 0, maximum: int | None = None) -> int:
    """Return ``value`` as an int or raise ``InvalidAmount``.

    ``bool`` is rejected even though it subclasses ``int``.
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidAmount(f"{name} must be an int, got {type(value).__name__}", field=name)
    if minimum is not None and value < minimum:
        raise InvalidAmount(f"{name} must be >= {minimum}: {value}", field=name)
    if maximum is not None and value > maximum:
        raise InvalidAmount(f"{name} must be <= {maximum}: {value}", field=name)
    return int(value)


def require_positive(value: Any, *, name: str) -> int:
    return require_int(value, name=name, minimum=1)


def mul_div(a: int, b: int, denom: int) -> int:
    """``floor(a * b / denom)`` for non-negative operands."""
    if denom <= 0:
        raise ZeroDivisionError("denominator must be positive")
    return (a * b) // denom


def mul_div_up(a: int, b: int, denom: int) -> int:
    """``ceil(a * b / denom)`` for non-negative operands."""
    if denom <= 0:
        raise ZeroDivisionError("denominator must be positive")
    return (a * b + denom - 1) // denom


def clamp(value: int, lo: int, hi: int) -> int:
    if value < lo:
        return lo
    if value > hi:
        return hi
    return value
