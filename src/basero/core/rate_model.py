"""
Composite interest-rate model (pure).

compositeRate = baseRate(utilization) + tierBonus(holding) + lockBonus(lock, now)

- ``baseRate`` is a two-segment piecewise-linear curve in basis points,
  continuous at the kink and monotone non-decreasing.
- ``tierBonus`` picks the greatest tier threshold <= the holding.
- ``lockBonus`` applies only while a lock is active.

Nothing here reads or mutates engine state; the vault passes its tables in.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import InvalidCurve, InvalidLockDuration, InvalidTierTable
from .math import BPS, SECONDS_PER_WEEK, SECONDS_PER_YEAR, clamp, mul_div


@dataclass(frozen=True)
class RateCurve:
    """Kinked utilization curve. All values in basis points."""

    kink_bps: int = 8_000
    rate_at_zero_bps: int = 200
    rate_at_kink_bps: int = 800
    rate_at_max_bps: int = 3_000

    def __post_init__(self) -> None:
        for name in ("kink_bps", "rate_at_zero_bps", "rate_at_kink_bps", "rate_at_max_bps"):
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool):
                raise InvalidCurve(f"{name} must be an int")
            if v < 0:
                raise InvalidCurve(f"{name} must be non-negative: {v}")
        if not (0 < self.kink_bps < BPS):
            raise InvalidCurve(f"kink_bps must be in (0, {BPS}): {self.kink_bps}")
        if not (self.rate_at_zero_bps <= self.rate_at_kink_bps <= self.rate_at_max_bps):
            raise InvalidCurve(
                "curve must be monotone: rate_at_zero <= rate_at_kink <= rate_at_max "
                f"({self.rate_at_zero_bps}, {self.rate_at_kink_bps}, {self.rate_at_max_bps})"
            )


def _validate_steps(steps: Sequence[tuple[int, int]], *, what: str) -> tuple[tuple[int, int], ...]:
    out: list[tuple[int, int]] = []
    prev: Optional[int] = None
    for entry in steps:
        if len(entry) != 2:
            raise InvalidTierTable(f"{what} entries must be (threshold, bonus_bps) pairs")
        threshold, bonus = entry
        for name, v in (("threshold", threshold), ("bonus_bps", bonus)):
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise InvalidTierTable(f"{what} {name} must be a non-negative int: {v!r}")
        if prev is not None and threshold <= prev:
            raise InvalidTierTable(f"{what} thresholds must be strictly increasing")
        prev = threshold
        out.append((int(threshold), int(bonus)))
    return tuple(out)


@dataclass(frozen=True)
class TierTable:
    """Deposit tiers as ``(threshold_amount, bonus_bps)``, thresholds strictly increasing."""

    tiers: tuple[tuple[int, int], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "tiers", _validate_steps(self.tiers, what="tier"))


@dataclass(frozen=True)
class LockSchedule:
    """Lock bonuses keyed by minimum lock duration (seconds)."""

    steps: tuple[tuple[int, int], ...] = (
        (SECONDS_PER_WEEK, 50),
        (4 * SECONDS_PER_WEEK, 100),
        (13 * SECONDS_PER_WEEK, 200),
        (26 * SECONDS_PER_WEEK, 300),
        (52 * SECONDS_PER_WEEK, 500),
    )
    min_duration: int = SECONDS_PER_WEEK
    max_duration: int = 4 * 52 * SECONDS_PER_WEEK

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", _validate_steps(self.steps, what="lock step"))
        if not (0 < self.min_duration <= self.max_duration):
            raise InvalidLockDuration(
                f"lock duration bounds must satisfy 0 < min <= max: {self.min_duration}, {self.max_duration}"
            )

    def require_duration(self, duration: int) -> int:
        if not isinstance(duration, int) or isinstance(duration, bool):
            raise InvalidLockDuration("duration must be an int")
        if not (self.min_duration <= duration <= self.max_duration):
            raise InvalidLockDuration(
                f"duration {duration} outside [{self.min_duration}, {self.max_duration}]",
                duration=duration,
            )
        return duration


def utilization_bps(total_deposited: int, max_deposits: int) -> int:
    """``total_deposited * 10000 / max_deposits`` clamped to [0, 10000]."""
    if max_deposits <= 0:
        return 0
    return clamp(mul_div(total_deposited, BPS, max_deposits), 0, BPS)


def base_rate_bps(curve: RateCurve, utilization: int) -> int:
    u = clamp(utilization, 0, BPS)
    if u <= curve.kink_bps:
        span = curve.rate_at_kink_bps - curve.rate_at_zero_bps
        return curve.rate_at_zero_bps + mul_div(span, u, curve.kink_bps)
    span = curve.rate_at_max_bps - curve.rate_at_kink_bps
    return curve.rate_at_kink_bps + mul_div(span, u - curve.kink_bps, BPS - curve.kink_bps)


def step_bonus_bps(steps: Sequence[tuple[int, int]], value: int) -> int:
    """Bonus of the greatest threshold <= ``value``, else 0."""
    bonus = 0
    for threshold, step_bonus in steps:
        if threshold > value:
            break
        bonus = step_bonus
    return bonus


def tier_bonus_bps(tiers: TierTable, holding: int) -> int:
    return step_bonus_bps(tiers.tiers, holding)


def lock_bonus_bps(lock_bonus: int, unlock_timestamp: int, now: int) -> int:
    """Bonus of an active lock; zero once ``now`` reaches the unlock time."""
    if now >= unlock_timestamp:
        return 0
    return lock_bonus


def composite_rate_bps(
    curve: RateCurve,
    tiers: TierTable,
    *,
    utilization: int,
    holding: int,
    lock_bonus: int = 0,
) -> int:
    """Uncapped sum of the three components."""
    return base_rate_bps(curve, utilization) + tier_bonus_bps(tiers, holding) + lock_bonus


def interest_for_period(balance: int, rate_bps: int, elapsed_seconds: int) -> int:
    """Simple interest on ``balance`` at ``rate_bps`` (annual) over ``elapsed_seconds``."""
    if balance <= 0 or rate_bps <= 0 or elapsed_seconds <= 0:
        return 0
    return (balance * rate_bps * elapsed_seconds) // (BPS * SECONDS_PER_YEAR)
