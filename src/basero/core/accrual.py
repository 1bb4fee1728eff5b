"""
Interest accrual planner (functional core).

Given every holder's balance, locked rate, unaccrued time and interest already
settled earlier in the window, compute what one accrual window credits. The
plan is complete before the vault mints anything, so an accrual applies
entirely or not at all.

Circuit breaker: when the gross accrual exceeds ``accrual_cap`` every
account's interest is scaled by ``cap / gross`` (floored). The clipped amount
is dropped, not carried into the next window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from .fees import PerformanceFeeParams, split_interest
from .math import SECONDS_PER_DAY
from .rate_model import interest_for_period


@dataclass(frozen=True)
class AccountPosition:
    balance: int
    rate_bps: int
    elapsed: int
    # interest settled earlier in the window (balance or rate changed)
    pending: int = 0


@dataclass(frozen=True)
class AccountCredit:
    gross: int
    fee: int
    net: int


@dataclass(frozen=True)
class AccrualPlan:
    gross: int
    capped: int
    dropped: int
    fee_total: int
    net_total: int
    credits: Mapping[str, AccountCredit] = field(default_factory=dict)

    @property
    def cap_hit(self) -> bool:
        return self.dropped > 0


def window_cap(daily_cap: int, window_seconds: int) -> int:
    """Daily cap pro-rated to the accrual window."""
    if window_seconds <= 0:
        return 0
    return (daily_cap * window_seconds) // SECONDS_PER_DAY


def plan_accrual(
    positions: Mapping[str, AccountPosition],
    *,
    accrual_cap: int,
    fee_params: PerformanceFeeParams,
    window: int = 0,
) -> AccrualPlan:
    """``window`` is the accrual window length; fees annualize over it when it
    exceeds an account's own unaccrued time."""
    raw: dict[str, int] = {}
    for account in sorted(positions):
        pos = positions[account]
        interest = pos.pending + interest_for_period(pos.balance, pos.rate_bps, pos.elapsed)
        if interest > 0:
            raw[account] = interest

    gross = sum(raw.values())
    if gross > accrual_cap:
        scaled = {a: (v * accrual_cap) // gross for a, v in raw.items()}
    else:
        scaled = raw
    capped = sum(scaled.values())

    credits: dict[str, AccountCredit] = {}
    fee_total = 0
    for account, interest in scaled.items():
        if interest == 0:
            continue
        pos = positions[account]
        split = split_interest(interest, pos.balance, max(pos.elapsed, window), fee_params)
        credits[account] = AccountCredit(gross=interest, fee=split.fee, net=split.net)
        fee_total += split.fee

    return AccrualPlan(
        gross=gross,
        capped=capped,
        dropped=gross - capped,
        fee_total=fee_total,
        net_total=capped - fee_total,
        credits=credits,
    )
