"""
Value-vault parameters, state and guards (functional core).

This module holds the pure half of the vault:
- ``VaultParams``: configuration, validated on construction;
- ``VaultState``: aggregate accounting, immutable, replaced per operation;
- ``check_*`` guards: raise the matching policy error or return None.

`basero.integration.vault_engine` is the imperative shell that sequences
these against the shares ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .errors import (
    AccrualNotDue,
    BelowMinimum,
    CapExceeded,
    InsufficientLiquidity,
    InvalidAccrualPeriod,
    InvalidConfig,
    SlippageExceeded,
)
from .fees import PerformanceFeeParams
from .math import SECONDS_PER_DAY, SECONDS_PER_HOUR, WAD
from .rate_model import LockSchedule, RateCurve, TierTable


MIN_ACCRUAL_PERIOD = SECONDS_PER_HOUR
MAX_ACCRUAL_PERIOD = 7 * SECONDS_PER_DAY

DEFAULT_TIERS = TierTable(tiers=((10 * WAD, 100), (100 * WAD, 200), (1_000 * WAD, 300)))


def require_accrual_period(period: int) -> int:
    if not isinstance(period, int) or isinstance(period, bool):
        raise InvalidAccrualPeriod("accrual_period must be an int")
    if not (MIN_ACCRUAL_PERIOD <= period <= MAX_ACCRUAL_PERIOD):
        raise InvalidAccrualPeriod(
            f"accrual_period {period} outside [{MIN_ACCRUAL_PERIOD}, {MAX_ACCRUAL_PERIOD}]",
            accrual_period=period,
        )
    return period


@dataclass(frozen=True)
class VaultParams:
    min_deposit: int = WAD // 100
    max_deposits: int = 1_000_000 * WAD
    accrual_period: int = SECONDS_PER_HOUR
    daily_accrual_cap: int = 10_000 * WAD
    curve: RateCurve = field(default_factory=RateCurve)
    tiers: TierTable = DEFAULT_TIERS
    lock_schedule: LockSchedule = field(default_factory=LockSchedule)
    performance_fee: PerformanceFeeParams = field(default_factory=PerformanceFeeParams)

    def __post_init__(self) -> None:
        for name in ("min_deposit", "max_deposits", "daily_accrual_cap"):
            v = getattr(self, name)
            if not isinstance(v, int) or isinstance(v, bool) or v < 0:
                raise InvalidConfig(f"{name} must be a non-negative int: {v!r}")
        if self.max_deposits <= 0:
            raise InvalidConfig("max_deposits must be positive")
        if self.min_deposit > self.max_deposits:
            raise InvalidConfig("min_deposit must not exceed max_deposits")
        require_accrual_period(self.accrual_period)

    @property
    def periods_per_year(self) -> int:
        return (365 * SECONDS_PER_DAY) // self.accrual_period


@dataclass(frozen=True)
class VaultState:
    total_deposited: int = 0
    reserve: int = 0
    last_accrual_time: int = 0

    def __post_init__(self) -> None:
        if self.total_deposited < 0:
            raise ValueError(f"total_deposited must be non-negative: {self.total_deposited}")
        if self.reserve < 0:
            raise ValueError(f"reserve must be non-negative: {self.reserve}")
        if self.last_accrual_time < 0:
            raise ValueError(f"last_accrual_time must be non-negative: {self.last_accrual_time}")


def check_deposit(params: VaultParams, state: VaultState, amount: int) -> None:
    if amount < params.min_deposit:
        raise BelowMinimum(f"deposit {amount} below minimum {params.min_deposit}", minimum=params.min_deposit)
    if state.total_deposited + amount > params.max_deposits:
        raise CapExceeded(
            f"deposit would exceed cap {params.max_deposits}",
            cap=params.max_deposits,
            total_deposited=state.total_deposited,
        )


def check_withdraw(state: VaultState, assets: int, min_assets: int) -> None:
    if assets < min_assets:
        raise SlippageExceeded(f"withdrawal pays {assets}, below minimum {min_assets}", assets=assets)
    if assets > state.reserve:
        raise InsufficientLiquidity(f"withdrawal of {assets} exceeds reserve {state.reserve}", reserve=state.reserve)


def next_accrual_time(params: VaultParams, state: VaultState) -> int:
    return state.last_accrual_time + params.accrual_period


def check_accrual_due(params: VaultParams, state: VaultState, now: int) -> None:
    due = next_accrual_time(params, state)
    if now < due:
        raise AccrualNotDue(f"next accrual at {due}, now {now}", due=due, now=now)

