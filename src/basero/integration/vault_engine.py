"""
Value vault execution shell.

This is an imperative-shell wrapper around the functional core:
- Guards from `basero.core.vault` and the rate model decide every operation.
- Token supply changes go through a `MintBurnCapability` granted once at
  construction; the vault never owns the ledger.
- Each public operation validates in full before its first write, and emits
  its event last.

The clock is always passed in (``now``, unix seconds); the vault never reads
wall time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional

from ..core.accrual import AccountPosition, AccrualPlan, plan_accrual, window_cap
from ..core.errors import (
    AmountTooSmall,
    InsufficientBalance,
    InvalidLockDuration,
    LockedBalance,
    LockExists,
    LockNotExpired,
    NoActiveLock,
)
from ..core.events import Event, EventLog
from ..core.fees import PerformanceFeeParams
from ..core.ledger import MintBurnCapability, SharesLedger, require_account
from ..core.math import require_int, require_positive
from ..core.rate_model import (
    LockSchedule,
    RateCurve,
    TierTable,
    base_rate_bps,
    lock_bonus_bps,
    step_bonus_bps,
    tier_bonus_bps,
    utilization_bps,
)
from ..core.vault import (
    VaultParams,
    VaultState,
    check_accrual_due,
    check_deposit,
    check_withdraw,
    next_accrual_time,
    require_accrual_period,
)
from ..state.locks import LockRecord, LockStatus, LockTable
from .circuit import PauseSwitch, operation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccrualReport:
    timestamp: int
    window: int
    gross: int
    capped: int
    dropped: int
    fee: int
    credited: int
    credits: Mapping[str, int] = field(default_factory=dict)
    fee_recipient: str = ""


@dataclass(frozen=True)
class RateBreakdown:
    utilization_bps: int
    base_bps: int
    tier_bps: int
    lock_bps: int

    @property
    def composite_bps(self) -> int:
        return self.base_bps + self.tier_bps + self.lock_bps


class VaultEngine:
    def __init__(
        self,
        capability: MintBurnCapability,
        params: VaultParams = VaultParams(),
        *,
        start_time: int = 0,
        name: str = "vault",
    ) -> None:
        self.name = name
        self.params = params
        self.state = VaultState(last_accrual_time=require_int(start_time, name="start_time"))
        self.locks = LockTable()
        self.events = EventLog()
        self.switch = PauseSwitch(name)
        self._cap = capability

    @property
    def ledger(self) -> SharesLedger:
        return self._cap.ledger

    # -- monitoring (read-only) ---------------------------------------------

    def utilization(self) -> int:
        return utilization_bps(self.state.total_deposited, self.params.max_deposits)

    def rate_breakdown(self, account: str, now: int, *, holding: Optional[int] = None) -> RateBreakdown:
        u = self.utilization()
        if holding is None:
            holding = self.ledger.balance_of(account)
        lock = self.locks.get(account)
        lock_bps = lock_bonus_bps(lock.bonus_bps, lock.unlock_timestamp, now) if lock is not None else 0
        return RateBreakdown(
            utilization_bps=u,
            base_bps=base_rate_bps(self.params.curve, u),
            tier_bps=tier_bonus_bps(self.params.tiers, holding),
            lock_bps=lock_bps,
        )

    def composite_rate_for(self, account: str, now: int) -> int:
        return self.rate_breakdown(account, now).composite_bps

    def lock_status(self, account: str, now: int) -> LockStatus:
        return self.locks.status(account, now)

    def unlocked_balance(self, account: str, now: int) -> int:
        balance = self.ledger.balance_of(account)
        lock = self.locks.get(account)
        if lock is None or not lock.is_active(now):
            return balance
        return max(0, balance - lock.locked_amount)

    def total_assets(self) -> int:
        return self.state.reserve

    def convert_to_shares(self, assets: int) -> int:
        return self.ledger.shares_for_amount(assets)

    def convert_to_assets(self, shares: int) -> int:
        return self.ledger.amount_for_shares(shares)

    def preview_deposit(self, account: str, amount: int, now: int) -> Dict[str, int]:
        """Shares and locked rate a deposit would produce, without side effects."""
        amount = require_positive(amount, name="amount")
        check_deposit(self.params, self.state, amount)
        rate = self.rate_breakdown(account, now, holding=self.ledger.balance_of(account) + amount)
        return {"shares": self.ledger.shares_for_amount(amount), "rate_bps": rate.composite_bps}

    def preview_withdraw(self, shares: int) -> int:
        return self.ledger.amount_for_shares(require_positive(shares, name="shares"))

    def status(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "paused": self.switch.paused,
            "pause_reason": self.switch.reason,
            "total_deposited": self.state.total_deposited,
            "reserve": self.state.reserve,
            "utilization_bps": self.utilization(),
            "base_rate_bps": base_rate_bps(self.params.curve, self.utilization()),
            "last_accrual_time": self.state.last_accrual_time,
            "next_accrual_time": next_accrual_time(self.params, self.state),
            "total_supply": self.ledger.total_supply,
            "total_shares": self.ledger.total_shares,
            "locks": len(self.locks),
        }

    # -- deposits / withdrawals ---------------------------------------------

    @operation
    def deposit(self, account: str, amount: int, now: int) -> int:
        """Deposit base asset; mint tokens at the current composite rate. Returns shares minted."""
        amount = require_positive(amount, name="amount")
        now = require_int(now, name="now")
        require_account(account)
        check_deposit(self.params, self.state, amount)
        holding = self.ledger.balance_of(account) + amount
        rate = self.rate_breakdown(account, now, holding=holding).composite_bps
        if self.ledger.shares_for_amount(amount) <= 0:
            raise AmountTooSmall(f"deposit of {amount} rounds to zero shares", amount=amount)

        # settles interest on the existing holding before re-pricing it
        shares = self._cap.mint(account, amount, rate, now=now)
        self._cap.set_locked_rate(account, rate, now=now)
        self.state = replace(
            self.state,
            total_deposited=self.state.total_deposited + amount,
            reserve=self.state.reserve + amount,
        )
        self.events.emit(Event.DEPOSIT, account=account, assets=amount, shares=shares, rate_bps=rate)
        logger.info("deposit account=%s assets=%d shares=%d rate_bps=%d", account, amount, shares, rate)
        return shares

    @operation
    def withdraw(self, account: str, shares: int, min_assets: int, now: int) -> int:
        """Redeem ``shares`` for base asset at the ledger exchange rate. Returns assets paid."""
        shares = require_positive(shares, name="shares")
        min_assets = require_int(min_assets, name="min_assets")
        now = require_int(now, name="now")
        held = self.ledger.shares_of(account)
        if shares > held:
            raise InsufficientBalance(f"withdraw of {shares} shares exceeds holding {held}", shares=shares, holding=held)
        assets = self.ledger.amount_for_shares(shares)
        if assets == 0:
            raise AmountTooSmall(f"{shares} shares redeem for zero assets", shares=shares)
        lock = self.locks.get(account)
        if lock is not None and lock.is_active(now):
            remaining = self.ledger.balance_of(account) - assets
            if remaining < lock.locked_amount:
                raise LockedBalance(
                    f"withdrawal would leave {remaining} below locked {lock.locked_amount}",
                    locked_amount=lock.locked_amount,
                )
        check_withdraw(self.state, assets, min_assets)

        paid = self._cap.burn_shares(account, shares, now=now)
        self.state = replace(
            self.state,
            total_deposited=max(0, self.state.total_deposited - paid),
            reserve=self.state.reserve - paid,
        )
        self.events.emit(Event.WITHDRAW, account=account, assets=paid, shares=shares)
        logger.info("withdraw account=%s shares=%d assets=%d", account, shares, paid)
        return paid

    @operation
    def fund_reserve(self, amount: int) -> int:
        """Add base asset backing (yield source collaborator). Returns the new reserve."""
        amount = require_positive(amount, name="amount")
        self.state = replace(self.state, reserve=self.state.reserve + amount)
        self.events.emit(Event.RESERVE_FUNDED, amount=amount, reserve=self.state.reserve)
        return self.state.reserve

    # -- accrual -------------------------------------------------------------

    def plan(self, now: int) -> AccrualPlan:
        """Compute the accrual a call at ``now`` would apply (no side effects)."""
        positions: Dict[str, AccountPosition] = {}
        for account, record in self.ledger.accruing():
            since = max(record.last_accrual, self.state.last_accrual_time)
            positions[account] = AccountPosition(
                balance=self.ledger.balance_of(account),
                rate_bps=record.locked_rate_bps,
                elapsed=max(0, now - since),
                pending=record.pending_interest,
            )
        window = now - self.state.last_accrual_time
        cap = window_cap(self.params.daily_accrual_cap, window)
        return plan_accrual(positions, accrual_cap=cap, fee_params=self.params.performance_fee, window=window)

    @operation
    def accrue(self, now: int) -> AccrualReport:
        now = require_int(now, name="now")
        check_accrual_due(self.params, self.state, now)
        window = now - self.state.last_accrual_time
        plan = self.plan(now)

        recipient = self.params.performance_fee.recipient
        # mint_many prices every credit against the pre-state rate; dust that
        # rounds to zero shares is skipped there and left out of the report here
        account_credits = {
            a: c.net for a, c in plan.credits.items() if c.net > 0 and self.ledger.shares_for_amount(c.net) > 0
        }
        fee = plan.fee_total if self.ledger.shares_for_amount(plan.fee_total) > 0 else 0
        credits = [(a, net, self.ledger.locked_rate_of(a)) for a, net in account_credits.items()]
        if fee > 0:
            credits.append((recipient, fee, 0))
        # restart every clock first so the mints below settle nothing twice
        for account in [a for a, _ in self.ledger.accruing()]:
            self._cap.mark_accrued(account, now)
        self._cap.mint_many(credits, now=now)
        self.state = replace(self.state, last_accrual_time=now)

        report = AccrualReport(
            timestamp=now,
            window=window,
            gross=plan.gross,
            capped=plan.capped,
            dropped=plan.dropped,
            fee=fee,
            credited=sum(account_credits.values()),
            credits=account_credits,
            fee_recipient=recipient,
        )
        self.events.emit(
            Event.INTEREST_ACCRUED,
            timestamp=now,
            gross=plan.gross,
            dropped=plan.dropped,
            fee=fee,
            credited=report.credited,
        )
        if plan.cap_hit:
            logger.warning("accrual cap hit: gross=%d capped=%d dropped=%d", plan.gross, plan.capped, plan.dropped)
        logger.info("accrue at=%d window=%d credited=%d fee=%d", now, window, report.credited, fee)
        return report

    # -- locks ---------------------------------------------------------------

    @operation
    def lock_deposit(self, account: str, amount: int, duration: int, now: int) -> LockRecord:
        amount = require_positive(amount, name="amount")
        now = require_int(now, name="now")
        require_account(account)
        schedule = self.params.lock_schedule
        schedule.require_duration(duration)
        if account in self.locks:
            raise LockExists(f"{account} already has a lock", account=account)
        balance = self.ledger.balance_of(account)
        if amount > balance:
            raise InsufficientBalance(f"lock of {amount} exceeds balance {balance}", amount=amount, balance=balance)

        bonus = step_bonus_bps(schedule.steps, duration)
        lock = LockRecord(locked_amount=amount, unlock_timestamp=now + duration, bonus_bps=bonus, created_at=now)
        self.locks.put(account, lock)
        self._refresh_rate(account, now)
        self.events.emit(
            Event.LOCK_CREATED, account=account, amount=amount, unlock_timestamp=lock.unlock_timestamp, bonus_bps=bonus
        )
        logger.info("lock account=%s amount=%d until=%d bonus_bps=%d", account, amount, lock.unlock_timestamp, bonus)
        return lock

    @operation
    def extend_lock(self, account: str, extra_duration: int, now: int, *, additional_amount: int = 0) -> LockRecord:
        extra_duration = require_positive(extra_duration, name="extra_duration")
        now = require_int(now, name="now")
        additional_amount = require_int(additional_amount, name="additional_amount")
        lock = self.locks.get(account)
        if lock is None or not lock.is_active(now):
            raise NoActiveLock(f"{account} has no active lock", account=account)
        schedule = self.params.lock_schedule
        new_unlock = lock.unlock_timestamp + extra_duration
        total = new_unlock - lock.created_at
        if new_unlock - now > schedule.max_duration:
            raise InvalidLockDuration(
                f"extended lock ends {new_unlock - now}s from now, above {schedule.max_duration}",
                duration=new_unlock - now,
            )
        new_amount = lock.locked_amount + additional_amount
        balance = self.ledger.balance_of(account)
        if new_amount > balance:
            raise InsufficientBalance(f"lock of {new_amount} exceeds balance {balance}", amount=new_amount)

        bonus = max(lock.bonus_bps, step_bonus_bps(schedule.steps, total))
        extended = replace(lock, locked_amount=new_amount, unlock_timestamp=new_unlock, bonus_bps=bonus)
        self.locks.put(account, extended)
        self._refresh_rate(account, now)
        self.events.emit(
            Event.LOCK_EXTENDED, account=account, amount=new_amount, unlock_timestamp=new_unlock, bonus_bps=bonus
        )
        return extended

    @operation
    def unlock_deposit(self, account: str, now: int) -> LockRecord:
        now = require_int(now, name="now")
        lock = self.locks.get(account)
        if lock is None:
            raise NoActiveLock(f"{account} has no lock", account=account)
        if lock.is_active(now):
            raise LockNotExpired(
                f"lock expires at {lock.unlock_timestamp}, now {now}",
                unlock_timestamp=lock.unlock_timestamp,
            )
        self.locks.remove(account)
        self._refresh_rate(account, now)
        self.events.emit(Event.LOCK_RELEASED, account=account, amount=lock.locked_amount)
        logger.info("unlock account=%s amount=%d", account, lock.locked_amount)
        return lock

    def _refresh_rate(self, account: str, now: int) -> None:
        if self.ledger.shares_of(account) == 0:
            return
        self._cap.set_locked_rate(account, self.composite_rate_for(account, now), now=now)

    # -- configuration (pre-authorized by governance) ------------------------

    def pause(self, reason: str = "manual") -> None:
        self.switch.trip(reason)
        self.events.emit(Event.PAUSED, reason=reason)
        logger.warning("%s paused: %s", self.name, reason)

    def unpause(self) -> None:
        self.switch.reset()
        self.events.emit(Event.UNPAUSED)
        logger.info("%s unpaused", self.name)

    def _configure(self, **changes: object) -> None:
        self.params = replace(self.params, **changes)
        self.events.emit(Event.CONFIG_CHANGED, fields=sorted(changes))

    def set_rate_curve(self, curve: RateCurve) -> None:
        self._configure(curve=curve)

    def set_tier_table(self, tiers: TierTable) -> None:
        self._configure(tiers=tiers)

    def set_lock_schedule(self, schedule: LockSchedule) -> None:
        self._configure(lock_schedule=schedule)

    def set_deposit_bounds(self, min_deposit: int, max_deposits: int) -> None:
        self._configure(min_deposit=min_deposit, max_deposits=max_deposits)

    def set_accrual_period(self, period: int) -> None:
        self._configure(accrual_period=require_accrual_period(period))

    def set_daily_accrual_cap(self, cap: int) -> None:
        self._configure(daily_accrual_cap=cap)

    def set_performance_fee(self, fee: PerformanceFeeParams) -> None:
        self._configure(performance_fee=fee)

    def restore(
        self,
        state: VaultState,
        locks: Mapping[str, LockRecord],
        paused: bool = False,
        params: Optional[VaultParams] = None,
    ) -> None:
        if params is not None:
            self.params = params
        self.state = state
        self.locks = LockTable()
        for account, lock in locks.items():
            self.locks.put(account, lock)
        if paused:
            self.switch.trip("restored paused")
        else:
            self.switch.reset()
