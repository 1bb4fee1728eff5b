"""
Shares ledger: rebasing balances over an invariant share unit.

Holders own shares; balances are derived from the supply-wide exchange rate.
Transfers move shares, a rebase rewrites ``total_supply`` in O(1), and only
holders of a `MintBurnCapability` can create or destroy supply.

Every public mutator validates first and writes second, so a rejected call
leaves the ledger exactly as it was.

Accrual clock: before an account's shares or locked rate change, interest
earned since its ``last_accrual`` on the old balance and rate is settled into
``pending_interest``. Value that arrives later therefore never earns interest
for time it was not held. Timestamped calls pass ``now``; calls without one
settle at ``time``, the latest timestamp the ledger has seen.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import (
    DuplicateInitialization,
    InsufficientAllowance,
    InvalidAmount,
    InvariantViolation,
    ValidationError,
)
from .events import Event, EventLog
from .invariants import check_ledger, check_totals
from .math import BPS, require_int, require_positive
from .rate_model import interest_for_period
from .shares import (
    LedgerTotals,
    amount_for_shares,
    plan_burn,
    plan_burn_shares,
    plan_mint,
    plan_rebase,
    plan_transfer,
    shares_for_debit,
    shares_for_mint,
)
from ..state.accounts import Account, AccountRecord, AccountTable
from ..state.canonical import has_surrogates


@dataclass(frozen=True)
class LedgerParams:
    max_rebase_bps: int = 1_000
    check_invariants: bool = True
    # O(accounts) conservation scan after every mutation; tests and debugging only
    full_scan: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.max_rebase_bps, int) or isinstance(self.max_rebase_bps, bool):
            raise TypeError("max_rebase_bps must be an int")
        if not (0 < self.max_rebase_bps <= BPS):
            raise ValueError(f"max_rebase_bps must be in (0, {BPS}]: {self.max_rebase_bps}")


def require_account(account: object, *, name: str = "account") -> str:
    """Account ids are non-empty strings that encode canonically."""
    if not isinstance(account, str) or not account:
        raise ValidationError(f"{name} must be a non-empty str", field=name)
    if has_surrogates(account):
        raise ValidationError(f"{name} contains surrogate code points", field=name)
    return account


class SharesLedger:
    def __init__(self, params: LedgerParams = LedgerParams()) -> None:
        self.params = params
        self.totals = LedgerTotals()
        self.accounts = AccountTable()
        self.events = EventLog()
        self._allowances: Dict[Tuple[Account, Account], int] = {}
        self._capability_holders: Dict[str, "MintBurnCapability"] = {}
        self.time = 0

    # -- capabilities --------------------------------------------------------

    def issue_capability(self, holder: str) -> "MintBurnCapability":
        """Grant mint/burn rights to ``holder``. Each holder is granted once."""
        require_account(holder, name="holder")
        if holder in self._capability_holders:
            raise DuplicateInitialization(f"capability already issued to {holder!r}", holder=holder)
        cap = MintBurnCapability(self, holder)
        self._capability_holders[holder] = cap
        return cap

    def capability_holders(self) -> Tuple[str, ...]:
        return tuple(sorted(self._capability_holders))

    # -- reads ---------------------------------------------------------------

    @property
    def total_supply(self) -> int:
        return self.totals.total_supply

    @property
    def total_shares(self) -> int:
        return self.totals.total_shares

    def shares_of(self, account: Account) -> int:
        return self.accounts.shares_of(account)

    def balance_of(self, account: Account) -> int:
        return amount_for_shares(self.totals, self.accounts.shares_of(account))

    def locked_rate_of(self, account: Account) -> int:
        return self.accounts.get(account).locked_rate_bps

    def record_of(self, account: Account) -> AccountRecord:
        return self.accounts.get(account)

    def amount_for_shares(self, shares: int) -> int:
        return amount_for_shares(self.totals, require_int(shares, name="shares"))

    def shares_for_amount(self, amount: int) -> int:
        """Shares a mint of ``amount`` would create right now."""
        return shares_for_mint(self.totals, require_int(amount, name="amount"))

    def shares_to_debit(self, amount: int) -> int:
        return shares_for_debit(self.totals, require_int(amount, name="amount"))

    def allowance(self, owner: Account, spender: Account) -> int:
        return self._allowances.get((owner, spender), 0)

    def holders(self) -> Iterator[Tuple[Account, AccountRecord]]:
        return self.accounts.holders()

    def balances(self) -> Dict[Account, int]:
        return {a: amount_for_shares(self.totals, r.shares) for a, r in self.accounts.holders()}

    # -- transfers -----------------------------------------------------------

    def transfer(self, sender: Account, recipient: Account, amount: int, *, now: Optional[int] = None) -> int:
        """Move ``amount`` worth of shares. Returns the share count moved."""
        require_account(sender, name="sender")
        require_account(recipient, name="recipient")
        amount = require_positive(amount, name="amount")
        now = self._clock(now)
        shares = plan_transfer(self.totals, self.accounts.shares_of(sender), amount)

        self._move_shares(sender, recipient, shares, now)
        self._after_mutation()
        self.events.emit(Event.TRANSFER, sender=sender, recipient=recipient, amount=amount, shares=shares)
        return shares

    def approve(self, owner: Account, spender: Account, amount: int) -> None:
        require_account(owner, name="owner")
        require_account(spender, name="spender")
        amount = require_int(amount, name="amount")
        if amount == 0:
            self._allowances.pop((owner, spender), None)
        else:
            self._allowances[(owner, spender)] = amount
        self.events.emit(Event.APPROVAL, owner=owner, spender=spender, amount=amount)

    def transfer_from(
        self, spender: Account, owner: Account, recipient: Account, amount: int, *, now: Optional[int] = None
    ) -> int:
        require_account(spender, name="spender")
        require_account(owner, name="owner")
        require_account(recipient, name="recipient")
        amount = require_positive(amount, name="amount")
        now = self._clock(now)
        allowed = self.allowance(owner, spender)
        if amount > allowed:
            raise InsufficientAllowance(
                f"transfer of {amount} exceeds allowance {allowed}", amount=amount, allowance=allowed
            )
        shares = plan_transfer(self.totals, self.accounts.shares_of(owner), amount)

        remaining = allowed - amount
        if remaining == 0:
            self._allowances.pop((owner, spender), None)
        else:
            self._allowances[(owner, spender)] = remaining
        self._move_shares(owner, recipient, shares, now)
        self._after_mutation()
        self.events.emit(Event.TRANSFER, sender=owner, recipient=recipient, amount=amount, shares=shares)
        return shares

    def _move_shares(self, sender: Account, recipient: Account, shares: int, now: int) -> None:
        if sender == recipient:
            return
        self._settle(sender, now)
        self._settle(recipient, now)
        fresh = self.accounts.shares_of(recipient) == 0
        sender_rate = self.accounts.get(sender).locked_rate_bps
        self.accounts.add_shares(sender, -shares)
        self.accounts.add_shares(recipient, shares)
        if fresh:
            self.accounts.set_rate(recipient, sender_rate)

    # -- rebase --------------------------------------------------------------

    def rebase(self, delta: int) -> int:
        """Change ``total_supply`` by ``delta``. Returns the new supply."""
        if not isinstance(delta, int) or isinstance(delta, bool):
            raise InvalidAmount("delta must be an int")
        return self.rebase_to(self.totals.total_supply + delta)

    def rebase_to(self, new_supply: int) -> int:
        if not isinstance(new_supply, int) or isinstance(new_supply, bool):
            raise InvalidAmount("new_supply must be an int")
        previous = self.totals.total_supply
        self.totals = plan_rebase(self.totals, new_supply, max_rebase_bps=self.params.max_rebase_bps)
        self._after_mutation()
        self.events.emit(Event.REBASE, previous_supply=previous, total_supply=new_supply)
        return new_supply

    def rebase_bps(self, change_bps: int) -> int:
        """Percentage rebase, e.g. ``+100`` grows every balance by 1%."""
        if not isinstance(change_bps, int) or isinstance(change_bps, bool):
            raise InvalidAmount("change_bps must be an int")
        target = self.totals.total_supply + (self.totals.total_supply * change_bps) // BPS
        return self.rebase_to(target)

    # -- capability-gated primitives ----------------------------------------

    def _mint(self, account: Account, amount: int, rate_bps: int, now: Optional[int] = None) -> int:
        require_account(account)
        amount = require_positive(amount, name="amount")
        rate_bps = require_int(rate_bps, name="rate_bps")
        now = self._clock(now)
        shares, next_totals = plan_mint(self.totals, amount)

        self._settle(account, now)
        fresh = self.accounts.shares_of(account) == 0
        self.totals = next_totals
        self.accounts.add_shares(account, shares)
        if fresh:
            self.accounts.set_rate(account, rate_bps)
        self._after_mutation()
        self.events.emit(Event.TRANSFER, sender="", recipient=account, amount=amount, shares=shares)
        return shares

    def _mint_many(self, credits: List[Tuple[Account, int, int]], now: Optional[int] = None) -> Dict[Account, int]:
        """Mint several credits priced against the same pre-state exchange rate.

        Credits that would round to zero shares are skipped. Returns the
        amount actually minted per account.
        """
        now = self._clock(now)
        planned: List[Tuple[Account, int, int, int]] = []
        for account, amount, rate_bps in credits:
            require_account(account)
            amount = require_int(amount, name="amount")
            rate_bps = require_int(rate_bps, name="rate_bps")
            shares = shares_for_mint(self.totals, amount)
            if amount > 0 and shares > 0:
                planned.append((account, amount, rate_bps, shares))
        if not planned:
            return {}

        for account in {p[0] for p in planned}:
            self._settle(account, now)
        self.totals = LedgerTotals(
            total_shares=self.totals.total_shares + sum(p[3] for p in planned),
            total_supply=self.totals.total_supply + sum(p[1] for p in planned),
        )
        minted: Dict[Account, int] = {}
        for account, amount, rate_bps, shares in planned:
            fresh = self.accounts.shares_of(account) == 0
            self.accounts.add_shares(account, shares)
            if fresh:
                self.accounts.set_rate(account, rate_bps)
            minted[account] = minted.get(account, 0) + amount
        self._after_mutation()
        for account, amount, _, shares in planned:
            self.events.emit(Event.TRANSFER, sender="", recipient=account, amount=amount, shares=shares)
        return minted

    def _burn(self, account: Account, amount: int, now: Optional[int] = None) -> int:
        require_account(account)
        amount = require_positive(amount, name="amount")
        now = self._clock(now)
        shares, next_totals = plan_burn(self.totals, self.accounts.shares_of(account), amount)

        self._settle(account, now)
        self.totals = next_totals
        self.accounts.add_shares(account, -shares)
        self._after_mutation()
        self.events.emit(Event.TRANSFER, sender=account, recipient="", amount=amount, shares=shares)
        return shares

    def _burn_shares(self, account: Account, shares: int, now: Optional[int] = None) -> int:
        require_account(account)
        shares = require_positive(shares, name="shares")
        now = self._clock(now)
        amount, next_totals = plan_burn_shares(self.totals, self.accounts.shares_of(account), shares)

        self._settle(account, now)
        self.totals = next_totals
        self.accounts.add_shares(account, -shares)
        self._after_mutation()
        self.events.emit(Event.TRANSFER, sender=account, recipient="", amount=amount, shares=shares)
        return amount

    def _set_locked_rate(self, account: Account, rate_bps: int, now: Optional[int] = None) -> None:
        require_account(account)
        rate_bps = require_int(rate_bps, name="rate_bps")
        now = self._clock(now)
        previous = self.accounts.get(account).locked_rate_bps
        if previous == rate_bps:
            return
        self._settle(account, now)
        self.accounts.set_rate(account, rate_bps)
        self.events.emit(Event.RATE_CHANGED, account=account, previous_rate_bps=previous, rate_bps=rate_bps)

    def _mark_accrued(self, account: Account, timestamp: int) -> None:
        """Restart the account's accrual clock and clear its pending interest."""
        require_account(account)
        timestamp = self._clock(timestamp)
        self.time = max(self.time, timestamp)
        record = self.accounts.get(account)
        self.accounts.set_accrual(account, max(record.last_accrual, timestamp), 0)

    # -- accrual clock -------------------------------------------------------

    def _clock(self, now: Optional[int]) -> int:
        if now is None:
            return self.time
        return require_int(now, name="now")

    def _settle(self, account: Account, now: int) -> None:
        self.time = max(self.time, now)
        record = self.accounts.get(account)
        if now <= record.last_accrual:
            return
        earned = 0
        if record.shares > 0:
            balance = amount_for_shares(self.totals, record.shares)
            earned = interest_for_period(balance, record.locked_rate_bps, now - record.last_accrual)
        self.accounts.set_accrual(account, now, record.pending_interest + earned)

    def pending_interest_of(self, account: Account) -> int:
        return self.accounts.get(account).pending_interest

    def accruing(self) -> Iterator[Tuple[Account, AccountRecord]]:
        return self.accounts.accruing()

    def _after_mutation(self) -> None:
        if not self.params.check_invariants:
            return
        if self.params.full_scan:
            violations = check_ledger(self.totals, ((a, r.shares) for a, r in self.accounts.items()))
        else:
            violations = check_totals(self.totals, self.accounts.total_shares())
        if violations:
            raise InvariantViolation(violations)

    def restore(self, totals: LedgerTotals, records: Dict[Account, AccountRecord], allowances: Dict[Tuple[Account, Account], int]) -> None:
        """Replace the whole ledger state (snapshot restore)."""
        accounts = AccountTable()
        for account, record in records.items():
            accounts.put(account, record)
        violations = check_ledger(totals, ((a, r.shares) for a, r in accounts.items()))
        if violations:
            raise InvariantViolation(violations)
        self.totals = totals
        self.accounts = accounts
        self._allowances = dict(allowances)
        self.time = max((r.last_accrual for r in records.values()), default=0)

    def allowances(self) -> Dict[Tuple[Account, Account], int]:
        return dict(self._allowances)

    def __repr__(self) -> str:
        return (
            f"SharesLedger(supply={self.totals.total_supply}, shares={self.totals.total_shares}, "
            f"accounts={len(self.accounts)})"
        )


class MintBurnCapability:
    """
    Restricted mint/burn handle into a `SharesLedger`.

    Issued once per holder by `SharesLedger.issue_capability`; engines keep
    the handle instead of owning the ledger.
    """

    __slots__ = ("_ledger", "holder")

    def __init__(self, ledger: SharesLedger, holder: str) -> None:
        self._ledger = ledger
        self.holder = holder

    @property
    def ledger(self) -> SharesLedger:
        return self._ledger

    def mint(self, account: Account, amount: int, rate_bps: int, *, now: Optional[int] = None) -> int:
        """Mint ``amount`` to ``account``. A fresh account adopts ``rate_bps``."""
        return self._ledger._mint(account, amount, rate_bps, now)

    def mint_many(self, credits: List[Tuple[Account, int, int]], *, now: Optional[int] = None) -> Dict[Account, int]:
        return self._ledger._mint_many(credits, now)

    def burn(self, account: Account, amount: int, *, now: Optional[int] = None) -> int:
        return self._ledger._burn(account, amount, now)

    def burn_shares(self, account: Account, shares: int, *, now: Optional[int] = None) -> int:
        return self._ledger._burn_shares(account, shares, now)

    def set_locked_rate(self, account: Account, rate_bps: int, *, now: Optional[int] = None) -> None:
        self._ledger._set_locked_rate(account, rate_bps, now)

    def mark_accrued(self, account: Account, timestamp: int) -> None:
        self._ledger._mark_accrued(account, timestamp)

    def __repr__(self) -> str:
        return f"MintBurnCapability(holder={self.holder!r})"
