"""
Share accounting kernel (pure, integer-only).

Balances are derived, never stored:

    balance(a) = shares(a) * total_supply // total_shares

Minting floors the share count and burning/transferring ceils it, so rounding
dust always stays with the ledger. A rebase only moves ``total_supply``; every
non-zero share balance scales by the same ratio in O(1).
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .errors import AmountTooSmall, EmptySupply, InsufficientBalance, InvalidAmount, RebaseOutOfBounds
from .math import BPS, mul_div, mul_div_up


@dataclass(frozen=True)
class LedgerTotals:
    """Supply-wide totals. ``total_shares > 0`` iff ``total_supply > 0``."""

    total_shares: int = 0
    total_supply: int = 0

    def __post_init__(self) -> None:
        if self.total_shares < 0:
            raise ValueError(f"total_shares must be non-negative: {self.total_shares}")
        if self.total_supply < 0:
            raise ValueError(f"total_supply must be non-negative: {self.total_supply}")
        if (self.total_shares > 0) != (self.total_supply > 0):
            raise ValueError(
                f"total_shares and total_supply must be zero together: "
                f"{self.total_shares}/{self.total_supply}"
            )

    @property
    def is_empty(self) -> bool:
        return self.total_shares == 0


def amount_for_shares(totals: LedgerTotals, shares: int) -> int:
    """Floor conversion shares -> amount. Zero on an empty ledger."""
    if totals.is_empty:
        return 0
    return mul_div(shares, totals.total_supply, totals.total_shares)


def shares_for_mint(totals: LedgerTotals, amount: int) -> int:
    """Shares created for ``amount`` (floor). Bootstraps 1:1 on an empty ledger."""
    if totals.is_empty:
        return amount
    return mul_div(amount, totals.total_shares, totals.total_supply)


def shares_for_debit(totals: LedgerTotals, amount: int) -> int:
    """Shares removed to debit ``amount`` (ceil)."""
    if totals.is_empty:
        return amount
    return mul_div_up(amount, totals.total_shares, totals.total_supply)


def plan_mint(totals: LedgerTotals, amount: int) -> tuple[int, LedgerTotals]:
    """Return ``(shares_minted, next_totals)`` for a mint of ``amount``."""
    if amount <= 0:
        raise InvalidAmount(f"mint amount must be positive: {amount}")
    shares = shares_for_mint(totals, amount)
    if shares <= 0:
        raise AmountTooSmall(f"mint of {amount} rounds to zero shares", amount=amount)
    return shares, LedgerTotals(
        total_shares=totals.total_shares + shares,
        total_supply=totals.total_supply + amount,
    )


def plan_burn(totals: LedgerTotals, account_shares: int, amount: int) -> tuple[int, LedgerTotals]:
    """Return ``(shares_burned, next_totals)`` for a burn of ``amount``.

    Fails ``InsufficientBalance`` when ``amount`` exceeds the derived balance.
    """
    if amount <= 0:
        raise InvalidAmount(f"burn amount must be positive: {amount}")
    balance = amount_for_shares(totals, account_shares)
    if amount > balance:
        raise InsufficientBalance(f"burn of {amount} exceeds balance {balance}", amount=amount, balance=balance)
    shares = min(shares_for_debit(totals, amount), account_shares)
    return shares, _shrink(totals, shares, amount)


def plan_burn_shares(totals: LedgerTotals, account_shares: int, shares: int) -> tuple[int, LedgerTotals]:
    """Return ``(amount_burned, next_totals)`` for burning exactly ``shares``."""
    if shares <= 0:
        raise InvalidAmount(f"share count must be positive: {shares}")
    if shares > account_shares:
        raise InsufficientBalance(
            f"burn of {shares} shares exceeds holding {account_shares}",
            shares=shares,
            holding=account_shares,
        )
    amount = amount_for_shares(totals, shares)
    return amount, _shrink(totals, shares, amount)


def _shrink(totals: LedgerTotals, shares: int, amount: int) -> LedgerTotals:
    next_shares = totals.total_shares - shares
    next_supply = totals.total_supply - amount
    # Dust left behind by the last holder has no owner; drop it with the shares.
    if next_shares == 0:
        next_supply = 0
    return LedgerTotals(total_shares=next_shares, total_supply=next_supply)


def plan_transfer(totals: LedgerTotals, from_shares: int, amount: int) -> int:
    """Return the share count moved for a transfer of ``amount``."""
    if amount <= 0:
        raise InvalidAmount(f"transfer amount must be positive: {amount}")
    balance = amount_for_shares(totals, from_shares)
    if amount > balance:
        raise InsufficientBalance(
            f"transfer of {amount} exceeds balance {balance}", amount=amount, balance=balance
        )
    return min(shares_for_debit(totals, amount), from_shares)


def plan_rebase(totals: LedgerTotals, new_supply: int, *, max_rebase_bps: int) -> LedgerTotals:
    """Return totals with ``total_supply := new_supply``.

    The relative change must stay within ``max_rebase_bps`` of the current
    supply, and a ledger with outstanding shares can never rebase to zero.
    """
    if totals.is_empty:
        raise EmptySupply("cannot rebase an empty ledger")
    if new_supply <= 0:
        raise RebaseOutOfBounds(f"rebase target must be positive: {new_supply}", target=new_supply)
    change = abs(new_supply - totals.total_supply)
    if change * BPS > max_rebase_bps * totals.total_supply:
        raise RebaseOutOfBounds(
            f"rebase from {totals.total_supply} to {new_supply} exceeds {max_rebase_bps} bps",
            current=totals.total_supply,
            target=new_supply,
            max_rebase_bps=max_rebase_bps,
        )
    return replace(totals, total_supply=new_supply)
