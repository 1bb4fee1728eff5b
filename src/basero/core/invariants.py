"""Invariant checkers for the shares ledger.

Each function returns True when the invariant holds, and `check_ledger()`
returns the list of violated invariant ids (empty = all pass). These are
global conservation laws over every account, so they are O(accounts).
`check_totals()` is the constant-time subset run after every ledger mutation.
"""

from __future__ import annotations

from typing import Callable, Iterable, Tuple

from .shares import LedgerTotals, amount_for_shares

Holding = Tuple[str, int]  # (account, shares)


def inv_shares_match_totals(totals: LedgerTotals, holdings: list[Holding]) -> bool:
    return sum(shares for _, shares in holdings) == totals.total_shares


def inv_zero_together(totals: LedgerTotals, holdings: list[Holding]) -> bool:
    return (totals.total_shares > 0) == (totals.total_supply > 0)


def inv_balance_sum_within_rounding(totals: LedgerTotals, holdings: list[Holding]) -> bool:
    """``sum(balances) <= total_supply`` with less than one unit of dust per holder."""
    holders = [shares for _, shares in holdings if shares > 0]
    if not holders:
        return totals.total_supply == 0
    balance_sum = sum(amount_for_shares(totals, shares) for shares in holders)
    return 0 <= totals.total_supply - balance_sum < len(holders)


def inv_no_negative_shares(totals: LedgerTotals, holdings: list[Holding]) -> bool:
    return all(shares >= 0 for _, shares in holdings)


LEDGER_INVARIANTS: dict[str, Callable[[LedgerTotals, list[Holding]], bool]] = {
    "inv_shares_match_totals": inv_shares_match_totals,
    "inv_zero_together": inv_zero_together,
    "inv_balance_sum_within_rounding": inv_balance_sum_within_rounding,
    "inv_no_negative_shares": inv_no_negative_shares,
}


def check_totals(totals: LedgerTotals, share_sum: int) -> list[str]:
    """Constant-time checks against a maintained running share sum."""
    violations = []
    if share_sum != totals.total_shares:
        violations.append("inv_shares_match_totals")
    if (totals.total_shares > 0) != (totals.total_supply > 0):
        violations.append("inv_zero_together")
    return violations


def check_ledger(totals: LedgerTotals, holdings: Iterable[Holding]) -> list[str]:
    """Return list of violated invariant ids (empty = all pass)."""
    snapshot = list(holdings)
    return [inv_id for inv_id, check_fn in LEDGER_INVARIANTS.items() if not check_fn(totals, snapshot)]
