from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from basero.core.errors import (
    DuplicateInitialization,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidAmount,
    InvariantViolation,
    RebaseOutOfBounds,
    ValidationError,
)
from basero.core.events import Event
from basero.core.ledger import LedgerParams, SharesLedger
from basero.core.math import SECONDS_PER_HOUR, WAD
from basero.core.rate_model import interest_for_period
from basero.core.shares import LedgerTotals
from basero.state.accounts import AccountRecord, AccountTable


def _ledger_with(*mints: tuple[str, int, int]) -> tuple[SharesLedger, object]:
    ledger = SharesLedger()
    cap = ledger.issue_capability("minter")
    for account, amount, rate in mints:
        cap.mint(account, amount, rate)
    return ledger, cap


# ---------------------------------------------------------------------------
# capabilities
# ---------------------------------------------------------------------------


def test_capability_is_issued_once_per_holder() -> None:
    ledger = SharesLedger()
    ledger.issue_capability("vault")
    ledger.issue_capability("gateway")
    with pytest.raises(DuplicateInitialization):
        ledger.issue_capability("vault")
    assert ledger.capability_holders() == ("gateway", "vault")


def test_ledger_has_no_public_mint() -> None:
    ledger = SharesLedger()
    assert not hasattr(ledger, "mint")
    assert not hasattr(ledger, "burn")


# ---------------------------------------------------------------------------
# transfers
# ---------------------------------------------------------------------------


def test_transfer_moves_balance_and_emits_event() -> None:
    ledger, _ = _ledger_with(("alice", 100 * WAD, 300))
    ledger.transfer("alice", "bob", 40 * WAD)
    assert ledger.balance_of("alice") == 60 * WAD
    assert ledger.balance_of("bob") == 40 * WAD
    last = ledger.events.last()
    assert last.event is Event.TRANSFER
    assert last["sender"] == "alice" and last["recipient"] == "bob"


def test_fresh_recipient_inherits_sender_rate() -> None:
    ledger, cap = _ledger_with(("alice", 100 * WAD, 300), ("carol", 10 * WAD, 900))
    ledger.transfer("alice", "bob", 10 * WAD)
    ledger.transfer("alice", "carol", 10 * WAD)
    assert ledger.locked_rate_of("bob") == 300
    assert ledger.locked_rate_of("carol") == 900


def test_mint_never_overwrites_a_live_rate() -> None:
    ledger, cap = _ledger_with(("alice", 100 * WAD, 300))
    cap.mint("alice", 10 * WAD, 1_200)
    assert ledger.locked_rate_of("alice") == 300
    cap.set_locked_rate("alice", 1_200)
    assert ledger.locked_rate_of("alice") == 1_200
    assert ledger.events.last().event is Event.RATE_CHANGED


def test_rejected_transfer_changes_nothing() -> None:
    ledger, _ = _ledger_with(("alice", 100 * WAD, 300))
    events_before = len(ledger.events)
    with pytest.raises(InsufficientBalance):
        ledger.transfer("alice", "bob", 101 * WAD)
    assert ledger.balance_of("alice") == 100 * WAD
    assert ledger.shares_of("bob") == 0
    assert len(ledger.events) == events_before


def test_transfer_from_spends_allowance() -> None:
    ledger, _ = _ledger_with(("alice", 100 * WAD, 300))
    ledger.approve("alice", "router", 30 * WAD)
    ledger.transfer_from("router", "alice", "bob", 20 * WAD)
    assert ledger.allowance("alice", "router") == 10 * WAD
    assert ledger.balance_of("bob") == 20 * WAD
    with pytest.raises(InsufficientAllowance):
        ledger.transfer_from("router", "alice", "bob", 11 * WAD)
    ledger.transfer_from("router", "alice", "bob", 10 * WAD)
    assert ledger.allowance("alice", "router") == 0


# ---------------------------------------------------------------------------
# rebase and supply changes
# ---------------------------------------------------------------------------


def test_rebase_grows_every_balance_in_proportion() -> None:
    ledger, _ = _ledger_with(("alice", 75 * WAD, 300), ("bob", 25 * WAD, 300))
    ledger.rebase_bps(1_000)
    assert ledger.total_supply == 110 * WAD
    assert ledger.total_shares == 100 * WAD
    assert ledger.balance_of("alice") == 82_500_000_000_000_000_000
    assert ledger.balance_of("bob") == 27_500_000_000_000_000_000
    assert ledger.events.last().event is Event.REBASE


def test_out_of_bounds_rebase_leaves_supply_untouched() -> None:
    ledger, _ = _ledger_with(("alice", 100 * WAD, 300))
    with pytest.raises(RebaseOutOfBounds):
        ledger.rebase(11 * WAD)
    assert ledger.total_supply == 100 * WAD


def test_mint_many_prices_every_credit_against_the_pre_state() -> None:
    ledger, cap = _ledger_with(("alice", 100 * WAD, 300))
    ledger.rebase_bps(1_000)  # 110 supply over 100 shares
    minted = cap.mint_many([("alice", 11 * WAD, 0), ("bob", 11 * WAD, 450)])
    assert minted == {"alice": 11 * WAD, "bob": 11 * WAD}
    assert ledger.shares_of("bob") == 10 * WAD
    assert ledger.shares_of("alice") == 110 * WAD
    assert ledger.locked_rate_of("bob") == 450
    assert ledger.locked_rate_of("alice") == 300


def test_burn_shares_pays_out_at_exchange_rate() -> None:
    ledger, cap = _ledger_with(("alice", 100 * WAD, 300))
    ledger.rebase_bps(-1_000)
    paid = cap.burn_shares("alice", 50 * WAD)
    assert paid == 45 * WAD
    assert ledger.total_supply == 45 * WAD


def test_restore_rejects_inconsistent_totals() -> None:
    ledger = SharesLedger()
    with pytest.raises(InvariantViolation) as exc_info:
        ledger.restore(LedgerTotals(total_shares=10, total_supply=10), {"a": AccountRecord(shares=5)}, {})
    assert "inv_shares_match_totals" in exc_info.value.violations
    assert ledger.total_supply == 0


# ---------------------------------------------------------------------------
# accrual clock
# ---------------------------------------------------------------------------


def test_transfer_settles_interest_earned_before_the_move() -> None:
    ledger = SharesLedger()
    cap = ledger.issue_capability("minter")
    cap.mint("alice", 100 * WAD, 1_000, now=0)
    ledger.transfer("alice", "bob", 40 * WAD, now=SECONDS_PER_HOUR)

    assert ledger.pending_interest_of("alice") == interest_for_period(100 * WAD, 1_000, SECONDS_PER_HOUR)
    assert ledger.pending_interest_of("bob") == 0
    assert ledger.accounts.get("alice").last_accrual == SECONDS_PER_HOUR
    assert ledger.accounts.get("bob").last_accrual == SECONDS_PER_HOUR
    assert ledger.time == SECONDS_PER_HOUR


def test_top_up_settles_the_old_holding_first() -> None:
    ledger = SharesLedger()
    cap = ledger.issue_capability("minter")
    cap.mint("alice", WAD, 1_000, now=0)
    cap.mint("alice", 1_000 * WAD, 1_000, now=SECONDS_PER_HOUR)
    # only the first unit earned over the hour
    assert ledger.pending_interest_of("alice") == interest_for_period(WAD, 1_000, SECONDS_PER_HOUR)
    assert ledger.accounts.get("alice").last_accrual == SECONDS_PER_HOUR


def test_rate_change_settles_at_the_old_rate() -> None:
    ledger = SharesLedger()
    cap = ledger.issue_capability("minter")
    cap.mint("alice", 100 * WAD, 300, now=0)
    cap.set_locked_rate("alice", 900, now=SECONDS_PER_HOUR)
    assert ledger.pending_interest_of("alice") == interest_for_period(100 * WAD, 300, SECONDS_PER_HOUR)


def test_rejected_timestamp_leaves_the_clock_alone() -> None:
    ledger, cap = _ledger_with(("alice", 100 * WAD, 300))
    with pytest.raises(InvalidAmount):
        ledger.transfer("alice", "bob", WAD, now=1.5)
    with pytest.raises(InvalidAmount):
        cap.mint("alice", WAD, 300, now=-1)
    assert ledger.time == 0
    assert ledger.shares_of("bob") == 0
    assert ledger.balance_of("alice") == 100 * WAD


# ---------------------------------------------------------------------------
# invariant checks and account ids
# ---------------------------------------------------------------------------


def test_default_checks_do_not_scan_accounts(monkeypatch: pytest.MonkeyPatch) -> None:
    ledger, cap = _ledger_with(("alice", 100 * WAD, 300), ("bob", 50 * WAD, 300))

    def _no_scan():
        raise AssertionError("per-mutation check walked every account")

    monkeypatch.setattr(ledger.accounts, "items", _no_scan)
    ledger.rebase_bps(500)
    ledger.transfer("alice", "bob", WAD)
    cap.mint("carol", WAD, 300)
    assert ledger.total_shares == ledger.accounts.total_shares()


def test_running_share_sum_catches_drift() -> None:
    ledger, cap = _ledger_with(("alice", 100 * WAD, 300))
    ledger.accounts.put("ghost", AccountRecord(shares=5))
    with pytest.raises(InvariantViolation) as exc_info:
        cap.mint("alice", WAD, 300)
    assert "inv_shares_match_totals" in exc_info.value.violations


def test_full_scan_is_opt_in() -> None:
    ledger = SharesLedger(LedgerParams(full_scan=True))
    cap = ledger.issue_capability("minter")
    cap.mint("alice", 100 * WAD, 300)
    ledger.accounts.put("ghost", AccountRecord(shares=5))
    with pytest.raises(InvariantViolation) as exc_info:
        ledger.transfer("alice", "bob", WAD)
    assert "inv_shares_match_totals" in exc_info.value.violations


def test_account_table_tracks_share_sum_across_puts() -> None:
    table = AccountTable()
    table.put("a", AccountRecord(shares=10))
    table.add_shares("b", 7)
    table.put("a", AccountRecord(shares=3))
    table.add_shares("b", -2)
    assert table.total_shares() == 8
    assert table.total_shares() == sum(r.shares for _, r in table.items())


@pytest.mark.parametrize("account", ["\ud800", "bob\udfff", ""])
def test_unencodable_account_ids_are_rejected(account: str) -> None:
    ledger, cap = _ledger_with(("alice", 100 * WAD, 300))
    with pytest.raises(ValidationError):
        ledger.transfer("alice", account, WAD)
    with pytest.raises(ValidationError):
        cap.mint(account, WAD, 300)
    assert ledger.balance_of("alice") == 100 * WAD
    assert len(ledger.accounts) == 1


# ---------------------------------------------------------------------------
# conservation under random operation sequences
# ---------------------------------------------------------------------------

_ACCOUNTS = ["a", "b", "c", "d"]


@settings(max_examples=100, deadline=None)
@given(
    ops=st.lists(
        st.tuples(
            st.sampled_from(["mint", "burn", "transfer", "rebase"]),
            st.sampled_from(_ACCOUNTS),
            st.sampled_from(_ACCOUNTS),
            st.integers(min_value=1, max_value=10**22),
            st.integers(min_value=-1_000, max_value=1_000),
        ),
        max_size=30,
    )
)
def test_random_operations_conserve_shares_and_supply(ops: list) -> None:
    ledger = SharesLedger()
    cap = ledger.issue_capability("minter")
    for op, x, y, amount, bps in ops:
        try:
            if op == "mint":
                cap.mint(x, amount, 100)
            elif op == "burn":
                cap.burn(x, min(amount, ledger.balance_of(x)) or 1)
            elif op == "transfer":
                ledger.transfer(x, y, min(amount, ledger.balance_of(x)) or 1)
            else:
                ledger.rebase_bps(bps)
        except (InsufficientBalance, RebaseOutOfBounds) as exc:
            assert exc.category == "policy"
        except Exception as exc:  # EmptySupply, AmountTooSmall
            assert getattr(exc, "category", None) in ("policy", "validation"), exc
        balances = ledger.balances()
        assert sum(r.shares for _, r in ledger.holders()) == ledger.total_shares
        holders = len(balances)
        assert 0 <= ledger.total_supply - sum(balances.values()) <= max(0, holders - 1) or holders == 0
        assert (ledger.total_shares == 0) == (ledger.total_supply == 0)
