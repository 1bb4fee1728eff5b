from __future__ import annotations

from basero.core.accrual import AccountPosition, plan_accrual, window_cap
from basero.core.fees import PerformanceFeeParams
from basero.core.math import SECONDS_PER_YEAR, WAD

NO_FEE = PerformanceFeeParams(fee_share_bps=0)


def test_window_cap_prorates_the_daily_cap() -> None:
    assert window_cap(24 * WAD, 3_600) == WAD
    assert window_cap(24 * WAD, 86_400) == 24 * WAD
    assert window_cap(24 * WAD, 0) == 0


def test_uncapped_plan_credits_each_account_at_its_own_rate() -> None:
    positions = {
        "a": AccountPosition(balance=100 * WAD, rate_bps=200, elapsed=SECONDS_PER_YEAR),
        "b": AccountPosition(balance=100 * WAD, rate_bps=400, elapsed=SECONDS_PER_YEAR // 2),
    }
    plan = plan_accrual(positions, accrual_cap=10**30, fee_params=NO_FEE)
    assert plan.credits["a"].gross == 2 * WAD
    assert plan.credits["b"].gross == 2 * WAD
    assert plan.gross == plan.capped == 4 * WAD
    assert not plan.cap_hit


def test_cap_scales_interest_pro_rata_and_drops_the_rest() -> None:
    positions = {
        "a": AccountPosition(balance=300, rate_bps=10_000, elapsed=SECONDS_PER_YEAR),
        "b": AccountPosition(balance=100, rate_bps=10_000, elapsed=SECONDS_PER_YEAR),
    }
    plan = plan_accrual(positions, accrual_cap=200, fee_params=NO_FEE)
    assert plan.gross == 400
    assert plan.credits["a"].gross == 150
    assert plan.credits["b"].gross == 50
    assert plan.capped == 200
    assert plan.dropped == 200
    assert plan.cap_hit


def test_fee_is_split_per_account() -> None:
    positions = {
        "hot": AccountPosition(balance=100 * WAD, rate_bps=800, elapsed=SECONDS_PER_YEAR),
        "cold": AccountPosition(balance=100 * WAD, rate_bps=200, elapsed=SECONDS_PER_YEAR),
    }
    plan = plan_accrual(positions, accrual_cap=10**30, fee_params=PerformanceFeeParams())
    assert plan.credits["hot"].fee == 6 * 10**17
    assert plan.credits["cold"].fee == 0
    assert plan.fee_total == 6 * 10**17
    assert plan.net_total == plan.capped - plan.fee_total


def test_zero_interest_accounts_get_no_credit() -> None:
    positions = {"dust": AccountPosition(balance=1, rate_bps=1, elapsed=1)}
    plan = plan_accrual(positions, accrual_cap=10, fee_params=NO_FEE)
    assert plan.credits == {}
    assert plan.gross == 0


def test_settled_interest_is_credited_with_the_window() -> None:
    positions = {
        # left the vault mid-window with interest still owed
        "gone": AccountPosition(balance=0, rate_bps=800, elapsed=0, pending=50),
        "moved": AccountPosition(balance=100 * WAD, rate_bps=800, elapsed=0, pending=8 * WAD),
    }
    plan = plan_accrual(positions, accrual_cap=10**30, fee_params=NO_FEE)
    assert plan.credits["gone"].net == 50
    assert plan.gross == 8 * WAD + 50


def test_fee_annualizes_settled_interest_over_the_window() -> None:
    positions = {"moved": AccountPosition(balance=100 * WAD, rate_bps=800, elapsed=0, pending=8 * WAD)}
    instant = plan_accrual(positions, accrual_cap=10**30, fee_params=PerformanceFeeParams())
    yearly = plan_accrual(positions, accrual_cap=10**30, fee_params=PerformanceFeeParams(), window=SECONDS_PER_YEAR)
    assert instant.fee_total == 0
    assert yearly.fee_total == 6 * 10**17
