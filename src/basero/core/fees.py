"""
Performance-fee kernel (deterministic, integer-only).

The protocol takes a share of the return earned *above* a target annual rate:

    annualized = (current - initial) / initial * YEAR / elapsed
    excess     = max(0, annualized - target)
    fee        = excess * fee_share, scaled back to ``elapsed`` and ``initial``

The fee is computed by cross-multiplication so no intermediate rate is
floored; it is never negative and never exceeds the realized gain.
"""

from __future__ import annotations

from dataclasses import dataclass

from .math import BPS, SECONDS_PER_YEAR


@dataclass(frozen=True)
class PerformanceFeeParams:
    target_rate_bps: int = 500
    fee_share_bps: int = 2_000
    recipient: str = "protocol-treasury"

    def __post_init__(self) -> None:
        for name, v in (("target_rate_bps", self.target_rate_bps), ("fee_share_bps", self.fee_share_bps)):
            if not isinstance(v, int) or isinstance(v, bool):
                raise TypeError(f"{name} must be an int")
            if v < 0:
                raise ValueError(f"{name} must be non-negative: {v}")
        if self.fee_share_bps > BPS:
            raise ValueError(f"fee_share_bps must be <= {BPS}: {self.fee_share_bps}")
        if not isinstance(self.recipient, str) or not self.recipient:
            raise ValueError("recipient must be a non-empty str")


@dataclass(frozen=True)
class FeeSplitResult:
    gross: int
    fee: int
    net: int

    def __post_init__(self) -> None:
        if min(self.gross, self.fee, self.net) < 0:
            raise ValueError("fee split amounts must be non-negative")
        if self.fee + self.net != self.gross:
            raise ValueError("fee + net must equal gross")


def annualized_return_bps(current: int, initial: int, elapsed_seconds: int) -> int:
    """Annualized simple return in bps (floored; 0 for non-positive inputs)."""
    if initial <= 0 or elapsed_seconds <= 0 or current <= initial:
        return 0
    return ((current - initial) * BPS * SECONDS_PER_YEAR) // (initial * elapsed_seconds)


def performance_fee(current: int, initial: int, elapsed_seconds: int, params: PerformanceFeeParams) -> int:
    if initial <= 0 or elapsed_seconds <= 0 or current <= initial:
        return 0
    gain = current - initial
    # Everything below is scaled by BPS * YEAR.
    excess_scaled = gain * BPS * SECONDS_PER_YEAR - initial * params.target_rate_bps * elapsed_seconds
    if excess_scaled <= 0:
        return 0
    fee = (excess_scaled * params.fee_share_bps) // (BPS * BPS * SECONDS_PER_YEAR)
    return min(fee, gain)


def split_interest(
    gross: int,
    principal: int,
    elapsed_seconds: int,
    params: PerformanceFeeParams,
) -> FeeSplitResult:
    """Split ``gross`` interest on ``principal`` into (fee, net)."""
    if gross < 0:
        raise ValueError(f"gross must be non-negative: {gross}")
    fee = performance_fee(principal + gross, principal, elapsed_seconds, params)
    return FeeSplitResult(gross=gross, fee=fee, net=gross - fee)
