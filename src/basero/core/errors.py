"""Exception types for the Basero ledger, vault and gateway.

Every rejection raised by a public operation is exactly one of these. The four
category bases mirror how callers should react:

- ``ValidationError``: malformed or out-of-policy input; rejected before any
  mutation.
- ``PolicyViolation``: legitimate input against configured limits; state is
  unchanged and the call may be retried later.
- ``ConsistencyError``: would-be double execution; rejected as a no-op.
- ``FatalError``: a broken invariant. Engines trip their pause flag when one
  escapes an operation.
"""

from __future__ import annotations

from typing import Any, Mapping


class BaseroError(Exception):
    """Root of the error tree. ``code`` is stable and machine-friendly."""

    category = "error"
    code = "BASERO/ERROR"

    def __init__(self, message: str = "", **data: Any) -> None:
        self.data: Mapping[str, Any] = dict(data)
        super().__init__(message or self.code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "code": self.code,
            "message": str(self),
            "data": dict(self.data),
        }


class ValidationError(BaseroError):
    category = "validation"
    code = "BASERO/VALIDATION"


class PolicyViolation(BaseroError):
    category = "policy"
    code = "BASERO/POLICY"


class ConsistencyError(BaseroError):
    category = "consistency"
    code = "BASERO/CONSISTENCY"


class FatalError(BaseroError):
    category = "fatal"
    code = "BASERO/FATAL"


# -- validation --------------------------------------------------------------

class InvalidAmount(ValidationError):
    code = "BASERO/INVALID_AMOUNT"


class AmountTooSmall(ValidationError):
    """The amount would round to zero shares."""

    code = "BASERO/AMOUNT_TOO_SMALL"


class InvalidCurve(ValidationError):
    code = "BASERO/INVALID_CURVE"


class InvalidTierTable(ValidationError):
    code = "BASERO/INVALID_TIER_TABLE"


class InvalidConfig(ValidationError):
    code = "BASERO/INVALID_CONFIG"


class InvalidAccrualPeriod(ValidationError):
    code = "BASERO/INVALID_ACCRUAL_PERIOD"


class InvalidLockDuration(ValidationError):
    code = "BASERO/INVALID_LOCK_DURATION"


class LengthMismatch(ValidationError):
    code = "BASERO/LENGTH_MISMATCH"


class EmptyBatch(ValidationError):
    code = "BASERO/EMPTY_BATCH"


class InvalidIntent(ValidationError):
    code = "BASERO/INVALID_INTENT"


class UnknownRoute(ValidationError):
    code = "BASERO/UNKNOWN_ROUTE"


class InvalidSnapshot(ValidationError):
    code = "BASERO/INVALID_SNAPSHOT"


# -- policy ------------------------------------------------------------------

class InsufficientBalance(PolicyViolation):
    code = "BASERO/INSUFFICIENT_BALANCE"


class InsufficientAllowance(PolicyViolation):
    code = "BASERO/INSUFFICIENT_ALLOWANCE"


class EmptySupply(PolicyViolation):
    code = "BASERO/EMPTY_SUPPLY"


class RebaseOutOfBounds(PolicyViolation):
    code = "BASERO/REBASE_OUT_OF_BOUNDS"


class BelowMinimum(PolicyViolation):
    code = "BASERO/BELOW_MINIMUM"


class CapExceeded(PolicyViolation):
    code = "BASERO/CAP_EXCEEDED"


class SlippageExceeded(PolicyViolation):
    code = "BASERO/SLIPPAGE_EXCEEDED"


class InsufficientLiquidity(PolicyViolation):
    code = "BASERO/INSUFFICIENT_LIQUIDITY"


class AccrualNotDue(PolicyViolation):
    code = "BASERO/ACCRUAL_NOT_DUE"


class LockExists(PolicyViolation):
    code = "BASERO/LOCK_EXISTS"


class NoActiveLock(PolicyViolation):
    code = "BASERO/NO_ACTIVE_LOCK"


class LockNotExpired(PolicyViolation):
    code = "BASERO/LOCK_NOT_EXPIRED"


class LockedBalance(PolicyViolation):
    """The operation would spend value held under an active lock."""

    code = "BASERO/LOCKED_BALANCE"


class ChainNotEnabled(PolicyViolation):
    code = "BASERO/CHAIN_NOT_ENABLED"


class AmountOutOfBounds(PolicyViolation):
    code = "BASERO/AMOUNT_OUT_OF_BOUNDS"


class RateLimitExceeded(PolicyViolation):
    code = "BASERO/RATE_LIMIT_EXCEEDED"


class SourceNotAllowlisted(PolicyViolation):
    code = "BASERO/SOURCE_NOT_ALLOWLISTED"


class Paused(PolicyViolation):
    code = "BASERO/PAUSED"


class Unauthorized(PolicyViolation):
    """Raised by the governance collaborator, never by the core engines."""

    code = "BASERO/UNAUTHORIZED"


# -- consistency -------------------------------------------------------------

class DuplicateMessage(ConsistencyError):
    code = "BASERO/DUPLICATE_MESSAGE"


class AlreadyExecuted(ConsistencyError):
    code = "BASERO/ALREADY_EXECUTED"


class BatchNotFound(ConsistencyError):
    code = "BASERO/BATCH_NOT_FOUND"


class DuplicateInitialization(ConsistencyError):
    code = "BASERO/DUPLICATE_INITIALIZATION"


# -- fatal -------------------------------------------------------------------

class InvariantViolation(FatalError):
    """Raised when a post-state violates one or more invariants."""

    code = "BASERO/INVARIANT_VIOLATION"

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}", violations=list(violations))
