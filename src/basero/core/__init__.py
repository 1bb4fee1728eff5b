"""
Core ledger, rate and accrual algorithms
"""

from .errors import BaseroError, ConsistencyError, FatalError, PolicyViolation, ValidationError
from .events import EmittedEvent, Event, EventLog
from .ledger import LedgerParams, MintBurnCapability, SharesLedger
from .rate_model import LockSchedule, RateCurve, TierTable, composite_rate_bps
from .fees import PerformanceFeeParams, performance_fee, split_interest
from .rate_limit import RateLimitBucket, consume, full_bucket
from .accrual import AccrualPlan, plan_accrual
from .vault import VaultParams, VaultState

__all__ = [
    "BaseroError",
    "ConsistencyError",
    "FatalError",
    "PolicyViolation",
    "ValidationError",
    "EmittedEvent",
    "Event",
    "EventLog",
    "LedgerParams",
    "MintBurnCapability",
    "SharesLedger",
    "LockSchedule",
    "RateCurve",
    "TierTable",
    "composite_rate_bps",
    "PerformanceFeeParams",
    "performance_fee",
    "split_interest",
    "RateLimitBucket",
    "consume",
    "full_bucket",
    "AccrualPlan",
    "plan_accrual",
    "VaultParams",
    "VaultState",
]
