"""
Deposit locks: at most one per account.

Lifecycle: Unlocked -> Locked (create) -> Unlocked (release, only once
``now >= unlock_timestamp``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, Optional, Tuple

from .accounts import Account


@dataclass(frozen=True)
class LockRecord:
    locked_amount: int
    unlock_timestamp: int
    bonus_bps: int
    created_at: int = 0

    def __post_init__(self) -> None:
        if self.locked_amount <= 0:
            raise ValueError(f"locked_amount must be positive: {self.locked_amount}")
        if self.unlock_timestamp < self.created_at:
            raise ValueError("unlock_timestamp must not precede created_at")
        if self.bonus_bps < 0:
            raise ValueError(f"bonus_bps must be non-negative: {self.bonus_bps}")

    def is_active(self, now: int) -> bool:
        return now < self.unlock_timestamp


@dataclass(frozen=True)
class LockStatus:
    """Read-only view for monitoring."""

    locked: bool
    active: bool
    locked_amount: int = 0
    unlock_timestamp: int = 0
    bonus_bps: int = 0
    seconds_remaining: int = 0


class LockTable:
    def __init__(self) -> None:
        self._locks: Dict[Account, LockRecord] = {}

    def get(self, account: Account) -> Optional[LockRecord]:
        return self._locks.get(account)

    def put(self, account: Account, lock: LockRecord) -> None:
        self._locks[account] = lock

    def remove(self, account: Account) -> LockRecord:
        return self._locks.pop(account)

    def status(self, account: Account, now: int) -> LockStatus:
        lock = self._locks.get(account)
        if lock is None:
            return LockStatus(locked=False, active=False)
        return LockStatus(
            locked=True,
            active=lock.is_active(now),
            locked_amount=lock.locked_amount,
            unlock_timestamp=lock.unlock_timestamp,
            bonus_bps=lock.bonus_bps,
            seconds_remaining=max(0, lock.unlock_timestamp - now),
        )

    def items(self) -> Iterator[Tuple[Account, LockRecord]]:
        for account in sorted(self._locks):
            yield account, self._locks[account]

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, account: object) -> bool:
        return account in self._locks
