"""
Per-account share records with deterministic ordering.

Implements AccountTable[Account] -> (shares, locked_rate_bps, last_accrual, pending_interest)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterator, Tuple


Account = str  # opaque holder identifier (address, pubkey, ...)


@dataclass(frozen=True)
class AccountRecord:
    shares: int = 0
    locked_rate_bps: int = 0
    last_accrual: int = 0
    # interest earned on earlier holdings, minted at the next accrual
    pending_interest: int = 0

    def __post_init__(self) -> None:
        if self.shares < 0:
            raise ValueError(f"shares cannot be negative: {self.shares}")
        if self.locked_rate_bps < 0:
            raise ValueError(f"locked_rate_bps cannot be negative: {self.locked_rate_bps}")
        if self.last_accrual < 0:
            raise ValueError(f"last_accrual cannot be negative: {self.last_accrual}")
        if self.pending_interest < 0:
            raise ValueError(f"pending_interest cannot be negative: {self.pending_interest}")


class AccountTable:
    """
    Mutable mapping account -> AccountRecord.

    Records are created implicitly on first credit and kept after a holder
    exits (their rate and accrual clock stay observable). Do not rely on dict
    iteration order; `items()` yields accounts sorted.
    """

    def __init__(self) -> None:
        self._records: Dict[Account, AccountRecord] = {}
        self._total_shares = 0

    def get(self, account: Account) -> AccountRecord:
        """Get the record for ``account``. Returns an empty record if unknown."""
        return self._records.get(account, AccountRecord())

    def exists(self, account: Account) -> bool:
        return account in self._records

    def shares_of(self, account: Account) -> int:
        return self.get(account).shares

    def put(self, account: Account, record: AccountRecord) -> None:
        if not isinstance(account, str) or not account:
            raise ValueError("account must be a non-empty str")
        self._total_shares += record.shares - self.get(account).shares
        self._records[account] = record

    def add_shares(self, account: Account, delta: int) -> AccountRecord:
        """
        Add ``delta`` shares (may be negative).

        Raises:
            ValueError: If the resulting share count would be negative
        """
        current = self.get(account)
        new_shares = current.shares + delta
        if new_shares < 0:
            raise ValueError(f"Insufficient shares: {current.shares} + {delta} = {new_shares} < 0")
        record = replace(current, shares=new_shares)
        self.put(account, record)
        return record

    def set_rate(self, account: Account, rate_bps: int) -> None:
        self.put(account, replace(self.get(account), locked_rate_bps=rate_bps))

    def set_last_accrual(self, account: Account, timestamp: int) -> None:
        self.put(account, replace(self.get(account), last_accrual=timestamp))

    def set_accrual(self, account: Account, timestamp: int, pending_interest: int) -> None:
        self.put(account, replace(self.get(account), last_accrual=timestamp, pending_interest=pending_interest))

    def accruing(self) -> Iterator[Tuple[Account, AccountRecord]]:
        """Holders plus exited accounts that still have pending interest, sorted."""
        for account in sorted(self._records):
            record = self._records[account]
            if record.shares > 0 or record.pending_interest > 0:
                yield account, record

    def holders(self) -> Iterator[Tuple[Account, AccountRecord]]:
        """Accounts with a non-zero share balance, sorted."""
        for account in sorted(self._records):
            record = self._records[account]
            if record.shares > 0:
                yield account, record

    def items(self) -> Iterator[Tuple[Account, AccountRecord]]:
        for account in sorted(self._records):
            yield account, self._records[account]

    def total_shares(self) -> int:
        """Running sum of every record's shares."""
        return self._total_shares

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return f"AccountTable({len(self._records)} entries)"
