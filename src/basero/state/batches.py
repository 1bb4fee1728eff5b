"""
Batch records for grouped multi-recipient transfers.

A batch is created Pending and flips to Executed exactly once. Ids are
assigned monotonically by the table and never reused.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterator, Optional, Tuple

from ..core.errors import AlreadyExecuted, BatchNotFound, EmptyBatch, InvalidAmount, LengthMismatch, ValidationError
from .canonical import has_surrogates


@dataclass(frozen=True)
class BatchRecord:
    batch_id: int
    creator: str
    destination_chain_id: int
    recipients: Tuple[str, ...]
    amounts: Tuple[int, ...]
    total_amount: int
    created_at: int = 0
    executed: bool = False
    message_id: Optional[str] = None

    def __post_init__(self) -> None:
        if len(self.recipients) != len(self.amounts):
            raise LengthMismatch("recipients and amounts differ in length")
        if not self.recipients:
            raise EmptyBatch("batch has no recipients")
        if sum(self.amounts) != self.total_amount:
            raise ValueError("sum(amounts) must equal total_amount")

    @property
    def status(self) -> str:
        return "EXECUTED" if self.executed else "PENDING"

    def legs(self) -> Tuple[Tuple[str, int], ...]:
        return tuple(zip(self.recipients, self.amounts))


def validate_batch_legs(recipients: Tuple[str, ...], amounts: Tuple[int, ...]) -> int:
    """Check batch shape before any state change; return the total amount."""
    if len(recipients) != len(amounts):
        raise LengthMismatch(
            f"{len(recipients)} recipients but {len(amounts)} amounts",
            recipients=len(recipients),
            amounts=len(amounts),
        )
    if not recipients:
        raise EmptyBatch("batch has no recipients")
    for recipient in recipients:
        if not isinstance(recipient, str) or not recipient:
            raise ValidationError("batch recipients must be non-empty strings")
        if has_surrogates(recipient):
            raise ValidationError("batch recipients must not contain surrogate code points")
    for amount in amounts:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidAmount(f"batch amounts must be positive ints: {amount!r}")
    return sum(amounts)


class BatchTable:
    def __init__(self, next_id: int = 1) -> None:
        self._batches: Dict[int, BatchRecord] = {}
        self._next_id = next_id

    @property
    def next_id(self) -> int:
        return self._next_id

    def create(
        self,
        *,
        creator: str,
        destination_chain_id: int,
        recipients: Tuple[str, ...],
        amounts: Tuple[int, ...],
        created_at: int,
    ) -> BatchRecord:
        total = validate_batch_legs(recipients, amounts)
        record = BatchRecord(
            batch_id=self._next_id,
            creator=creator,
            destination_chain_id=destination_chain_id,
            recipients=recipients,
            amounts=amounts,
            total_amount=total,
            created_at=created_at,
        )
        self._batches[record.batch_id] = record
        self._next_id += 1
        return record

    def get(self, batch_id: int) -> BatchRecord:
        record = self._batches.get(batch_id)
        if record is None:
            raise BatchNotFound(f"no batch with id {batch_id}", batch_id=batch_id)
        return record

    def require_pending(self, batch_id: int) -> BatchRecord:
        record = self.get(batch_id)
        if record.executed:
            raise AlreadyExecuted(f"batch {batch_id} already executed", batch_id=batch_id)
        return record

    def mark_executed(self, batch_id: int, message_id: str) -> BatchRecord:
        record = replace(self.require_pending(batch_id), executed=True, message_id=message_id)
        self._batches[batch_id] = record
        return record

    def restore(self, record: BatchRecord) -> None:
        self._batches[record.batch_id] = record
        self._next_id = max(self._next_id, record.batch_id + 1)

    def items(self) -> Iterator[Tuple[int, BatchRecord]]:
        for batch_id in sorted(self._batches):
            yield batch_id, self._batches[batch_id]

    def __len__(self) -> int:
        return len(self._batches)
