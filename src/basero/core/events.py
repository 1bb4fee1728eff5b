"""Event types emitted by committed operations.

Events are appended to an engine's log as the last step of an operation, so a
rejected call never leaves one behind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Iterator, List, Mapping


@unique
class Event(Enum):
    # ledger
    TRANSFER = "Transfer"
    APPROVAL = "Approval"
    REBASE = "Rebase"
    RATE_CHANGED = "RateChanged"
    # vault
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    INTEREST_ACCRUED = "InterestAccrued"
    LOCK_CREATED = "LockCreated"
    LOCK_EXTENDED = "LockExtended"
    LOCK_RELEASED = "LockReleased"
    RESERVE_FUNDED = "ReserveFunded"
    CONFIG_CHANGED = "ConfigChanged"
    # gateway
    MESSAGE_SENT = "MessageSent"
    MESSAGE_RECEIVED = "MessageReceived"
    BATCH_CREATED = "BatchCreated"
    BATCH_EXECUTED = "BatchExecuted"
    ROUTE_SET = "RouteSet"
    ROUTE_CALL_DISPATCHED = "RouteCallDispatched"
    # shared
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"


@dataclass(frozen=True)
class EmittedEvent:
    event: Event
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]


class EventLog:
    """Append-only event list with simple filtering."""

    def __init__(self) -> None:
        self._events: List[EmittedEvent] = []

    def emit(self, event: Event, **fields: Any) -> EmittedEvent:
        emitted = EmittedEvent(event=event, fields=fields)
        self._events.append(emitted)
        return emitted

    def of(self, event: Event) -> List[EmittedEvent]:
        return [e for e in self._events if e.event is event]

    def last(self) -> EmittedEvent:
        return self._events[-1]

    def __iter__(self) -> Iterator[EmittedEvent]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
