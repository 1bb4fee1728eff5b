"""
Relay collaborator.

The gateways only require something that calls ``on_intent_delivered`` on
the destination. `InMemoryRelay` is the reference transport used by tests and
local simulations: FIFO per sender, with switches to hold, drop or duplicate
traffic so unreliable delivery can be modelled.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Protocol, Set, Tuple

from ..core.errors import BaseroError
from ..state.intents import TransferIntent
from .gateway_engine import GatewayEngine

logger = logging.getLogger(__name__)


class Relay(Protocol):
    def deliver(self, intent: TransferIntent, now: Optional[int] = None) -> int: ...


@dataclass
class PumpReport:
    delivered: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    failed: List[Tuple[str, BaseroError]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class InMemoryRelay:
    def __init__(self) -> None:
        self.gateways: Dict[int, GatewayEngine] = {}
        self.pending: Deque[TransferIntent] = deque()
        self.held_chains: Set[int] = set()
        self._drop_next = 0
        self._duplicate_next = 0

    def register(self, gateway: GatewayEngine) -> None:
        if gateway.chain_id in self.gateways:
            raise ValueError(f"gateway for chain {gateway.chain_id} already registered")
        self.gateways[gateway.chain_id] = gateway

    # -- fault injection -----------------------------------------------------

    def hold(self, destination_chain_id: int) -> None:
        """Queue traffic for ``destination_chain_id`` without delivering it."""
        self.held_chains.add(destination_chain_id)

    def release(self, destination_chain_id: int) -> None:
        self.held_chains.discard(destination_chain_id)

    def drop_next(self, count: int = 1) -> None:
        self._drop_next += count

    def duplicate_next(self, count: int = 1) -> None:
        self._duplicate_next += count

    # -- transport -----------------------------------------------------------

    def collect(self) -> int:
        """Drain every registered outbox into the pending queue."""
        collected = 0
        for chain_id in sorted(self.gateways):
            for intent in self.gateways[chain_id].drain_outbox():
                self.pending.append(intent)
                collected += 1
        return collected

    def deliver(self, intent: TransferIntent, now: Optional[int] = None) -> int:
        gateway = self.gateways.get(intent.destination_chain_id)
        if gateway is None:
            raise KeyError(f"no gateway registered for chain {intent.destination_chain_id}")
        return gateway.on_intent_delivered(intent, now)

    def pump(self, max_messages: Optional[int] = None, *, now: Optional[int] = None) -> PumpReport:
        """Collect outboxes and deliver pending intents in order at ``now``.

        Delivery errors are logged and reported, never raised.
        """
        self.collect()
        report = PumpReport()
        kept: Deque[TransferIntent] = deque()
        handled = 0
        while self.pending:
            intent = self.pending.popleft()
            if intent.destination_chain_id in self.held_chains or (
                max_messages is not None and handled >= max_messages
            ):
                kept.append(intent)
                continue
            handled += 1
            if self._drop_next > 0:
                self._drop_next -= 1
                report.dropped.append(intent.message_id)
                logger.warning("relay dropped %s", intent.message_id)
                continue
            copies = 1
            if self._duplicate_next > 0:
                self._duplicate_next -= 1
                copies = 2
            for _ in range(copies):
                try:
                    self.deliver(intent, now)
                except BaseroError as exc:
                    report.failed.append((intent.message_id, exc))
                    logger.warning("delivery of %s failed: %s %s", intent.message_id, exc.code, exc)
                else:
                    report.delivered.append(intent.message_id)
        self.pending = kept
        return report

    def replay(self, intent: TransferIntent) -> None:
        """Queue an already-sent intent again (redelivery by a faulty transport)."""
        self.pending.append(intent)
