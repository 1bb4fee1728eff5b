"""
Transfer gateway execution shell.

One gateway sits beside each ledger instance. Gateways never call each other:
the send side burns and appends an intent to its outbox, and a relay
collaborator later hands that intent to the destination's
`on_intent_delivered`.

Send path (single, batch, routed): lane checks -> bucket consumption ->
spendable check -> burn -> outbox. Every check runs before the burn, and the
bucket, nonce and outbox are only written after the burn succeeds.

Receive path: destination check -> message-id commitment -> replay check ->
source allowlist -> mint. A rejected delivery changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..core.errors import (
    AmountOutOfBounds,
    AmountTooSmall,
    ChainNotEnabled,
    DuplicateMessage,
    InsufficientBalance,
    InvalidIntent,
    SourceNotAllowlisted,
    UnknownRoute,
    ValidationError,
)
from ..core.events import Event, EventLog
from ..core.ledger import MintBurnCapability, SharesLedger, require_account
from ..core.math import require_int, require_positive
from ..core.rate_limit import RateLimitBucket, consume, full_bucket, reconfigure, refill
from ..state.batches import BatchRecord, BatchTable
from ..state.intents import IntentKind, RouteCall, TransferIntent, build_intent, verify_message_id
from ..state.messages import ProcessedMessages
from .circuit import PauseSwitch, operation
from .config import GatewayParams, LaneConfig

logger = logging.getLogger(__name__)

# (account, now) -> amount the account may send right now
SpendableFn = Callable[[str, int], int]


@dataclass(frozen=True)
class _PreparedSend:
    intent: TransferIntent
    bucket: RateLimitBucket


class GatewayEngine:
    def __init__(
        self,
        capability: MintBurnCapability,
        params: GatewayParams,
        *,
        spendable: Optional[SpendableFn] = None,
        name: Optional[str] = None,
    ) -> None:
        self.params = params
        self.name = name or f"gateway-{params.chain_id}"
        self.buckets: Dict[int, RateLimitBucket] = {
            lane.chain_id: full_bucket(lane.capacity, lane.refill_per_second) for lane in params.lanes
        }
        self.processed = ProcessedMessages()
        self.batches = BatchTable()
        self.routes: Dict[str, RouteCall] = {}
        self.outbox: List[TransferIntent] = []
        self.nonce = 0
        self.sent_totals: Dict[int, int] = {}
        self.received_totals: Dict[int, int] = {}
        self.events = EventLog()
        self.switch = PauseSwitch(self.name)
        self._cap = capability
        self._spendable = spendable

    @property
    def chain_id(self) -> int:
        return self.params.chain_id

    @property
    def ledger(self) -> SharesLedger:
        return self._cap.ledger

    def spendable(self, account: str, now: int) -> int:
        if self._spendable is None:
            return self.ledger.balance_of(account)
        return self._spendable(account, now)

    # -- send side -----------------------------------------------------------

    def _lane(self, destination_chain_id: int) -> LaneConfig:
        lane = self.params.lane(destination_chain_id)
        if lane is None or not lane.enabled:
            raise ChainNotEnabled(
                f"no enabled lane from {self.chain_id} to {destination_chain_id}",
                destination_chain_id=destination_chain_id,
            )
        return lane

    def _prepare_send(
        self,
        *,
        sender: str,
        destination_chain_id: int,
        recipient: str,
        amount: int,
        now: int,
        kind: IntentKind = IntentKind.TRANSFER,
        legs: Tuple[Tuple[str, int], ...] = (),
        call: Optional[RouteCall] = None,
        batch_id: Optional[int] = None,
    ) -> _PreparedSend:
        require_account(sender, name="sender")
        now = require_int(now, name="now")
        lane = self._lane(destination_chain_id)
        if not (lane.min_amount <= amount <= lane.max_amount):
            raise AmountOutOfBounds(
                f"amount {amount} outside [{lane.min_amount}, {lane.max_amount}]",
                amount=amount,
                min_amount=lane.min_amount,
                max_amount=lane.max_amount,
            )
        current = self.buckets.get(destination_chain_id) or full_bucket(lane.capacity, lane.refill_per_second, now)
        bucket = consume(current, amount, now)
        spendable = self.spendable(sender, now)
        if amount > spendable:
            raise InsufficientBalance(f"{sender} can send {spendable}, requested {amount}", amount=amount)

        intent = build_intent(
            source_chain_id=self.chain_id,
            destination_chain_id=destination_chain_id,
            sender=sender,
            recipient=recipient,
            amount=amount,
            carried_rate_bps=self.ledger.locked_rate_of(sender),
            nonce=self.nonce + 1,
            kind=kind,
            legs=legs,
            call=call,
            batch_id=batch_id,
        )
        return _PreparedSend(intent=intent, bucket=bucket)

    def _commit_send(self, prepared: _PreparedSend) -> TransferIntent:
        intent = prepared.intent
        self.buckets[intent.destination_chain_id] = prepared.bucket
        self.nonce = intent.nonce
        self.sent_totals[intent.destination_chain_id] = (
            self.sent_totals.get(intent.destination_chain_id, 0) + intent.amount
        )
        self.outbox.append(intent)
        self.events.emit(
            Event.MESSAGE_SENT,
            message_id=intent.message_id,
            kind=intent.kind.value,
            destination_chain_id=intent.destination_chain_id,
            sender=intent.sender,
            amount=intent.amount,
            carried_rate_bps=intent.carried_rate_bps,
        )
        logger.info(
            "sent %s %s amount=%d to chain %d",
            intent.kind.value,
            intent.message_id,
            intent.amount,
            intent.destination_chain_id,
        )
        return intent

    @operation
    def transfer_out(self, sender: str, destination_chain_id: int, recipient: str, amount: int, now: int) -> TransferIntent:
        """Burn ``amount`` from ``sender`` and queue an intent for ``recipient`` on the destination."""
        amount = require_positive(amount, name="amount")
        require_account(recipient, name="recipient")
        prepared = self._prepare_send(
            sender=sender, destination_chain_id=destination_chain_id, recipient=recipient, amount=amount, now=now
        )
        self._cap.burn(sender, amount, now=now)
        return self._commit_send(prepared)

    @operation
    def create_batch(
        self,
        creator: str,
        destination_chain_id: int,
        recipients: Sequence[str],
        amounts: Sequence[int],
        now: int,
    ) -> BatchRecord:
        require_account(creator, name="creator")
        now = require_int(now, name="now")
        record = self.batches.create(
            creator=creator,
            destination_chain_id=destination_chain_id,
            recipients=tuple(recipients),
            amounts=tuple(amounts),
            created_at=now,
        )
        self.events.emit(
            Event.BATCH_CREATED,
            batch_id=record.batch_id,
            creator=creator,
            destination_chain_id=destination_chain_id,
            total_amount=record.total_amount,
            legs=len(record.recipients),
        )
        return record

    @operation
    def execute_batch(self, batch_id: int, now: int) -> TransferIntent:
        """One bucket consumption and one intent for the whole batch."""
        record = self.batches.require_pending(batch_id)
        prepared = self._prepare_send(
            sender=record.creator,
            destination_chain_id=record.destination_chain_id,
            recipient="",
            amount=record.total_amount,
            now=now,
            kind=IntentKind.BATCH,
            legs=record.legs(),
            batch_id=record.batch_id,
        )
        self._cap.burn(record.creator, record.total_amount, now=now)
        # executed before the intent leaves the gateway
        self.batches.mark_executed(batch_id, prepared.intent.message_id)
        intent = self._commit_send(prepared)
        self.events.emit(Event.BATCH_EXECUTED, batch_id=batch_id, message_id=intent.message_id)
        return intent

    def set_route(
        self,
        route_id: str,
        target_chain_id: int,
        target_ref: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> RouteCall:
        """Register (or replace) a route. Owner-only; authorization lives in governance."""
        if not isinstance(route_id, str) or not route_id:
            raise ValidationError("route_id must be a non-empty str")
        if not isinstance(target_ref, str) or not target_ref:
            raise ValidationError("target_ref must be a non-empty str")
        require_int(target_chain_id, name="target_chain_id")
        route = RouteCall(
            route_id=route_id,
            target_chain_id=target_chain_id,
            target_ref=target_ref,
            payload=dict(payload or {}),
        )
        self.routes[route_id] = route
        self.events.emit(Event.ROUTE_SET, route_id=route_id, target_chain_id=target_chain_id, target_ref=target_ref)
        return route

    @operation
    def execute_route(self, sender: str, route_id: str, amount: int, now: int, *, recipient: Optional[str] = None) -> TransferIntent:
        """Burn locally and send an intent carrying the route's call description.

        The minted value goes to ``recipient``, defaulting to the route's
        ``target_ref``.
        """
        amount = require_positive(amount, name="amount")
        route = self.routes.get(route_id)
        if route is None:
            raise UnknownRoute(f"no route {route_id!r}", route_id=route_id)
        recipient = require_account(recipient or route.target_ref, name="recipient")
        prepared = self._prepare_send(
            sender=sender,
            destination_chain_id=route.target_chain_id,
            recipient=recipient,
            amount=amount,
            now=now,
            kind=IntentKind.ROUTE,
            call=route,
        )
        self._cap.burn(sender, amount, now=now)
        return self._commit_send(prepared)

    def drain_outbox(self) -> List[TransferIntent]:
        """Hand every queued intent to the relay, oldest first."""
        drained, self.outbox = self.outbox, []
        return drained

    # -- receive side --------------------------------------------------------

    @operation
    def on_intent_delivered(self, intent: TransferIntent, now: Optional[int] = None) -> int:
        """Mint an inbound intent. Returns the total amount minted.

        Every recipient ends up holding at the carried rate, whether or not it
        already held value here. ``now`` defaults to the ledger clock.
        """
        if not isinstance(intent, TransferIntent):
            raise InvalidIntent("delivery must be a TransferIntent")
        now = self.ledger.time if now is None else require_int(now, name="now")
        if intent.destination_chain_id != self.chain_id:
            raise InvalidIntent(
                f"intent for chain {intent.destination_chain_id} delivered to {self.chain_id}",
                message_id=intent.message_id,
            )
        if not verify_message_id(intent):
            raise InvalidIntent("message_id does not commit to the intent body", message_id=intent.message_id)
        if self.processed.contains(intent.message_id):
            logger.warning("duplicate delivery of %s ignored", intent.message_id)
            raise DuplicateMessage(f"message {intent.message_id} already processed", message_id=intent.message_id)
        if intent.source_chain_id not in self.params.allowlisted_sources:
            raise SourceNotAllowlisted(
                f"source chain {intent.source_chain_id} not allowlisted on {self.chain_id}",
                source_chain_id=intent.source_chain_id,
            )
        deliveries = intent.deliveries()
        for recipient, amount in deliveries:
            if not recipient:
                raise InvalidIntent("delivery recipient is empty", message_id=intent.message_id)
            if self.ledger.shares_for_amount(amount) <= 0:
                raise AmountTooSmall(f"delivery of {amount} rounds to zero shares", amount=amount)

        self._cap.mint_many([(r, a, intent.carried_rate_bps) for r, a in deliveries], now=now)
        for recipient in sorted({r for r, _ in deliveries}):
            self._cap.set_locked_rate(recipient, intent.carried_rate_bps, now=now)
        self.processed.mark(intent.message_id, intent.source_chain_id)
        self.received_totals[intent.source_chain_id] = (
            self.received_totals.get(intent.source_chain_id, 0) + intent.amount
        )
        self.events.emit(
            Event.MESSAGE_RECEIVED,
            message_id=intent.message_id,
            kind=intent.kind.value,
            source_chain_id=intent.source_chain_id,
            amount=intent.amount,
            carried_rate_bps=intent.carried_rate_bps,
        )
        if intent.call is not None:
            self.events.emit(
                Event.ROUTE_CALL_DISPATCHED,
                message_id=intent.message_id,
                recipient=intent.recipient,
                amount=intent.amount,
                call=intent.call.to_dict(),
            )
        logger.info("received %s amount=%d from chain %d", intent.message_id, intent.amount, intent.source_chain_id)
        return intent.amount

    # -- lanes and pause (pre-authorized by governance) ----------------------

    def set_lane(self, lane: LaneConfig, now: int) -> None:
        lanes = tuple(l for l in self.params.lanes if l.chain_id != lane.chain_id) + (lane,)
        self.params = GatewayParams(
            chain_id=self.chain_id,
            lanes=lanes,
            allowlisted_sources=self.params.allowlisted_sources,
        )
        existing = self.buckets.get(lane.chain_id)
        if existing is None:
            self.buckets[lane.chain_id] = full_bucket(lane.capacity, lane.refill_per_second, now)
        else:
            self.buckets[lane.chain_id] = reconfigure(existing, lane.capacity, lane.refill_per_second, now)
        self.events.emit(Event.CONFIG_CHANGED, lane=lane.chain_id, enabled=lane.enabled)

    def set_source_allowed(self, source_chain_id: int, allowed: bool = True) -> None:
        sources = set(self.params.allowlisted_sources)
        if allowed:
            sources.add(source_chain_id)
        else:
            sources.discard(source_chain_id)
        self.params = GatewayParams(chain_id=self.chain_id, lanes=self.params.lanes, allowlisted_sources=frozenset(sources))
        self.events.emit(Event.CONFIG_CHANGED, source_chain_id=source_chain_id, allowed=allowed)

    def pause(self, reason: str = "manual") -> None:
        self.switch.trip(reason)
        self.events.emit(Event.PAUSED, reason=reason)
        logger.warning("%s paused: %s", self.name, reason)

    def unpause(self) -> None:
        self.switch.reset()
        self.events.emit(Event.UNPAUSED)
        logger.info("%s unpaused", self.name)

    # -- monitoring (read-only) ---------------------------------------------

    def bucket_status(self, destination_chain_id: int, now: Optional[int] = None) -> Dict[str, int]:
        bucket = self.buckets.get(destination_chain_id)
        if bucket is None:
            raise ChainNotEnabled(f"no lane to {destination_chain_id}", destination_chain_id=destination_chain_id)
        if now is not None:
            bucket = refill(bucket, now)
        return {
            "capacity": bucket.capacity,
            "available": bucket.available,
            "refill_per_second": bucket.refill_per_second,
            "last_refill": bucket.last_refill,
        }

    def batch_status(self, batch_id: int) -> Dict[str, Any]:
        record = self.batches.get(batch_id)
        return {
            "batch_id": record.batch_id,
            "status": record.status,
            "creator": record.creator,
            "destination_chain_id": record.destination_chain_id,
            "total_amount": record.total_amount,
            "legs": len(record.recipients),
            "message_id": record.message_id,
        }

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "chain_id": self.chain_id,
            "paused": self.switch.paused,
            "pause_reason": self.switch.reason,
            "nonce": self.nonce,
            "outbox": len(self.outbox),
            "processed": len(self.processed),
            "batches": len(self.batches),
            "routes": sorted(self.routes),
            "sent_totals": dict(self.sent_totals),
            "received_totals": dict(self.received_totals),
        }

    def restore(
        self,
        *,
        nonce: int,
        params: Optional[GatewayParams] = None,
        buckets: Mapping[int, RateLimitBucket],
        processed: ProcessedMessages,
        batches: BatchTable,
        routes: Mapping[str, RouteCall],
        outbox: Sequence[TransferIntent],
        sent_totals: Mapping[int, int],
        received_totals: Mapping[int, int],
        paused: bool = False,
    ) -> None:
        if params is not None:
            self.params = params
        self.nonce = nonce
        self.buckets = dict(buckets)
        self.processed = processed
        self.batches = batches
        self.routes = dict(routes)
        self.outbox = list(outbox)
        self.sent_totals = dict(sent_totals)
        self.received_totals = dict(received_totals)
        if paused:
            self.switch.trip("restored paused")
        else:
            self.switch.reset()


def in_flight(source: GatewayEngine, destination: GatewayEngine) -> int:
    """Value burned on ``source`` for ``destination`` and not yet minted there."""
    return source.sent_totals.get(destination.chain_id, 0) - destination.received_totals.get(source.chain_id, 0)
