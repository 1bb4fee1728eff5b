"""
Cross-ledger transfer intents.

An intent is created (and its value burned) on the source ledger and consumed
exactly once on the destination ledger. Three shapes share one type:

- a plain transfer: ``recipient`` + ``amount``;
- a batch: ``legs`` carries every (recipient, amount) pair, ``amount`` is the
  total and ``recipient`` is empty;
- a routed transfer: a plain transfer plus a ``call`` the destination hands
  to its external collaborator after minting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from ..core.errors import InvalidIntent
from .canonical import digest_hex, is_hex32


class IntentKind(Enum):
    TRANSFER = "TRANSFER"
    BATCH = "BATCH"
    ROUTE = "ROUTE"


@dataclass(frozen=True)
class RouteCall:
    """Call description registered by the owner of a route."""

    route_id: str
    target_chain_id: int
    target_ref: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "route_id": self.route_id,
            "target_chain_id": self.target_chain_id,
            "target_ref": self.target_ref,
            "payload": dict(self.payload),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "RouteCall":
        return RouteCall(
            route_id=str(data["route_id"]),
            target_chain_id=int(data["target_chain_id"]),
            target_ref=str(data["target_ref"]),
            payload=dict(data.get("payload") or {}),
        )


@dataclass(frozen=True)
class TransferIntent:
    source_chain_id: int
    destination_chain_id: int
    sender: str
    recipient: str
    amount: int
    carried_rate_bps: int
    nonce: int
    message_id: str
    kind: IntentKind = IntentKind.TRANSFER
    legs: Tuple[Tuple[str, int], ...] = ()
    call: Optional[RouteCall] = None
    batch_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise InvalidIntent(f"amount must be positive: {self.amount}")
        if self.carried_rate_bps < 0:
            raise InvalidIntent(f"carried_rate_bps must be non-negative: {self.carried_rate_bps}")
        if self.source_chain_id == self.destination_chain_id:
            raise InvalidIntent("source and destination chain must differ")
        if not is_hex32(self.message_id):
            raise InvalidIntent(f"invalid message_id format: {self.message_id!r}")
        if self.kind is IntentKind.BATCH:
            if not self.legs:
                raise InvalidIntent("batch intent requires legs")
            if sum(a for _, a in self.legs) != self.amount:
                raise InvalidIntent("batch legs must sum to amount")
        elif not self.recipient:
            raise InvalidIntent("recipient is required")
        if self.kind is IntentKind.ROUTE and self.call is None:
            raise InvalidIntent("route intent requires a call")

    def deliveries(self) -> Tuple[Tuple[str, int], ...]:
        """(recipient, amount) pairs the destination must mint."""
        if self.kind is IntentKind.BATCH:
            return self.legs
        return ((self.recipient, self.amount),)

    def body(self) -> Dict[str, Any]:
        """Hashed fields (everything except ``message_id``)."""
        return _intent_body(
            kind=self.kind,
            source_chain_id=self.source_chain_id,
            destination_chain_id=self.destination_chain_id,
            sender=self.sender,
            recipient=self.recipient,
            amount=self.amount,
            carried_rate_bps=self.carried_rate_bps,
            nonce=self.nonce,
            legs=self.legs,
            call=self.call,
            batch_id=self.batch_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = self.body()
        d["message_id"] = self.message_id
        return d

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "TransferIntent":
        try:
            call = data.get("call")
            return TransferIntent(
                source_chain_id=int(data["source_chain_id"]),
                destination_chain_id=int(data["destination_chain_id"]),
                sender=str(data["sender"]),
                recipient=str(data["recipient"]),
                amount=int(data["amount"]),
                carried_rate_bps=int(data["carried_rate_bps"]),
                nonce=int(data["nonce"]),
                message_id=str(data["message_id"]),
                kind=IntentKind(data.get("kind", IntentKind.TRANSFER.value)),
                legs=tuple((str(r), int(a)) for r, a in data.get("legs") or ()),
                call=RouteCall.from_dict(call) if call else None,
                batch_id=data.get("batch_id"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidIntent(f"malformed intent: {exc}") from exc


def _intent_body(
    *,
    kind: IntentKind,
    source_chain_id: int,
    destination_chain_id: int,
    sender: str,
    recipient: str,
    amount: int,
    carried_rate_bps: int,
    nonce: int,
    legs: Tuple[Tuple[str, int], ...],
    call: Optional[RouteCall],
    batch_id: Optional[int],
) -> Dict[str, Any]:
    return {
        "kind": kind.value,
        "source_chain_id": source_chain_id,
        "destination_chain_id": destination_chain_id,
        "sender": sender,
        "recipient": recipient,
        "amount": amount,
        "carried_rate_bps": carried_rate_bps,
        "nonce": nonce,
        "legs": [[r, a] for r, a in legs],
        "call": call.to_dict() if call is not None else None,
        "batch_id": batch_id,
    }


def derive_message_id(body: Mapping[str, Any]) -> str:
    return digest_hex("transfer_intent", dict(body))


def build_intent(
    *,
    source_chain_id: int,
    destination_chain_id: int,
    sender: str,
    recipient: str,
    amount: int,
    carried_rate_bps: int,
    nonce: int,
    kind: IntentKind = IntentKind.TRANSFER,
    legs: Tuple[Tuple[str, int], ...] = (),
    call: Optional[RouteCall] = None,
    batch_id: Optional[int] = None,
) -> TransferIntent:
    """Build an intent whose ``message_id`` commits to every other field."""
    body = _intent_body(
        kind=kind,
        source_chain_id=source_chain_id,
        destination_chain_id=destination_chain_id,
        sender=sender,
        recipient=recipient,
        amount=amount,
        carried_rate_bps=carried_rate_bps,
        nonce=nonce,
        legs=legs,
        call=call,
        batch_id=batch_id,
    )
    try:
        message_id = derive_message_id(body)
    except TypeError as exc:
        raise InvalidIntent(f"intent is not canonically encodable: {exc}") from exc
    return TransferIntent(
        source_chain_id=source_chain_id,
        destination_chain_id=destination_chain_id,
        sender=sender,
        recipient=recipient,
        amount=amount,
        carried_rate_bps=carried_rate_bps,
        nonce=nonce,
        message_id=message_id,
        kind=kind,
        legs=legs,
        call=call,
        batch_id=batch_id,
    )


def verify_message_id(intent: TransferIntent) -> bool:
    try:
        return derive_message_id(intent.body()) == intent.message_id
    except TypeError:
        return False
