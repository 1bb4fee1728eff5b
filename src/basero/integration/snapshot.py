"""
State snapshots for ledger, vault and gateway.

Goals:
- Deterministic JSON serialization for hashing / snapshot distribution.
- Round-trippable into live engines (restore replaces their state in place).
- Explicit versioning.

Files written by `save_snapshot` carry the commitment next to the data; it is
re-checked on load.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..core.errors import BaseroError, InvalidConfig, InvalidSnapshot
from ..core.ledger import SharesLedger
from ..core.rate_limit import RateLimitBucket
from ..core.shares import LedgerTotals
from ..core.vault import VaultState
from ..state.accounts import AccountRecord
from ..state.batches import BatchRecord, BatchTable
from ..state.canonical import canonical_json_bytes, domain_sep_bytes, sha256_hex
from ..state.intents import RouteCall, TransferIntent
from ..state.locks import LockRecord
from ..state.messages import ProcessedMessages
from .config import (
    gateway_params_from_mapping,
    gateway_params_to_mapping,
    vault_params_from_mapping,
    vault_params_to_mapping,
)
from .gateway_engine import GatewayEngine
from .vault_engine import VaultEngine


SNAPSHOT_VERSION = 1


def _require_str(value: Any, *, name: str, non_empty: bool = True) -> str:
    if not isinstance(value, str):
        raise InvalidSnapshot(f"{name} must be a string")
    if non_empty and not value:
        raise InvalidSnapshot(f"{name} must be non-empty")
    return value


def _require_int(value: Any, *, name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidSnapshot(f"{name} must be an int")
    if value < 0:
        raise InvalidSnapshot(f"{name} must be non-negative")
    return value


def _require_list(obj: Mapping[str, Any], key: str) -> List[Any]:
    value = obj.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidSnapshot(f"{key} must be a list")
    return value


def _require_mapping(value: Any, *, name: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise InvalidSnapshot(f"{name} must be an object")
    return value


@dataclass(frozen=True)
class BaseroSnapshot:
    """
    Deterministic, versioned snapshot.

    The commitment is *not* included inside `data` to avoid self-reference.
    """

    version: int
    data: Dict[str, Any]

    def canonical_bytes(self) -> bytes:
        return canonical_json_bytes(self.data)

    def commitment_hex(self) -> str:
        return sha256_hex(domain_sep_bytes("snapshot", version=self.version) + self.canonical_bytes())


# -- encode ---------------------------------------------------------------------


def ledger_to_dict(ledger: SharesLedger) -> Dict[str, Any]:
    return {
        "total_shares": ledger.total_shares,
        "total_supply": ledger.total_supply,
        "accounts": [
            {
                "account": account,
                "shares": record.shares,
                "locked_rate_bps": record.locked_rate_bps,
                "last_accrual": record.last_accrual,
                "pending_interest": record.pending_interest,
            }
            for account, record in ledger.accounts.items()
        ],
        "allowances": [
            {"owner": owner, "spender": spender, "amount": amount}
            for (owner, spender), amount in sorted(ledger.allowances().items())
        ],
    }


def vault_to_dict(vault: VaultEngine) -> Dict[str, Any]:
    return {
        "params": vault_params_to_mapping(vault.params),
        "total_deposited": vault.state.total_deposited,
        "reserve": vault.state.reserve,
        "last_accrual_time": vault.state.last_accrual_time,
        "paused": vault.switch.paused,
        "locks": [
            {
                "account": account,
                "locked_amount": lock.locked_amount,
                "unlock_timestamp": lock.unlock_timestamp,
                "bonus_bps": lock.bonus_bps,
                "created_at": lock.created_at,
            }
            for account, lock in vault.locks.items()
        ],
    }


def gateway_to_dict(gateway: GatewayEngine) -> Dict[str, Any]:
    return {
        "chain_id": gateway.chain_id,
        "params": gateway_params_to_mapping(gateway.params),
        "nonce": gateway.nonce,
        "paused": gateway.switch.paused,
        "buckets": [
            {
                "chain_id": chain_id,
                "capacity": b.capacity,
                "refill_per_second": b.refill_per_second,
                "available": b.available,
                "last_refill": b.last_refill,
            }
            for chain_id, b in sorted(gateway.buckets.items())
        ],
        "processed": [{"message_id": m, "source_chain_id": s} for m, s in gateway.processed.items()],
        "batches": [
            {
                "batch_id": r.batch_id,
                "creator": r.creator,
                "destination_chain_id": r.destination_chain_id,
                "recipients": list(r.recipients),
                "amounts": list(r.amounts),
                "created_at": r.created_at,
                "executed": r.executed,
                "message_id": r.message_id,
            }
            for _, r in gateway.batches.items()
        ],
        "next_batch_id": gateway.batches.next_id,
        "routes": [route.to_dict() for _, route in sorted(gateway.routes.items())],
        "outbox": [intent.to_dict() for intent in gateway.outbox],
        "sent_totals": [{"chain_id": c, "amount": a} for c, a in sorted(gateway.sent_totals.items())],
        "received_totals": [{"chain_id": c, "amount": a} for c, a in sorted(gateway.received_totals.items())],
    }


def snapshot_from_engines(
    ledger: SharesLedger,
    *,
    vault: Optional[VaultEngine] = None,
    gateway: Optional[GatewayEngine] = None,
    version: int = SNAPSHOT_VERSION,
) -> BaseroSnapshot:
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    data: Dict[str, Any] = {
        "version": version,
        "ledger": ledger_to_dict(ledger),
        "vault": vault_to_dict(vault) if vault is not None else None,
        "gateway": gateway_to_dict(gateway) if gateway is not None else None,
    }
    return BaseroSnapshot(version=version, data=data)


# -- decode ---------------------------------------------------------------------


def ledger_from_snapshot(ledger: SharesLedger, obj: Mapping[str, Any]) -> None:
    obj = _require_mapping(obj, name="ledger")
    try:
        totals = LedgerTotals(
            total_shares=_require_int(obj.get("total_shares", 0), name="ledger.total_shares"),
            total_supply=_require_int(obj.get("total_supply", 0), name="ledger.total_supply"),
        )
        records: Dict[str, AccountRecord] = {}
        for entry in _require_list(obj, "accounts"):
            entry = _require_mapping(entry, name="ledger.accounts[]")
            account = _require_str(entry.get("account"), name="account.account")
            if account in records:
                raise InvalidSnapshot(f"duplicate account entry: {account}")
            records[account] = AccountRecord(
                shares=_require_int(entry.get("shares", 0), name="account.shares"),
                locked_rate_bps=_require_int(entry.get("locked_rate_bps", 0), name="account.locked_rate_bps"),
                last_accrual=_require_int(entry.get("last_accrual", 0), name="account.last_accrual"),
                pending_interest=_require_int(entry.get("pending_interest", 0), name="account.pending_interest"),
            )
        allowances = {}
        for entry in _require_list(obj, "allowances"):
            entry = _require_mapping(entry, name="ledger.allowances[]")
            key = (
                _require_str(entry.get("owner"), name="allowance.owner"),
                _require_str(entry.get("spender"), name="allowance.spender"),
            )
            allowances[key] = _require_int(entry.get("amount"), name="allowance.amount")
    except BaseroError:
        raise
    except (TypeError, ValueError) as exc:
        raise InvalidSnapshot(f"invalid ledger snapshot: {exc}") from exc
    ledger.restore(totals, records, allowances)


def vault_from_snapshot(vault: VaultEngine, obj: Mapping[str, Any]) -> None:
    obj = _require_mapping(obj, name="vault")
    try:
        params = vault_params_from_mapping(obj["params"]) if obj.get("params") is not None else vault.params
        state = VaultState(
            total_deposited=_require_int(obj.get("total_deposited", 0), name="vault.total_deposited"),
            reserve=_require_int(obj.get("reserve", 0), name="vault.reserve"),
            last_accrual_time=_require_int(obj.get("last_accrual_time", 0), name="vault.last_accrual_time"),
        )
        locks: Dict[str, LockRecord] = {}
        for entry in _require_list(obj, "locks"):
            entry = _require_mapping(entry, name="vault.locks[]")
            account = _require_str(entry.get("account"), name="lock.account")
            locks[account] = LockRecord(
                locked_amount=_require_int(entry.get("locked_amount"), name="lock.locked_amount"),
                unlock_timestamp=_require_int(entry.get("unlock_timestamp"), name="lock.unlock_timestamp"),
                bonus_bps=_require_int(entry.get("bonus_bps", 0), name="lock.bonus_bps"),
                created_at=_require_int(entry.get("created_at", 0), name="lock.created_at"),
            )
    except InvalidConfig as exc:
        raise InvalidSnapshot(f"invalid vault params: {exc}") from exc
    except BaseroError:
        raise
    except (TypeError, ValueError) as exc:
        raise InvalidSnapshot(f"invalid vault snapshot: {exc}") from exc
    vault.restore(state, locks, paused=bool(obj.get("paused", False)), params=params)


def gateway_from_snapshot(gateway: GatewayEngine, obj: Mapping[str, Any]) -> None:
    obj = _require_mapping(obj, name="gateway")
    chain_id = _require_int(obj.get("chain_id"), name="gateway.chain_id")
    if chain_id != gateway.chain_id:
        raise InvalidSnapshot(f"snapshot is for chain {chain_id}, gateway is {gateway.chain_id}")
    try:
        params = gateway_params_from_mapping(obj["params"]) if obj.get("params") is not None else gateway.params
        if params.chain_id != gateway.chain_id:
            raise InvalidSnapshot(f"snapshot params are for chain {params.chain_id}, gateway is {gateway.chain_id}")
        buckets: Dict[int, RateLimitBucket] = {}
        for entry in _require_list(obj, "buckets"):
            entry = _require_mapping(entry, name="gateway.buckets[]")
            buckets[_require_int(entry.get("chain_id"), name="bucket.chain_id")] = RateLimitBucket(
                capacity=_require_int(entry.get("capacity"), name="bucket.capacity"),
                refill_per_second=_require_int(entry.get("refill_per_second"), name="bucket.refill_per_second"),
                available=_require_int(entry.get("available"), name="bucket.available"),
                last_refill=_require_int(entry.get("last_refill", 0), name="bucket.last_refill"),
            )

        processed = ProcessedMessages()
        for entry in _require_list(obj, "processed"):
            entry = _require_mapping(entry, name="gateway.processed[]")
            processed.mark(
                _require_str(entry.get("message_id"), name="processed.message_id"),
                _require_int(entry.get("source_chain_id"), name="processed.source_chain_id"),
            )

        batches = BatchTable(next_id=_require_int(obj.get("next_batch_id", 1), name="gateway.next_batch_id"))
        for entry in _require_list(obj, "batches"):
            entry = _require_mapping(entry, name="gateway.batches[]")
            amounts = tuple(_require_int(a, name="batch.amount") for a in entry.get("amounts") or ())
            batches.restore(
                BatchRecord(
                    batch_id=_require_int(entry.get("batch_id"), name="batch.batch_id"),
                    creator=_require_str(entry.get("creator"), name="batch.creator"),
                    destination_chain_id=_require_int(entry.get("destination_chain_id"), name="batch.destination"),
                    recipients=tuple(_require_str(r, name="batch.recipient") for r in entry.get("recipients") or ()),
                    amounts=amounts,
                    total_amount=sum(amounts),
                    created_at=_require_int(entry.get("created_at", 0), name="batch.created_at"),
                    executed=bool(entry.get("executed", False)),
                    message_id=entry.get("message_id"),
                )
            )

        routes = {}
        for entry in _require_list(obj, "routes"):
            route = RouteCall.from_dict(_require_mapping(entry, name="gateway.routes[]"))
            routes[route.route_id] = route

        outbox = [TransferIntent.from_dict(_require_mapping(e, name="gateway.outbox[]")) for e in _require_list(obj, "outbox")]

        def _totals(key: str) -> Dict[int, int]:
            out: Dict[int, int] = {}
            for entry in _require_list(obj, key):
                entry = _require_mapping(entry, name=f"gateway.{key}[]")
                out[_require_int(entry.get("chain_id"), name=f"{key}.chain_id")] = _require_int(
                    entry.get("amount"), name=f"{key}.amount"
                )
            return out

        sent_totals = _totals("sent_totals")
        received_totals = _totals("received_totals")
    except InvalidConfig as exc:
        raise InvalidSnapshot(f"invalid gateway params: {exc}") from exc
    except BaseroError:
        raise
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidSnapshot(f"invalid gateway snapshot: {exc}") from exc

    gateway.restore(
        params=params,
        nonce=_require_int(obj.get("nonce", 0), name="gateway.nonce"),
        buckets=buckets,
        processed=processed,
        batches=batches,
        routes=routes,
        outbox=outbox,
        sent_totals=sent_totals,
        received_totals=received_totals,
        paused=bool(obj.get("paused", False)),
    )


def restore_engines(
    snapshot: BaseroSnapshot,
    ledger: SharesLedger,
    *,
    vault: Optional[VaultEngine] = None,
    gateway: Optional[GatewayEngine] = None,
) -> None:
    """Load every section present in ``snapshot`` into the given engines."""
    if snapshot.version != SNAPSHOT_VERSION:
        raise InvalidSnapshot(f"unsupported snapshot version: {snapshot.version}")
    data = snapshot.data
    ledger_from_snapshot(ledger, data.get("ledger") or {})
    if vault is not None and data.get("vault") is not None:
        vault_from_snapshot(vault, data["vault"])
    if gateway is not None and data.get("gateway") is not None:
        gateway_from_snapshot(gateway, data["gateway"])


# -- files ----------------------------------------------------------------------


def save_snapshot(path: str | Path, snapshot: BaseroSnapshot) -> str:
    """Write ``snapshot`` atomically. Returns the commitment."""
    path = Path(path)
    commitment = snapshot.commitment_hex()
    doc = {"version": snapshot.version, "commitment": commitment, "data": snapshot.data}
    fd, tmp = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(canonical_json_bytes(doc))
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    return commitment


def load_snapshot(path: str | Path) -> BaseroSnapshot:
    try:
        doc = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidSnapshot(f"{path}: not valid JSON: {exc}") from exc
    doc = _require_mapping(doc, name="snapshot")
    version = doc.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise InvalidSnapshot("snapshot.version must be a positive int")
    snapshot = BaseroSnapshot(version=version, data=dict(_require_mapping(doc.get("data"), name="snapshot.data")))
    expected = doc.get("commitment")
    if expected is not None and expected != snapshot.commitment_hex():
        raise InvalidSnapshot("snapshot commitment mismatch", path=str(path))
    return snapshot
