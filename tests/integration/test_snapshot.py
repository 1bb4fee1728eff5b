from __future__ import annotations

import json
from pathlib import Path

import pytest

from basero.core.errors import DuplicateMessage, InvalidSnapshot
from basero.core.fees import PerformanceFeeParams
from basero.core.ledger import SharesLedger
from basero.core.math import SECONDS_PER_WEEK, WAD
from basero.core.rate_model import RateCurve
from basero.core.vault import VaultParams
from basero.integration.config import GatewayParams, LaneConfig
from basero.integration.gateway_engine import GatewayEngine
from basero.integration.snapshot import (
    gateway_to_dict,
    ledger_to_dict,
    load_snapshot,
    restore_engines,
    save_snapshot,
    snapshot_from_engines,
    vault_to_dict,
)
from basero.integration.vault_engine import VaultEngine
from basero.state.intents import build_intent

PARAMS = GatewayParams(chain_id=1, lanes=(LaneConfig(chain_id=2),), allowlisted_sources=frozenset({2}))


def _system() -> tuple[SharesLedger, VaultEngine, GatewayEngine]:
    ledger = SharesLedger()
    vault = VaultEngine(ledger.issue_capability("vault"), VaultParams())
    gateway = GatewayEngine(ledger.issue_capability("gateway"), PARAMS, spendable=vault.unlocked_balance)
    return ledger, vault, gateway


def _populated() -> tuple[SharesLedger, VaultEngine, GatewayEngine]:
    ledger, vault, gateway = _system()
    vault.deposit("alice", 100 * WAD, now=0)
    vault.deposit("bob", 50 * WAD, now=0)
    vault.lock_deposit("bob", 20 * WAD, 4 * SECONDS_PER_WEEK, now=0)
    vault.accrue(now=3_600)
    ledger.approve("alice", "router", 5 * WAD)
    gateway.transfer_out("alice", 2, "carol", 3 * WAD, now=3_600)
    gateway.create_batch("bob", 2, ["dave", "erin"], [WAD, 2 * WAD], now=3_600)
    gateway.set_route("stake", 2, "pool", {"action": "stake"})
    inbound = build_intent(
        source_chain_id=2,
        destination_chain_id=1,
        sender="zoe",
        recipient="frank",
        amount=WAD,
        carried_rate_bps=900,
        nonce=1,
    )
    gateway.on_intent_delivered(inbound)
    return ledger, vault, gateway


def test_snapshot_round_trips_through_a_file(tmp_path: Path) -> None:
    ledger, vault, gateway = _populated()
    snapshot = snapshot_from_engines(ledger, vault=vault, gateway=gateway)
    path = tmp_path / "state.json"
    commitment = save_snapshot(path, snapshot)

    loaded = load_snapshot(path)
    assert loaded.commitment_hex() == commitment

    ledger2, vault2, gateway2 = _system()
    restore_engines(loaded, ledger2, vault=vault2, gateway=gateway2)
    assert ledger_to_dict(ledger2) == ledger_to_dict(ledger)
    assert vault_to_dict(vault2) == vault_to_dict(vault)
    assert gateway_to_dict(gateway2) == gateway_to_dict(gateway)
    assert snapshot_from_engines(ledger2, vault=vault2, gateway=gateway2).commitment_hex() == commitment


def test_restored_gateway_still_rejects_replays(tmp_path: Path) -> None:
    ledger, vault, gateway = _populated()
    (message_id, _), = gateway.processed.items()
    path = tmp_path / "state.json"
    save_snapshot(path, snapshot_from_engines(ledger, vault=vault, gateway=gateway))

    ledger2, vault2, gateway2 = _system()
    restore_engines(load_snapshot(path), ledger2, vault=vault2, gateway=gateway2)
    inbound = build_intent(
        source_chain_id=2,
        destination_chain_id=1,
        sender="zoe",
        recipient="frank",
        amount=WAD,
        carried_rate_bps=900,
        nonce=1,
    )
    assert inbound.message_id == message_id
    with pytest.raises(DuplicateMessage):
        gateway2.on_intent_delivered(inbound)
    # batch ids continue after the restored ones
    assert gateway2.create_batch("bob", 2, ["dave"], [WAD], now=0).batch_id == 2


def test_snapshot_commitment_is_deterministic() -> None:
    first = snapshot_from_engines(*_populated()[:1])
    second = snapshot_from_engines(*_populated()[:1])
    assert first.canonical_bytes() == second.canonical_bytes()
    assert first.commitment_hex() == second.commitment_hex()


def test_tampered_file_is_rejected(tmp_path: Path) -> None:
    ledger, vault, gateway = _populated()
    path = tmp_path / "state.json"
    save_snapshot(path, snapshot_from_engines(ledger, vault=vault, gateway=gateway))
    doc = json.loads(path.read_text(encoding="utf-8"))
    doc["data"]["vault"]["reserve"] += 1
    path.write_text(json.dumps(doc), encoding="utf-8")
    with pytest.raises(InvalidSnapshot):
        load_snapshot(path)


def test_inconsistent_ledger_section_is_rejected() -> None:
    ledger, _, _ = _system()
    snapshot = snapshot_from_engines(ledger)
    snapshot.data["ledger"]["total_shares"] = 5
    with pytest.raises(InvalidSnapshot):
        restore_engines(snapshot, SharesLedger())


def test_restore_carries_governed_parameters() -> None:
    ledger, vault, gateway = _populated()
    vault.set_rate_curve(RateCurve(rate_at_zero_bps=300, rate_at_kink_bps=900))
    vault.set_accrual_period(7_200)
    vault.set_performance_fee(PerformanceFeeParams(recipient="treasury"))
    gateway.set_lane(LaneConfig(chain_id=3, max_amount=50 * WAD), now=3_600)
    gateway.set_source_allowed(3)
    snapshot = snapshot_from_engines(ledger, vault=vault, gateway=gateway)

    ledger2, vault2, gateway2 = _system()
    restore_engines(snapshot, ledger2, vault=vault2, gateway=gateway2)
    assert vault2.params == vault.params
    assert gateway2.params.allowlisted_sources == frozenset({2, 3})
    assert sorted(gateway2.params.lanes, key=lambda l: l.chain_id) == sorted(gateway.params.lanes, key=lambda l: l.chain_id)
    assert gateway_to_dict(gateway2) == gateway_to_dict(gateway)
    assert ledger2.pending_interest_of("alice") == ledger.pending_interest_of("alice")
    assert ledger2.time == ledger.time


def test_snapshot_without_params_keeps_current_ones() -> None:
    ledger, vault, gateway = _populated()
    snapshot = snapshot_from_engines(ledger, vault=vault, gateway=gateway)
    del snapshot.data["vault"]["params"]
    del snapshot.data["gateway"]["params"]

    ledger2, vault2, gateway2 = _system()
    restore_engines(snapshot, ledger2, vault=vault2, gateway=gateway2)
    assert vault2.params == VaultParams()
    assert gateway2.params == PARAMS


def test_gateway_params_for_another_chain_are_rejected() -> None:
    ledger, vault, gateway = _populated()
    snapshot = snapshot_from_engines(ledger, vault=vault, gateway=gateway)
    snapshot.data["gateway"]["params"]["chain_id"] = 9
    ledger2, _, gateway2 = _system()
    with pytest.raises(InvalidSnapshot):
        restore_engines(snapshot, ledger2, gateway=gateway2)
    assert gateway2.params == PARAMS
