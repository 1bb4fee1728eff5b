from __future__ import annotations

from dataclasses import replace

import pytest

from basero.core.errors import (
    AlreadyExecuted,
    AmountOutOfBounds,
    BatchNotFound,
    ChainNotEnabled,
    DuplicateMessage,
    EmptyBatch,
    InsufficientBalance,
    InvalidAmount,
    InvalidIntent,
    LengthMismatch,
    Paused,
    RateLimitExceeded,
    SourceNotAllowlisted,
    UnknownRoute,
    ValidationError,
)
from basero.core.events import Event
from basero.core.ledger import MintBurnCapability, SharesLedger
from basero.core.math import SECONDS_PER_WEEK, WAD
from basero.core.rate_model import interest_for_period
from basero.core.vault import VaultParams
from basero.integration.config import GatewayParams, LaneConfig
from basero.integration.gateway_engine import GatewayEngine, in_flight
from basero.integration.vault_engine import VaultEngine
from basero.state.intents import IntentKind


def _chain(
    chain_id: int,
    peer: int,
    *,
    allow_peer: bool = True,
    lane: LaneConfig | None = None,
) -> tuple[SharesLedger, GatewayEngine, MintBurnCapability]:
    ledger = SharesLedger()
    params = GatewayParams(
        chain_id=chain_id,
        lanes=(lane or LaneConfig(chain_id=peer),),
        allowlisted_sources=frozenset({peer}) if allow_peer else frozenset(),
    )
    gateway = GatewayEngine(ledger.issue_capability("gateway"), params)
    faucet = ledger.issue_capability("faucet")
    return ledger, gateway, faucet


def _pair(**lane_kwargs) -> tuple[SharesLedger, GatewayEngine, SharesLedger, GatewayEngine]:
    ledger_a, gw_a, faucet = _chain(1, 2, lane=LaneConfig(chain_id=2, **lane_kwargs))
    ledger_b, gw_b, _ = _chain(2, 1)
    faucet.mint("alice", 100 * WAD, 750)
    return ledger_a, gw_a, ledger_b, gw_b


# ---------------------------------------------------------------------------
# send / receive
# ---------------------------------------------------------------------------


def test_transfer_out_burns_and_queues_intent() -> None:
    ledger_a, gw_a, _, _ = _pair()
    intent = gw_a.transfer_out("alice", 2, "bob", 10 * WAD, now=0)
    assert ledger_a.balance_of("alice") == 90 * WAD
    assert ledger_a.total_supply == 90 * WAD
    assert intent.carried_rate_bps == 750
    assert intent.nonce == 1
    assert gw_a.outbox == [intent]
    assert gw_a.sent_totals == {2: 10 * WAD}
    assert gw_a.events.last().event is Event.MESSAGE_SENT


def test_delivery_mints_with_carried_rate_once() -> None:
    ledger_a, gw_a, ledger_b, gw_b = _pair()
    intent = gw_a.transfer_out("alice", 2, "bob", 10 * WAD, now=0)
    assert in_flight(gw_a, gw_b) == 10 * WAD

    gw_b.on_intent_delivered(intent)
    assert ledger_b.balance_of("bob") == 10 * WAD
    assert ledger_b.locked_rate_of("bob") == 750
    assert in_flight(gw_a, gw_b) == 0
    assert ledger_a.total_supply + ledger_b.total_supply == 100 * WAD

    with pytest.raises(DuplicateMessage):
        gw_b.on_intent_delivered(intent)
    assert ledger_b.balance_of("bob") == 10 * WAD


def test_receive_rejects_unlisted_source_without_state_change() -> None:
    _, gw_a, faucet = _chain(1, 2)
    faucet.mint("alice", 10 * WAD, 300)
    ledger_b, gw_b, _ = _chain(2, 1, allow_peer=False)
    intent = gw_a.transfer_out("alice", 2, "bob", WAD, now=0)
    with pytest.raises(SourceNotAllowlisted):
        gw_b.on_intent_delivered(intent)
    assert ledger_b.total_supply == 0
    assert not gw_b.processed.contains(intent.message_id)

    gw_b.set_source_allowed(1)
    gw_b.on_intent_delivered(intent)
    assert ledger_b.balance_of("bob") == WAD


def test_receive_rejects_tampered_or_misrouted_intents() -> None:
    _, gw_a, _, gw_b = _pair()
    intent = gw_a.transfer_out("alice", 2, "bob", WAD, now=0)
    with pytest.raises(InvalidIntent):
        gw_b.on_intent_delivered(replace(intent, amount=2 * WAD))
    with pytest.raises(InvalidIntent):
        gw_a.on_intent_delivered(intent)

def test_delivery_reprices_an_existing_holder() -> None:
    ledger_a, gw_a, ledger_b, gw_b = _pair()
    ledger_b.issue_capability("treasury").mint("bob", 50 * WAD, 300, now=0)
    intent = gw_a.transfer_out("alice", 2, "bob", 10 * WAD, now=0)

    gw_b.on_intent_delivered(intent, now=3_600)
    assert ledger_b.balance_of("bob") == 60 * WAD
    assert ledger_b.locked_rate_of("bob") == 750
    # the hour before arrival was earned at the old rate
    assert ledger_b.pending_interest_of("bob") == interest_for_period(50 * WAD, 300, 3_600)
    assert ledger_b.events.last().event is Event.RATE_CHANGED


def test_send_rejects_bad_timestamps_before_burning() -> None:
    ledger_a, gw_a, _, _ = _pair()
    buckets = dict(gw_a.buckets)
    for bad in (1.5, -1, True, None):
        with pytest.raises(InvalidAmount):
            gw_a.transfer_out("alice", 2, "bob", WAD, now=bad)
    with pytest.raises(InvalidAmount):
        gw_a.create_batch("alice", 2, ["bob"], [WAD], now=-3)
    assert ledger_a.balance_of("alice") == 100 * WAD
    assert gw_a.outbox == []
    assert gw_a.buckets == buckets
    assert gw_a.nonce == 0
    assert not gw_a.switch.paused
    assert gw_a.transfer_out("alice", 2, "bob", WAD, now=0).nonce == 1


def test_send_rejects_unencodable_recipients() -> None:
    ledger_a, gw_a, _, _ = _pair()
    with pytest.raises(ValidationError):
        gw_a.transfer_out("alice", 2, "bob\ud800", WAD, now=0)
    with pytest.raises(ValidationError):
        gw_a.create_batch("alice", 2, ["\udfff"], [WAD], now=0)
    assert ledger_a.balance_of("alice") == 100 * WAD
    assert gw_a.outbox == []



def test_lane_checks() -> None:
    ledger_a, gw_a, _, _ = _pair(min_amount=WAD, max_amount=20 * WAD)
    with pytest.raises(ChainNotEnabled):
        gw_a.transfer_out("alice", 3, "bob", WAD, now=0)
    with pytest.raises(AmountOutOfBounds):
        gw_a.transfer_out("alice", 2, "bob", 21 * WAD, now=0)
    with pytest.raises(AmountOutOfBounds):
        gw_a.transfer_out("alice", 2, "bob", WAD - 1, now=0)
    gw_a.set_lane(LaneConfig(chain_id=2, enabled=False), now=0)
    with pytest.raises(ChainNotEnabled):
        gw_a.transfer_out("alice", 2, "bob", WAD, now=0)
    assert ledger_a.balance_of("alice") == 100 * WAD
    assert gw_a.nonce == 0


def test_rate_limit_blocks_then_refills() -> None:
    ledger_a, gw_a, _, _ = _pair(capacity=50 * WAD, refill_per_second=WAD)
    gw_a.transfer_out("alice", 2, "bob", 40 * WAD, now=0)
    with pytest.raises(RateLimitExceeded):
        gw_a.transfer_out("alice", 2, "bob", 20 * WAD, now=0)
    assert ledger_a.balance_of("alice") == 60 * WAD
    assert gw_a.bucket_status(2)["available"] == 10 * WAD
    assert gw_a.bucket_status(2, now=10)["available"] == 20 * WAD
    gw_a.transfer_out("alice", 2, "bob", 20 * WAD, now=10)
    assert gw_a.bucket_status(2)["available"] == 0


def test_spendable_hook_keeps_locked_value_home() -> None:
    ledger = SharesLedger()
    vault = VaultEngine(ledger.issue_capability("vault"), VaultParams())
    params = GatewayParams(chain_id=1, lanes=(LaneConfig(chain_id=2),), allowlisted_sources=frozenset({2}))
    gateway = GatewayEngine(ledger.issue_capability("gateway"), params, spendable=vault.unlocked_balance)
    vault.deposit("alice", 100 * WAD, now=0)
    vault.lock_deposit("alice", 80 * WAD, SECONDS_PER_WEEK, now=0)
    with pytest.raises(InsufficientBalance):
        gateway.transfer_out("alice", 2, "bob", 21 * WAD, now=0)
    gateway.transfer_out("alice", 2, "bob", 20 * WAD, now=0)
    assert ledger.balance_of("alice") == 80 * WAD


# ---------------------------------------------------------------------------
# batches and routes
# ---------------------------------------------------------------------------


def test_batch_executes_as_one_message() -> None:
    _, gw_a, ledger_b, gw_b = _pair(capacity=50 * WAD, refill_per_second=0)
    batch = gw_a.create_batch("alice", 2, ["bob", "carol"], [3 * WAD, 7 * WAD], now=0)
    assert gw_a.batch_status(batch.batch_id)["status"] == "PENDING"

    intent = gw_a.execute_batch(batch.batch_id, now=0)
    assert intent.kind is IntentKind.BATCH
    assert intent.amount == 10 * WAD
    assert gw_a.bucket_status(2)["available"] == 40 * WAD
    assert gw_a.batch_status(batch.batch_id)["status"] == "EXECUTED"
    assert gw_a.batch_status(batch.batch_id)["message_id"] == intent.message_id
    with pytest.raises(AlreadyExecuted):
        gw_a.execute_batch(batch.batch_id, now=0)

    gw_b.on_intent_delivered(intent)
    assert ledger_b.balance_of("bob") == 3 * WAD
    assert ledger_b.balance_of("carol") == 7 * WAD


def test_batch_validation() -> None:
    _, gw_a, _, _ = _pair()
    with pytest.raises(LengthMismatch):
        gw_a.create_batch("alice", 2, ["bob"], [1, 2], now=0)
    with pytest.raises(EmptyBatch):
        gw_a.create_batch("alice", 2, [], [], now=0)
    with pytest.raises(BatchNotFound):
        gw_a.execute_batch(42, now=0)


def test_failed_batch_send_stays_pending() -> None:
    ledger_a, gw_a, _, _ = _pair(capacity=5 * WAD)
    batch = gw_a.create_batch("alice", 2, ["bob", "carol"], [3 * WAD, 7 * WAD], now=0)
    with pytest.raises(RateLimitExceeded):
        gw_a.execute_batch(batch.batch_id, now=0)
    assert gw_a.batch_status(batch.batch_id)["status"] == "PENDING"
    assert ledger_a.balance_of("alice") == 100 * WAD


def test_route_call_is_dispatched_after_mint() -> None:
    _, gw_a, ledger_b, gw_b = _pair()
    gw_a.set_route("stake", 2, "staking-pool", {"action": "stake", "pool": "p1"})
    with pytest.raises(UnknownRoute):
        gw_a.execute_route("alice", "missing", WAD, now=0)

    intent = gw_a.execute_route("alice", "stake", 5 * WAD, now=0)
    assert intent.kind is IntentKind.ROUTE
    gw_b.on_intent_delivered(intent)
    assert ledger_b.balance_of("staking-pool") == 5 * WAD
    dispatched = gw_b.events.of(Event.ROUTE_CALL_DISPATCHED)
    assert len(dispatched) == 1
    assert dispatched[0]["call"]["payload"] == {"action": "stake", "pool": "p1"}
    assert dispatched[0]["recipient"] == "staking-pool"


# ---------------------------------------------------------------------------
# pause and monitoring
# ---------------------------------------------------------------------------


def test_pause_halts_send_and_receive() -> None:
    _, gw_a, _, gw_b = _pair()
    intent = gw_a.transfer_out("alice", 2, "bob", WAD, now=0)
    gw_a.pause()
    gw_b.pause()
    with pytest.raises(Paused):
        gw_a.transfer_out("alice", 2, "bob", WAD, now=0)
    with pytest.raises(Paused):
        gw_b.on_intent_delivered(intent)
    gw_b.unpause()
    gw_b.on_intent_delivered(intent)


def test_drain_outbox_hands_over_in_order() -> None:
    _, gw_a, _, _ = _pair()
    first = gw_a.transfer_out("alice", 2, "bob", WAD, now=0)
    second = gw_a.transfer_out("alice", 2, "bob", WAD, now=0)
    assert first.message_id != second.message_id
    assert gw_a.drain_outbox() == [first, second]
    assert gw_a.drain_outbox() == []
    status = gw_a.status()
    assert status["nonce"] == 2 and status["outbox"] == 0
