from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from app.domain import AttemptStatus
from app.repositories import UserVoteInput
from ledger import LedgerError
from settlement import SettlementEngine, SettlementPersistenceError


def test_scan_settles_market_past_deadline(engine, ledger, store, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline, yes_votes=7, no_votes=3, total_staked=101)

    summary = engine.scan()

    assert summary.settled == 1
    assert summary.settled_markets == [market_id]
    assert ledger.finalized == [market_id]
    record = store.find_by_market(market_id)
    assert record is not None
    assert record.winner_side == "yes"
    assert record.total_votes == 10
    assert record.total_staked == "101"
    assert record.creator_reward == "5"
    assert record.voter_reward_pool == "96"
    assert record.settlement_tx.startswith("0x")
    assert record.block_height == 1001
    assert record.cost_consumed == "84000"


def test_scan_never_finalizes_market_before_deadline(engine, ledger, store, future_deadline):
    market_id = ledger.add_market(deadline=future_deadline, yes_votes=1, total_staked=10)

    summary = engine.scan()

    assert summary.pending == 1
    assert summary.settled == 0
    assert ledger.finalized == []
    assert not store.exists(market_id)


def test_scan_skips_inactive_markets(engine, ledger, past_deadline):
    ledger.add_market(deadline=past_deadline, active=False)

    summary = engine.scan()

    assert summary.inactive == 1
    assert ledger.submitted == []


def test_tie_records_no_as_winner(engine, ledger, store, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline, yes_votes=4, no_votes=4, total_staked=80)

    engine.scan()

    assert store.find_by_market(market_id).winner_side == "no"


def test_submission_uses_buffered_cost_limit(engine, ledger, past_deadline):
    ledger.estimate = 50_000
    ledger.add_market(deadline=past_deadline)

    engine.scan()

    assert ledger.submitted == [(0, 60_000)]


def test_estimate_failure_does_not_block_next_market(engine, ledger, store, past_deadline):
    first = ledger.add_market(deadline=past_deadline, total_staked=10)
    second = ledger.add_market(deadline=past_deadline, total_staked=20)
    ledger.estimate_errors[first] = LedgerError("rpc timeout")

    summary = engine.scan()

    assert summary.settled_markets == [second]
    assert summary.failures == [
        {"market_id": first, "status": "estimation_failed", "reason": "rpc timeout"}
    ]
    assert not store.exists(first)
    assert store.exists(second)


def test_read_failure_only_skips_that_market(engine, ledger, past_deadline):
    broken = ledger.add_market(deadline=past_deadline)
    healthy = ledger.add_market(deadline=past_deadline)
    ledger.read_errors[broken] = LedgerError("bad response")

    summary = engine.scan()

    assert summary.settled_markets == [healthy]
    assert summary.failures[0]["status"] == "read_failed"


def test_market_count_failure_aborts_scan_without_raising(engine, ledger):
    ledger.count_error = LedgerError("node unreachable")

    summary = engine.scan()

    assert summary.aborted
    assert "node unreachable" in summary.aborted_reason
    assert summary.checked_markets == 0


def test_markets_processed_in_index_order(engine, ledger, past_deadline, future_deadline):
    ledger.add_market(deadline=past_deadline)
    ledger.add_market(deadline=future_deadline)
    ledger.add_market(deadline=past_deadline)
    ledger.add_market(deadline=past_deadline, active=False)
    ledger.add_market(deadline=past_deadline)

    summary = engine.scan()

    assert ledger.finalized == [0, 2, 4]
    assert summary.to_dict()["checked_markets"] == 5
    assert summary.pending == 1
    assert summary.inactive == 1


def test_existing_record_prevents_second_finalize(engine, ledger, store, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline)
    engine.scan()
    # Simulate a ledger that still reports the market as active.
    ledger.markets[market_id] = replace(ledger.markets[market_id], active=True)

    attempt = engine.settle_snapshot(ledger.get_market(market_id))

    assert attempt.status is AttemptStatus.ALREADY_RECORDED
    assert ledger.finalized == [market_id]


def test_already_settled_race_is_benign(engine, ledger, store, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline)
    ledger.submit_errors[market_id] = LedgerError("execution reverted: Market is not active")

    attempt = engine.settle_market(market_id)

    assert attempt.status is AttemptStatus.ALREADY_SETTLED
    assert attempt.details["failure_kind"] == "already_settled"
    assert not store.exists(market_id)


def test_not_yet_eligible_is_classified(ledger, store, test_settings, now, future_deadline):
    ledger.enforce_deadline = True
    engine = SettlementEngine(ledger, store, test_settings, clock=lambda: now)
    market_id = ledger.add_market(deadline=future_deadline)

    attempt = engine.settle_market(market_id)

    assert attempt.status is AttemptStatus.NOT_YET_ELIGIBLE
    assert ledger.finalized == []


def test_insufficient_funds_flags_summary(engine, ledger, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline)
    ledger.submit_errors[market_id] = LedgerError("insufficient funds for gas")

    summary = engine.scan()

    assert summary.insufficient_funds
    assert summary.failures[0]["status"] == "insufficient_funds"


def test_unknown_submission_failure(engine, ledger, store, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline)
    ledger.submit_errors[market_id] = RuntimeError("nonce too low")

    attempt = engine.settle_market(market_id)

    assert attempt.status is AttemptStatus.SUBMISSION_FAILED
    assert not store.exists(market_id)


def test_persistence_failure_is_reported_as_unrecorded(ledger, test_settings, now, past_deadline):
    store = MagicMock()
    store.exists.return_value = False
    store.votes_for_market.return_value = []
    store.insert.side_effect = SettlementPersistenceError(
        0, 3, OperationalError("INSERT", {}, Exception("disk I/O error"))
    )
    engine = SettlementEngine(ledger, store, test_settings, clock=lambda: now)
    ledger.add_market(deadline=past_deadline)

    summary = engine.scan()

    assert summary.unrecorded == [0]
    assert summary.settled == 0
    assert ledger.finalized == [0]
    assert summary.failures[0]["status"] == "unrecorded"


def test_participants_are_recorded_from_votes(engine, ledger, store, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline, yes_votes=2, no_votes=1, total_staked=300)
    store.record_vote(UserVoteInput(user_address="0xAAA", market_id=market_id, side="yes", stake_amount=100))
    store.record_vote(UserVoteInput(user_address="0xBBB", market_id=market_id, side="yes", stake_amount=100))
    store.record_vote(UserVoteInput(user_address="0xCCC", market_id=market_id, side="no", stake_amount=100))

    engine.scan()

    record = store.find_by_market(market_id)
    payouts = {p.address: (p.won, p.payout) for p in record.participants}
    # 300 staked, 15 to the creator, 285 split between two equal winning stakes.
    assert payouts == {"0xAAA": (True, "142"), "0xBBB": (True, "142"), "0xCCC": (False, "0")}


def test_concurrent_manual_and_scheduled_settle_write_one_record(engine, ledger, store, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline, yes_votes=1, total_staked=50)
    barrier = threading.Barrier(2)
    ledger.before_submit = lambda _market_id: barrier.wait(timeout=5)
    results = []

    def settle():
        results.append(engine.settle_market(market_id))

    threads = [threading.Thread(target=settle) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    statuses = sorted(result.status.value for result in results)
    assert statuses == ["already_settled", "settled"]
    assert ledger.finalized == [market_id]
    assert len(store.list_recent()) == 1


def test_subsecond_future_deadline_is_still_pending(engine, ledger, store, now):
    market_id = ledger.add_market(deadline=now + timedelta(milliseconds=800))

    summary = engine.scan()

    assert summary.pending == 1
    assert summary.eligible == 0
    assert ledger.finalized == []
    assert not store.exists(market_id)


def test_unusable_deadline_only_skips_that_market(engine, ledger, past_deadline):
    naive = ledger.add_market(deadline=datetime(2026, 1, 15, 11, 0))
    healthy = ledger.add_market(deadline=past_deadline)

    summary = engine.scan()

    assert summary.settled_markets == [healthy]
    assert summary.failures[0]["market_id"] == naive
    assert summary.failures[0]["status"] == "read_failed"
    assert ledger.finalized == [healthy]
