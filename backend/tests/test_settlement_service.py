from __future__ import annotations

from datetime import timedelta

import pytest

from app.services.settlement_service import SettlementService
from ledger import LedgerError


@pytest.fixture
def service(engine) -> SettlementService:
    svc = SettlementService(engine)
    yield svc
    svc.stop()


def test_status_for_market_past_deadline_reports_ready(service, ledger, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline, yes_votes=2, no_votes=5, total_staked=10**18)

    status = service.get_settlement_status(market_id)

    assert status.active
    assert status.ready_for_settlement
    assert status.time_left == -600
    assert status.total_staked == "1000000000000000000"
    assert not status.recorded


def test_status_for_open_market(service, ledger, now):
    market_id = ledger.add_market(deadline=now + timedelta(hours=2))

    status = service.get_settlement_status(market_id)

    assert status.time_left == 7200
    assert not status.ready_for_settlement


def test_status_after_settlement_reports_inactive(service, ledger, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline)
    service.run_scan()

    status = service.get_settlement_status(market_id)

    assert not status.active
    assert not status.ready_for_settlement
    assert status.recorded


def test_manual_settle_ignores_deadline(service, ledger, store, future_deadline):
    market_id = ledger.add_market(deadline=future_deadline, yes_votes=1, total_staked=40)

    assert service.manual_settle(market_id) is True
    assert store.find_by_market(market_id).creator_reward == "2"


def test_manual_settle_twice_is_rejected(service, ledger, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline)

    assert service.manual_settle(market_id) is True
    assert service.manual_settle(market_id) is False
    assert ledger.finalized == [market_id]


def test_manual_settle_propagates_read_errors(service, ledger):
    with pytest.raises(LedgerError):
        service.manual_settle(99)


def test_status_propagates_read_errors(service, ledger, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline)
    ledger.read_errors[market_id] = LedgerError("node down")

    with pytest.raises(LedgerError):
        service.get_settlement_status(market_id)


def test_run_scan_records_last_summary(service, ledger, past_deadline):
    ledger.add_market(deadline=past_deadline)

    summary = service.run_scan()

    assert summary.settled == 1
    assert service.last_summary is summary
    health = service.health()
    assert health["scans_completed"] == 1
    assert health["settlement_service"] == "stopped"


def test_start_is_idempotent(service):
    service.start()
    service.start()
    assert service.scheduler.running
    service.stop()
    assert not service.scheduler.running


def test_user_settlement_history(service, ledger, past_deadline):
    market_id = ledger.add_market(deadline=past_deadline, yes_votes=1, no_votes=1, total_staked=1_000)
    service.record_user_vote(user_address="0xWin", market_id=market_id, vote="no", stake_amount=100)
    service.record_user_vote(user_address="0xLose", market_id=market_id, vote="YES", stake_amount=100)
    service.run_scan()

    winner = service.user_settlements("0xwin")
    loser = service.user_settlements("0xLose")

    assert len(winner) == 1
    assert winner[0].winner_side == "no"
    assert winner[0].user_won
    assert winner[0].user_payout == "950"
    assert winner[0].net_result == "850"
    assert loser[0].net_result == "-100"
    assert service.user_settlements("0xnobody") == []


def test_record_user_vote_defaults_and_validation(service, test_settings):
    vote = service.record_user_vote(user_address="0xA", market_id=3, vote="yes")
    assert vote.stake_amount == test_settings.default_vote_stake

    with pytest.raises(ValueError):
        service.record_user_vote(user_address="0xB", market_id=3, vote="maybe")
    assert [v.market_id for v in service.user_votes("0xa")] == [3]


def test_reconcile_on_scan_reports_unrecorded_markets(engine, ledger, past_deadline, test_settings):
    test_settings.settlement_reconcile_on_scan = True
    service = SettlementService(engine)
    ledger.add_market(deadline=past_deadline, active=False)

    service.run_scan()

    assert service.reconcile().unrecorded == [0]


def test_status_for_subsecond_future_deadline_is_not_ready(service, ledger, now):
    market_id = ledger.add_market(deadline=now + timedelta(milliseconds=800))

    status = service.get_settlement_status(market_id)

    assert status.time_left == 1
    assert not status.ready_for_settlement


def test_reconcile_skips_manual_settle_awaiting_its_record(service, ledger, store, past_deadline, monkeypatch):
    market_id = ledger.add_market(deadline=past_deadline)
    reports = []
    insert = store.insert

    def insert_after_reconcile(payload):
        # The ledger already reports the market inactive at this point.
        reports.append(service.reconcile())
        return insert(payload)

    monkeypatch.setattr(store, "insert", insert_after_reconcile)

    assert service.manual_settle(market_id) is True
    assert reports[0].unrecorded == []
    assert reports[0].in_flight == [market_id]
    assert service.reconcile().in_flight == []
