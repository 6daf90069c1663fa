"""Control surface over the settlement watchdog used by the HTTP layer and CLI."""

from __future__ import annotations

import threading
from collections import Counter
from typing import Any

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from app import schemas
from app.core.config import Settings, get_settings
from app.domain import SettlementAttempt
from app.models import VoteSide, utcnow
from app.repositories import UserVoteInput
from ledger import LedgerGateway
from settlement import (
    ReconciliationReport,
    ReconciliationSweep,
    ScanScheduler,
    ScanSummary,
    SettlementEngine,
    SettlementStore,
)
from settlement.engine import Clock


class SettlementService:
    """Facade combining the engine, its scheduler and the record store.

    Manual settlement bypasses the scheduler's lock but shares the engine's
    finalize-and-record path, so it gets the same at-most-once guarantees.
    """

    def __init__(
        self,
        engine: SettlementEngine,
        *,
        scheduler: ScanScheduler | None = None,
        reconciliation: ReconciliationSweep | None = None,
    ) -> None:
        self._engine = engine
        self._store = engine.store
        self._settings = engine.settings
        self._reconciliation = reconciliation or ReconciliationSweep(
            engine.gateway, engine.store, clock=engine.now
        )
        self._in_flight: Counter[int] = Counter()
        self._in_flight_lock = threading.Lock()
        self._scheduler = scheduler or ScanScheduler(
            self._scheduled_scan,
            self._settings.settlement_scan_interval_seconds,
            run_on_start=self._settings.settlement_scan_on_start,
            on_complete=self._after_scan,
        )
        self.last_summary: ScanSummary | None = None

    @classmethod
    def build(
        cls,
        gateway: LedgerGateway,
        settings: Settings | None = None,
        *,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock = utcnow,
    ) -> "SettlementService":
        settings = settings or get_settings()
        store = SettlementStore.from_settings(settings, session_factory)
        return cls(SettlementEngine(gateway, store, settings, clock=clock))

    @property
    def scheduler(self) -> ScanScheduler:
        return self._scheduler

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> None:
        """Begin the recurring scan. Calling it again is a no-op."""

        if self._scheduler.start():
            logger.info("Auto-settlement service started")

    def stop(self) -> None:
        self._scheduler.stop()

    def run_scan(self) -> ScanSummary | None:
        """Run one scan now through the scheduler's lock; ``None`` if one is in flight."""

        return self._scheduler.tick()

    def _scheduled_scan(self) -> ScanSummary:
        # Runs under the scan lock, so the sweep never overlaps a scheduled scan.
        summary = self._engine.scan()
        if self._settings.settlement_reconcile_on_scan and not summary.aborted:
            self.reconcile()
        return summary

    def _after_scan(self, summary: ScanSummary) -> None:
        self.last_summary = summary

    def health(self) -> dict[str, Any]:
        last = self.last_summary
        return {
            "status": "healthy",
            "settlement_service": "running" if self._scheduler.running else "stopped",
            "scan_in_progress": self._scheduler.lock.held,
            "scans_completed": self._scheduler.completed,
            "scans_skipped": self._scheduler.skipped,
            "last_scan_finished_at": last.finished_at.isoformat() if last and last.finished_at else None,
            "timestamp": utcnow().isoformat(),
        }

    # ------------------------------------------------------------------
    # Commands

    def settle(self, market_id: int) -> SettlementAttempt:
        logger.info("Manual settlement requested for market {}", market_id)
        with self._in_flight_lock:
            self._in_flight[market_id] += 1
        try:
            return self._engine.settle_market(market_id)
        except Exception:
            logger.exception("Manual settlement failed for market {}", market_id)
            raise
        finally:
            with self._in_flight_lock:
                self._in_flight[market_id] -= 1
                if self._in_flight[market_id] <= 0:
                    del self._in_flight[market_id]

    def manual_settle(self, market_id: int) -> bool:
        return self.settle(market_id).succeeded

    def reconcile(self) -> ReconciliationReport:
        """Report finalized-but-unrecorded markets, skipping manual settles still in progress."""

        with self._in_flight_lock:
            in_flight = frozenset(self._in_flight)
        return self._reconciliation.run(exclude=in_flight)

    def record_user_vote(
        self,
        *,
        user_address: str,
        market_id: int,
        vote: str,
        stake_amount: int | str | None = None,
        transaction_hash: str | None = None,
    ) -> schemas.UserVote:
        side = VoteSide(vote.lower())
        stake = int(stake_amount if stake_amount is not None else self._settings.default_vote_stake)
        if stake < 0:
            raise ValueError("stake_amount must not be negative")
        return self._store.record_vote(
            UserVoteInput(
                user_address=user_address,
                market_id=market_id,
                side=side.value,
                stake_amount=stake,
                transaction_hash=transaction_hash,
            )
        )

    # ------------------------------------------------------------------
    # Queries

    def get_settlement_status(self, market_id: int) -> schemas.SettlementStatus:
        try:
            snapshot = self._engine.gateway.get_market(market_id)
        except Exception:
            logger.exception("Error getting settlement status for market {}", market_id)
            raise
        now = self._engine.now()
        time_left = snapshot.seconds_remaining(now)
        return schemas.SettlementStatus(
            market_id=market_id,
            active=snapshot.active,
            time_left=time_left,
            ready_for_settlement=snapshot.is_eligible(now),
            yes_votes=snapshot.yes_votes,
            no_votes=snapshot.no_votes,
            total_staked=str(snapshot.total_staked),
            recorded=self._store.exists(market_id),
        )

    def get_settlement(self, market_id: int) -> schemas.SettlementRecord | None:
        return self._store.find_by_market(market_id)

    def recent_settlements(self, *, limit: int = 50) -> list[schemas.SettlementRecord]:
        return self._store.list_recent(limit=limit)

    def user_votes(self, user_address: str) -> list[schemas.UserVote]:
        return self._store.votes_for_user(user_address)

    def user_settlements(self, user_address: str) -> list[schemas.UserSettlement]:
        history: list[schemas.UserSettlement] = []
        for record in self._store.find_by_participant(user_address):
            participation = record.participant(user_address)
            if participation is None:
                continue
            history.append(
                schemas.UserSettlement(
                    market_id=record.market_id,
                    winner_side=record.winner_side,
                    user_vote=participation.side,
                    user_won=participation.won,
                    user_staked=participation.staked,
                    user_payout=participation.payout,
                    total_votes=record.total_votes,
                    yes_votes=record.yes_votes,
                    no_votes=record.no_votes,
                    settlement_tx=record.settlement_tx,
                    settled_at=record.settled_at,
                )
            )
        return history
