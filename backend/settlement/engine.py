"""Settlement engine: find markets past their deadline and finalize each exactly once."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from app.core.config import Settings, get_settings
from app.domain import AttemptStatus, FinalizeReceipt, MarketSnapshot, SettlementAttempt
from app.models import utcnow
from app.repositories import ParticipantInput, SettlementRecordInput
from ledger import FailureKind, LedgerGateway, classify_failure

from .errors import DuplicateSettlementError
from .rewards import cost_limit, participant_outcomes, split_rewards, winner_side
from .store import SettlementStore

Clock = Callable[[], datetime]


_FAILURE_STATUS = {
    FailureKind.NOT_YET_ELIGIBLE: AttemptStatus.NOT_YET_ELIGIBLE,
    FailureKind.ALREADY_SETTLED: AttemptStatus.ALREADY_SETTLED,
    FailureKind.INSUFFICIENT_FUNDS: AttemptStatus.INSUFFICIENT_FUNDS,
}


@dataclass(slots=True)
class ScanSummary:
    started_at: datetime
    finished_at: datetime | None = None
    market_count: int = 0
    checked_markets: int = 0
    inactive: int = 0
    pending: int = 0
    eligible: int = 0
    settled: int = 0
    aborted_reason: str | None = None
    insufficient_funds: bool = False
    failures: list[dict[str, Any]] = field(default_factory=list)
    unrecorded: list[int] = field(default_factory=list)
    settled_markets: list[int] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return self.aborted_reason is not None

    def record_attempt(self, attempt: SettlementAttempt) -> None:
        if attempt.succeeded:
            self.settled += 1
            self.settled_markets.append(attempt.market_id)
            return
        if attempt.status is AttemptStatus.UNRECORDED:
            self.unrecorded.append(attempt.market_id)
        if attempt.status is AttemptStatus.INSUFFICIENT_FUNDS:
            self.insufficient_funds = True
        self.failures.append(
            {"market_id": attempt.market_id, "status": attempt.status.value, "reason": attempt.error}
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "market_count": self.market_count,
            "checked_markets": self.checked_markets,
            "inactive": self.inactive,
            "pending": self.pending,
            "eligible": self.eligible,
            "settled": self.settled,
            "settled_markets": self.settled_markets,
            "aborted_reason": self.aborted_reason,
            "insufficient_funds": self.insufficient_funds,
            "unrecorded": self.unrecorded,
            "failures": self.failures,
        }


class SettlementEngine:
    """Drive eligible markets through finalize, confirmation and record keeping.

    Markets are handled strictly one at a time: each finalize is confirmed
    before the next market is looked at, so this process never has more than
    one ledger transaction in flight.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        store: SettlementStore,
        settings: Settings | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self._gateway = gateway
        self._store = store
        self._clock = clock

    @property
    def gateway(self) -> LedgerGateway:
        return self._gateway

    @property
    def store(self) -> SettlementStore:
        return self._store

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Scan

    def scan(self) -> ScanSummary:
        summary = ScanSummary(started_at=self.now())
        logger.info("Checking for markets to settle")

        try:
            market_count = int(self._gateway.market_count())
        except Exception as exc:  # noqa: BLE001
            summary.aborted_reason = f"market_count failed: {exc}"
            summary.finished_at = self.now()
            logger.error("Settlement scan aborted, could not read market count: {}", exc)
            return summary

        summary.market_count = market_count
        if market_count == 0:
            summary.finished_at = self.now()
            logger.info("No markets found; nothing to settle")
            return summary

        for market_id in range(market_count):
            summary.checked_markets += 1
            try:
                snapshot = self._gateway.get_market(market_id)
                # Unusable deadlines (e.g. naive datetimes) fail here, for this market only.
                time_left = snapshot.seconds_remaining(self.now()) if snapshot.active else None
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to read market {} from the ledger: {}", market_id, exc)
                summary.failures.append(
                    {"market_id": market_id, "status": "read_failed", "reason": str(exc)}
                )
                continue

            if time_left is None:
                summary.inactive += 1
                continue

            if time_left > 0:
                summary.pending += 1
                logger.debug(
                    "Market {}: {}h {}m remaining",
                    market_id,
                    time_left // 3600,
                    (time_left % 3600) // 60,
                )
                continue

            summary.eligible += 1
            logger.info("Settling market {} ({}s overdue)", market_id, -time_left)
            try:
                attempt = self.settle_snapshot(snapshot)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error settling market {}", market_id)
                summary.failures.append(
                    {"market_id": market_id, "status": "error", "reason": str(exc)}
                )
                continue
            summary.record_attempt(attempt)

        summary.finished_at = self.now()
        if summary.settled:
            logger.info("Settled {} market(s) in this scan: {}", summary.settled, summary.settled_markets)
        else:
            logger.info("No markets settled in this scan")
        return summary

    # ------------------------------------------------------------------
    # Finalize and record

    def settle_market(self, market_id: int) -> SettlementAttempt:
        """Settle ``market_id`` from a freshly fetched snapshot, skipping the deadline check.

        Snapshot read errors propagate to the caller.
        """

        snapshot = self._gateway.get_market(market_id)
        return self.settle_snapshot(snapshot)

    def settle_snapshot(self, snapshot: MarketSnapshot) -> SettlementAttempt:
        market_id = snapshot.market_id

        if self._store.exists(market_id):
            logger.warning(
                "Market {} already has a settlement record; refusing to finalize it again",
                market_id,
            )
            return SettlementAttempt(market_id=market_id, status=AttemptStatus.ALREADY_RECORDED)

        logger.info(
            "Market {} stats: yes={}, no={}, total_staked={}, creator={}",
            market_id,
            snapshot.yes_votes,
            snapshot.no_votes,
            snapshot.total_staked,
            snapshot.creator[:10],
        )

        try:
            estimate = int(self._gateway.estimate_finalize_cost(market_id))
        except Exception as exc:  # noqa: BLE001
            return self._ledger_failure(market_id, exc, AttemptStatus.ESTIMATION_FAILED, stage="estimate")

        limit = cost_limit(estimate, self.settings.settlement_cost_buffer_percent)
        logger.debug("Market {} finalize cost estimate={} limit={}", market_id, estimate, limit)

        try:
            tx_id = self._gateway.submit_finalize(market_id, cost_limit=limit)
            logger.info("Finalize transaction for market {} sent: {}", market_id, tx_id)
            receipt = self._gateway.wait_for_confirmation(
                tx_id, timeout=self.settings.settlement_confirmation_timeout_seconds
            )
        except Exception as exc:  # noqa: BLE001
            return self._ledger_failure(market_id, exc, AttemptStatus.SUBMISSION_FAILED, stage="submit")

        logger.info(
            "Market {} finalized in block {} (tx {})", market_id, receipt.block_height, receipt.tx_id
        )
        return self._record(snapshot, receipt)

    def build_record(self, snapshot: MarketSnapshot, receipt: FinalizeReceipt) -> SettlementRecordInput:
        winner = winner_side(snapshot.yes_votes, snapshot.no_votes)
        split = split_rewards(snapshot.total_staked, self.settings.settlement_creator_reward_bps)
        votes = self._store.votes_for_market(snapshot.market_id)
        outcomes = participant_outcomes(
            ((vote.user_address, vote.side, int(vote.stake_amount)) for vote in votes),
            winner,
            split.voter_reward_pool,
        )
        return SettlementRecordInput(
            market_id=snapshot.market_id,
            creator=snapshot.creator,
            deadline=snapshot.deadline,
            yes_votes=snapshot.yes_votes,
            no_votes=snapshot.no_votes,
            total_staked=split.total_staked,
            winner_side=winner.value,
            creator_reward=split.creator_reward,
            voter_reward_pool=split.voter_reward_pool,
            settlement_tx=receipt.tx_id,
            block_height=receipt.block_height,
            cost_consumed=receipt.cost_consumed,
            settled_at=self.now(),
            participants=[
                ParticipantInput(
                    address=outcome.address,
                    side=outcome.side,
                    staked=outcome.staked,
                    payout=outcome.payout,
                    won=outcome.won,
                )
                for outcome in outcomes
            ],
        )

    def _record(self, snapshot: MarketSnapshot, receipt: FinalizeReceipt) -> SettlementAttempt:
        market_id = snapshot.market_id
        try:
            payload = self.build_record(snapshot, receipt)
            self._store.insert(payload)
        except DuplicateSettlementError as exc:
            logger.warning("Settlement record for market {} was written concurrently: {}", market_id, exc)
            return SettlementAttempt(
                market_id=market_id,
                status=AttemptStatus.ALREADY_RECORDED,
                tx_id=receipt.tx_id,
                block_height=receipt.block_height,
                error=str(exc),
            )
        except Exception as exc:  # noqa: BLE001
            logger.critical(
                "Market {} is finalized on the ledger (tx {}, block {}) but its settlement record "
                "could not be stored: {}",
                market_id,
                receipt.tx_id,
                receipt.block_height,
                exc,
            )
            return SettlementAttempt(
                market_id=market_id,
                status=AttemptStatus.UNRECORDED,
                tx_id=receipt.tx_id,
                block_height=receipt.block_height,
                error=str(exc),
                details={"cost_consumed": str(receipt.cost_consumed)},
            )

        logger.info(
            "Settlement record saved for market {} (winner={}, creator_reward={}, voter_reward_pool={})",
            market_id,
            payload.winner_side,
            payload.creator_reward,
            payload.voter_reward_pool,
        )
        return SettlementAttempt(
            market_id=market_id,
            status=AttemptStatus.SETTLED,
            tx_id=receipt.tx_id,
            block_height=receipt.block_height,
        )

    def _ledger_failure(
        self,
        market_id: int,
        exc: BaseException,
        default_status: AttemptStatus,
        *,
        stage: str,
    ) -> SettlementAttempt:
        kind = classify_failure(exc)
        status = _FAILURE_STATUS.get(kind, default_status)

        if kind is FailureKind.NOT_YET_ELIGIBLE:
            logger.info("Market {} not ready yet ({}): {}", market_id, stage, exc)
        elif kind is FailureKind.ALREADY_SETTLED:
            logger.info("Market {} already settled on the ledger ({}): {}", market_id, stage, exc)
        elif kind is FailureKind.INSUFFICIENT_FUNDS:
            logger.critical(
                "Insufficient funds to finalize market {}; settlements will stall until the "
                "relayer account is topped up: {}",
                market_id,
                exc,
            )
        elif stage == "estimate":
            logger.warning("Cost estimate for market {} failed; will retry next scan: {}", market_id, exc)
        else:
            logger.error("Failed to finalize market {}; will retry next scan: {}", market_id, exc)

        return SettlementAttempt(
            market_id=market_id,
            status=status,
            error=str(exc),
            details={"stage": stage, "failure_kind": kind.value},
        )
