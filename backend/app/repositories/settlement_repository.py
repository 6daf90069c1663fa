"""Settlement record and vote persistence helpers."""

from __future__ import annotations

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session, selectinload

from app.models import SettlementParticipant, SettlementRecord, UserVote

from .settlement_models import SettlementRecordInput, UserVoteInput


class SettlementRepository:
    """Append-only access to settlement records keyed by market id."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Settlement records

    def exists(self, market_id: int) -> bool:
        query = select(func.count(SettlementRecord.id)).where(
            SettlementRecord.market_id == market_id
        )
        return bool(self._session.execute(query).scalar_one())

    def insert(self, payload: SettlementRecordInput) -> SettlementRecord:
        record = SettlementRecord(
            market_id=payload.market_id,
            creator=payload.creator,
            deadline=payload.deadline,
            total_votes=payload.total_votes,
            yes_votes=payload.yes_votes,
            no_votes=payload.no_votes,
            total_staked=str(payload.total_staked),
            winner_side=payload.winner_side,
            creator_reward=str(payload.creator_reward),
            voter_reward_pool=str(payload.voter_reward_pool),
            settlement_tx=payload.settlement_tx,
            block_height=payload.block_height,
            cost_consumed=str(payload.cost_consumed),
            settled_at=payload.settled_at,
        )
        for participant in payload.participants:
            record.participants.append(
                SettlementParticipant(
                    address=participant.address,
                    side=participant.side,
                    staked=str(participant.staked),
                    payout=str(participant.payout),
                    won=participant.won,
                )
            )
        self._session.add(record)
        # Flush so a duplicate market id fails here, inside the caller's transaction.
        self._session.flush()
        return record

    def find_by_market(self, market_id: int) -> SettlementRecord | None:
        query = (
            select(SettlementRecord)
            .options(selectinload(SettlementRecord.participants))
            .where(SettlementRecord.market_id == market_id)
        )
        return self._session.execute(query).scalar_one_or_none()

    def find_by_participant(self, address: str) -> list[SettlementRecord]:
        query = (
            select(SettlementRecord)
            .join(SettlementRecord.participants)
            .options(selectinload(SettlementRecord.participants))
            .where(func.lower(SettlementParticipant.address) == address.lower())
            .order_by(desc(SettlementRecord.settled_at))
            .distinct()
        )
        return list(self._session.execute(query).scalars().all())

    def list_recent(self, *, limit: int = 50) -> list[SettlementRecord]:
        query = (
            select(SettlementRecord)
            .options(selectinload(SettlementRecord.participants))
            .order_by(desc(SettlementRecord.settled_at))
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())

    def recorded_market_ids(self, market_ids: list[int]) -> set[int]:
        if not market_ids:
            return set()
        query = select(SettlementRecord.market_id).where(
            SettlementRecord.market_id.in_(market_ids)
        )
        return set(self._session.execute(query).scalars().all())

    # ------------------------------------------------------------------
    # Votes

    def get_vote(self, user_address: str, market_id: int) -> UserVote | None:
        query = select(UserVote).where(
            func.lower(UserVote.user_address) == user_address.lower(),
            UserVote.market_id == market_id,
        )
        return self._session.execute(query).scalar_one_or_none()

    def record_vote(self, payload: UserVoteInput) -> UserVote:
        vote = UserVote(
            user_address=payload.user_address,
            market_id=payload.market_id,
            side=payload.side,
            stake_amount=str(payload.stake_amount),
            transaction_hash=payload.transaction_hash,
        )
        self._session.add(vote)
        self._session.flush()
        return vote

    def votes_for_market(self, market_id: int) -> list[UserVote]:
        query = (
            select(UserVote)
            .where(UserVote.market_id == market_id)
            .order_by(UserVote.voted_at, UserVote.id)
        )
        return list(self._session.execute(query).scalars().all())

    def votes_for_user(self, user_address: str) -> list[UserVote]:
        query = (
            select(UserVote)
            .where(func.lower(UserVote.user_address) == user_address.lower())
            .order_by(desc(UserVote.voted_at))
        )
        return list(self._session.execute(query).scalars().all())
