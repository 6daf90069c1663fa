from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy.orm import Session

from app import schemas
from app.repositories import SettlementRecordInput, SettlementRepository, UserVoteInput


def settlement_exists(session: Session, market_id: int) -> bool:
    return SettlementRepository(session).exists(market_id)


def insert_settlement(session: Session, payload: SettlementRecordInput) -> schemas.SettlementRecord:
    record = SettlementRepository(session).insert(payload)
    return schemas.SettlementRecord.model_validate(record)


def get_settlement(session: Session, market_id: int) -> schemas.SettlementRecord | None:
    record = SettlementRepository(session).find_by_market(market_id)
    if record is None:
        return None
    return schemas.SettlementRecord.model_validate(record)


def list_recent_settlements(session: Session, *, limit: int = 50) -> list[schemas.SettlementRecord]:
    records = SettlementRepository(session).list_recent(limit=limit)
    return [schemas.SettlementRecord.model_validate(record) for record in records]


def recorded_market_ids(session: Session, market_ids: Sequence[int]) -> set[int]:
    return SettlementRepository(session).recorded_market_ids(list(market_ids))


def list_participant_settlements(
    session: Session, address: str
) -> list[schemas.SettlementRecord]:
    records = SettlementRepository(session).find_by_participant(address)
    return [schemas.SettlementRecord.model_validate(record) for record in records]


def record_user_vote(session: Session, payload: UserVoteInput) -> schemas.UserVote:
    vote = SettlementRepository(session).record_vote(payload)
    return schemas.UserVote.model_validate(vote)


def get_user_vote(session: Session, user_address: str, market_id: int) -> schemas.UserVote | None:
    vote = SettlementRepository(session).get_vote(user_address, market_id)
    if vote is None:
        return None
    return schemas.UserVote.model_validate(vote)


def list_market_votes(session: Session, market_id: int) -> list[schemas.UserVote]:
    votes = SettlementRepository(session).votes_for_market(market_id)
    return [schemas.UserVote.model_validate(vote) for vote in votes]


def list_user_votes(session: Session, user_address: str) -> list[schemas.UserVote]:
    votes = SettlementRepository(session).votes_for_user(user_address)
    return [schemas.UserVote.model_validate(vote) for vote in votes]
