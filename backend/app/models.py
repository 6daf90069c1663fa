from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


class VoteSide(str, Enum):
    YES = "yes"
    NO = "no"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SettlementRecord(Base):
    """Audit entry written once per market after a confirmed finalize."""

    __tablename__ = "settlement_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[int] = mapped_column(Integer, nullable=False)
    creator: Mapped[str] = mapped_column(String, nullable=False)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    yes_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    no_votes: Mapped[int] = mapped_column(Integer, nullable=False)
    # Amounts are stored as decimal text so values above 2**63 survive any backend.
    total_staked: Mapped[str] = mapped_column(String(80), nullable=False)
    winner_side: Mapped[str] = mapped_column(String(8), nullable=False)
    creator_reward: Mapped[str] = mapped_column(String(80), nullable=False)
    voter_reward_pool: Mapped[str] = mapped_column(String(80), nullable=False)
    settlement_tx: Mapped[str] = mapped_column(String(128), nullable=False)
    block_height: Mapped[int] = mapped_column(Integer, nullable=False)
    cost_consumed: Mapped[str] = mapped_column(String(80), nullable=False)
    settled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    participants: Mapped[list["SettlementParticipant"]] = relationship(
        "SettlementParticipant",
        back_populates="settlement",
        cascade="all, delete-orphan",
        order_by="SettlementParticipant.id",
    )

    __table_args__ = (
        UniqueConstraint("market_id", name="uq_settlement_market"),
        Index("ix_settlement_records_settled_at", "settled_at"),
    )


class SettlementParticipant(Base):
    __tablename__ = "settlement_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    settlement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("settlement_records.id"), nullable=False
    )
    address: Mapped[str] = mapped_column(String, nullable=False, index=True)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    staked: Mapped[str] = mapped_column(String(80), nullable=False)
    payout: Mapped[str] = mapped_column(String(80), nullable=False, default="0")
    won: Mapped[bool] = mapped_column(Boolean, nullable=False)

    settlement: Mapped[SettlementRecord] = relationship(
        "SettlementRecord", back_populates="participants"
    )


class UserVote(Base):
    __tablename__ = "user_votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_address: Mapped[str] = mapped_column(String, nullable=False)
    market_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    stake_amount: Mapped[str] = mapped_column(String(80), nullable=False)
    transaction_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    voted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_address", "market_id", name="uq_user_vote_market"),
    )
