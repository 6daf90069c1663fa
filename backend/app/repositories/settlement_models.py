"""DTOs for settlement persistence operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class ParticipantInput:
    address: str
    side: str
    staked: int
    payout: int
    won: bool


@dataclass(slots=True)
class SettlementRecordInput:
    market_id: int
    creator: str
    deadline: datetime
    yes_votes: int
    no_votes: int
    total_staked: int
    winner_side: str
    creator_reward: int
    voter_reward_pool: int
    settlement_tx: str
    block_height: int
    cost_consumed: int
    settled_at: datetime
    participants: list[ParticipantInput] = field(default_factory=list)

    @property
    def total_votes(self) -> int:
        return self.yes_votes + self.no_votes


@dataclass(slots=True)
class UserVoteInput:
    user_address: str
    market_id: int
    side: str
    stake_amount: int
    transaction_hash: str | None = None
