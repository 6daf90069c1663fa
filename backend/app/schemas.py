from datetime import datetime

from pydantic import BaseModel, Field, computed_field


class SettlementStatus(BaseModel):
    """Read-only projection of a market's settlement readiness."""

    market_id: int
    active: bool
    time_left: int
    ready_for_settlement: bool
    yes_votes: int
    no_votes: int
    total_staked: str
    recorded: bool = False


class SettlementParticipant(BaseModel):
    address: str
    side: str
    staked: str
    payout: str
    won: bool

    model_config = {"from_attributes": True}


class SettlementRecord(BaseModel):
    market_id: int
    creator: str
    deadline: datetime
    total_votes: int
    yes_votes: int
    no_votes: int
    total_staked: str
    winner_side: str
    creator_reward: str
    voter_reward_pool: str
    settlement_tx: str
    block_height: int
    cost_consumed: str
    settled_at: datetime
    participants: list[SettlementParticipant] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    def participant(self, address: str) -> SettlementParticipant | None:
        needle = address.lower()
        return next((p for p in self.participants if p.address.lower() == needle), None)


class UserSettlement(BaseModel):
    """One settled market seen from a single participant's side."""

    market_id: int
    winner_side: str
    user_vote: str
    user_won: bool
    user_staked: str
    user_payout: str
    total_votes: int
    yes_votes: int
    no_votes: int
    settlement_tx: str
    settled_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def net_result(self) -> str:
        if not self.user_won:
            return f"-{self.user_staked}" if self.user_staked != "0" else "0"
        return str(int(self.user_payout) - int(self.user_staked))


class UserVote(BaseModel):
    user_address: str
    market_id: int
    side: str
    stake_amount: str
    transaction_hash: str | None = None
    voted_at: datetime

    model_config = {"from_attributes": True}
