"""Typed snapshots exchanged between the ledger gateway and the settlement engine."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass(frozen=True, slots=True)
class MarketSnapshot:
    """Point-in-time view of one ledger market. Re-fetch before every decision."""

    market_id: int
    creator: str
    deadline: datetime
    yes_votes: int
    no_votes: int
    total_staked: int
    active: bool
    metadata: Any = None

    def seconds_remaining(self, now: datetime) -> int:
        """Whole seconds until the deadline, rounded up so any future deadline is at least 1."""

        return math.ceil((self.deadline - now).total_seconds())

    def is_eligible(self, now: datetime) -> bool:
        return self.active and self.seconds_remaining(now) <= 0


@dataclass(frozen=True, slots=True)
class FinalizeReceipt:
    """Confirmation data for a mined finalize transaction."""

    tx_id: str
    block_height: int
    cost_consumed: int


@dataclass(frozen=True, slots=True)
class RewardSplit:
    total_staked: int
    creator_reward: int
    voter_reward_pool: int


@dataclass(frozen=True, slots=True)
class ParticipantOutcome:
    address: str
    side: str
    staked: int
    payout: int
    won: bool


class AttemptStatus(str, Enum):
    SETTLED = "settled"
    ALREADY_RECORDED = "already_recorded"
    ALREADY_SETTLED = "already_settled"
    NOT_YET_ELIGIBLE = "not_yet_eligible"
    ESTIMATION_FAILED = "estimation_failed"
    SUBMISSION_FAILED = "submission_failed"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    UNRECORDED = "unrecorded"


@dataclass(slots=True)
class SettlementAttempt:
    """Outcome of one finalize-and-record attempt for a single market."""

    market_id: int
    status: AttemptStatus
    tx_id: str | None = None
    block_height: int | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status is AttemptStatus.SETTLED
