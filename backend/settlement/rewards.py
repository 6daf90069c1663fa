"""Integer-only reward maths for settled markets."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from app.domain import ParticipantOutcome, RewardSplit
from app.models import VoteSide

BPS_DENOMINATOR = 10_000


def winner_side(yes_votes: int, no_votes: int) -> VoteSide:
    # Strict majority; a tie goes to NO.
    return VoteSide.YES if yes_votes > no_votes else VoteSide.NO


def split_rewards(total_staked: int, creator_bps: int) -> RewardSplit:
    """Floor the creator cut; the pool takes the remainder so nothing is lost."""

    if total_staked < 0:
        raise ValueError("total_staked must not be negative")
    if not 0 <= creator_bps <= BPS_DENOMINATOR:
        raise ValueError("creator_bps must be between 0 and 10000")
    creator_reward = total_staked * creator_bps // BPS_DENOMINATOR
    return RewardSplit(
        total_staked=total_staked,
        creator_reward=creator_reward,
        voter_reward_pool=total_staked - creator_reward,
    )


def cost_limit(estimate: int, buffer_percent: int) -> int:
    return estimate * (100 + buffer_percent) // 100


def participant_outcomes(
    votes: Iterable[tuple[str, str, int]],
    winner: VoteSide,
    voter_reward_pool: int,
) -> list[ParticipantOutcome]:
    """Project each recorded ``(address, side, stake)`` vote onto the settled result.

    Winners share ``voter_reward_pool`` pro rata by stake with floor division, so
    the payouts never sum to more than the pool.
    """

    entries: Sequence[tuple[str, str, int]] = list(votes)
    winning_stake = sum(stake for _, side, stake in entries if side == winner.value)

    outcomes: list[ParticipantOutcome] = []
    for address, side, stake in entries:
        won = side == winner.value
        payout = 0
        if won and winning_stake > 0:
            payout = voter_reward_pool * stake // winning_stake
        outcomes.append(
            ParticipantOutcome(address=address, side=side, staked=stake, payout=payout, won=won)
        )
    return outcomes
