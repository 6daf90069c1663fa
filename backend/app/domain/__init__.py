"""Domain types shared by the ledger gateway, settlement engine, and services."""

from .models import (
    AttemptStatus,
    FinalizeReceipt,
    MarketSnapshot,
    ParticipantOutcome,
    RewardSplit,
    SettlementAttempt,
)

__all__ = [
    "AttemptStatus",
    "FinalizeReceipt",
    "MarketSnapshot",
    "ParticipantOutcome",
    "RewardSplit",
    "SettlementAttempt",
]
