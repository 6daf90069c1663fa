"""Repository abstractions for database interactions."""

from .settlement_models import ParticipantInput, SettlementRecordInput, UserVoteInput
from .settlement_repository import SettlementRepository

__all__ = [
    "ParticipantInput",
    "SettlementRecordInput",
    "SettlementRepository",
    "UserVoteInput",
]
