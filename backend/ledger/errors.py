"""Ledger failure taxonomy."""

from __future__ import annotations

from enum import Enum


class LedgerError(Exception):
    """Raised by gateways for ledger-side failures (reverts, RPC errors)."""


class FailureKind(str, Enum):
    NOT_YET_ELIGIBLE = "not_yet_eligible"
    ALREADY_SETTLED = "already_settled"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    UNKNOWN = "unknown"

    @property
    def benign(self) -> bool:
        """Expected race outcomes that need no operator attention."""

        return self in {FailureKind.NOT_YET_ELIGIBLE, FailureKind.ALREADY_SETTLED}


# Checked in order; the first matching fragment wins.
_MESSAGE_PATTERNS: tuple[tuple[str, FailureKind], ...] = (
    ("insufficient funds", FailureKind.INSUFFICIENT_FUNDS),
    ("still active", FailureKind.NOT_YET_ELIGIBLE),
    ("not ended", FailureKind.NOT_YET_ELIGIBLE),
    ("not active", FailureKind.ALREADY_SETTLED),
    ("already settled", FailureKind.ALREADY_SETTLED),
    ("already finalized", FailureKind.ALREADY_SETTLED),
)


def classify_failure(error: BaseException | str) -> FailureKind:
    message = str(error).lower()
    for fragment, kind in _MESSAGE_PATTERNS:
        if fragment in message:
            return kind
    return FailureKind.UNKNOWN
