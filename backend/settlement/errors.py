from __future__ import annotations


class SettlementError(Exception):
    """Base class for settlement engine failures."""


class DuplicateSettlementError(SettlementError):
    """A settlement record already exists for the market."""

    def __init__(self, market_id: int) -> None:
        super().__init__(f"Settlement record already exists for market {market_id}")
        self.market_id = market_id


class SettlementPersistenceError(SettlementError):
    """Writing a settlement record failed after all retry attempts."""

    def __init__(self, market_id: int, attempts: int, cause: BaseException) -> None:
        super().__init__(
            f"Failed to persist settlement record for market {market_id} "
            f"after {attempts} attempt(s): {cause}"
        )
        self.market_id = market_id
        self.attempts = attempts
