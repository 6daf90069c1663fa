"""Settlement watchdog: scan scheduling, finalize-and-record, reconciliation."""

from .engine import ScanSummary, SettlementEngine
from .errors import DuplicateSettlementError, SettlementError, SettlementPersistenceError
from .reconciliation import ReconciliationReport, ReconciliationSweep
from .scheduler import ScanLock, ScanScheduler
from .store import DuplicateVoteError, SettlementStore

__all__ = [
    "DuplicateSettlementError",
    "DuplicateVoteError",
    "ReconciliationReport",
    "ReconciliationSweep",
    "ScanLock",
    "ScanScheduler",
    "ScanSummary",
    "SettlementEngine",
    "SettlementError",
    "SettlementPersistenceError",
    "SettlementStore",
]
