from __future__ import annotations

import os
import sys
import threading
from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.db import Base, build_db_components
from app.domain import FinalizeReceipt, MarketSnapshot
from ledger import LedgerError
from settlement import SettlementEngine, SettlementStore

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeLedger:
    """In-memory ledger that enforces the finalize precondition like the real contract."""

    def __init__(self, *, clock=lambda: NOW, enforce_deadline: bool = False) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._tx_counter = count(1)
        self.enforce_deadline = enforce_deadline
        self.markets: dict[int, MarketSnapshot] = {}
        self.count_error: Exception | None = None
        self.read_errors: dict[int, Exception] = {}
        self.estimate_errors: dict[int, Exception] = {}
        self.submit_errors: dict[int, Exception] = {}
        self.estimate = 100_000
        self.submitted: list[tuple[int, int]] = []
        self.finalized: list[int] = []
        self._receipts: dict[str, FinalizeReceipt] = {}
        self.before_submit = None

    def add_market(
        self,
        *,
        deadline: datetime,
        yes_votes: int = 0,
        no_votes: int = 0,
        total_staked: int = 0,
        active: bool = True,
        creator: str = "0xcreator000000000000000000000000000000001",
    ) -> int:
        market_id = len(self.markets)
        self.markets[market_id] = MarketSnapshot(
            market_id=market_id,
            creator=creator,
            deadline=deadline,
            yes_votes=yes_votes,
            no_votes=no_votes,
            total_staked=total_staked,
            active=active,
            metadata={"template": f"meme-{market_id}"},
        )
        return market_id

    def market_count(self) -> int:
        if self.count_error is not None:
            raise self.count_error
        return len(self.markets)

    def get_market(self, market_id: int) -> MarketSnapshot:
        if market_id in self.read_errors:
            raise self.read_errors[market_id]
        try:
            return self.markets[market_id]
        except KeyError as exc:
            raise LedgerError(f"execution reverted: Market does not exist ({market_id})") from exc

    def _check_precondition(self, market_id: int) -> None:
        market = self.markets[market_id]
        if not market.active:
            raise LedgerError("execution reverted: Market is not active")
        if self.enforce_deadline and market.deadline > self._clock():
            raise LedgerError("execution reverted: Market is still active")

    def estimate_finalize_cost(self, market_id: int) -> int:
        if market_id in self.estimate_errors:
            raise self.estimate_errors[market_id]
        self._check_precondition(market_id)
        return self.estimate

    def submit_finalize(self, market_id: int, *, cost_limit: int) -> str:
        if self.before_submit is not None:
            self.before_submit(market_id)
        if market_id in self.submit_errors:
            raise self.submit_errors[market_id]
        with self._lock:
            self._check_precondition(market_id)
            market = self.markets[market_id]
            self.markets[market_id] = MarketSnapshot(
                market_id=market.market_id,
                creator=market.creator,
                deadline=market.deadline,
                yes_votes=market.yes_votes,
                no_votes=market.no_votes,
                total_staked=market.total_staked,
                active=False,
                metadata=market.metadata,
            )
            tx_number = next(self._tx_counter)
            tx_id = f"0x{tx_number:064x}"
            self.submitted.append((market_id, cost_limit))
            self.finalized.append(market_id)
            self._receipts[tx_id] = FinalizeReceipt(
                tx_id=tx_id, block_height=1_000 + tx_number, cost_consumed=84_000
            )
        return tx_id

    def wait_for_confirmation(self, tx_id: str, *, timeout: float) -> FinalizeReceipt:
        return self._receipts[tx_id]


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        database_url="sqlite:///:memory:",
        settlement_scan_interval_seconds=0.05,
        settlement_db_retry_attempts=3,
        settlement_db_retry_backoff_seconds=[0.0],
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = build_db_components(f"sqlite:///{tmp_path / 'settlements.db'}")
    Base.metadata.create_all(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def store(session_factory, test_settings) -> SettlementStore:
    return SettlementStore.from_settings(test_settings, session_factory, sleep=lambda _: None)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def engine(ledger, store, test_settings) -> SettlementEngine:
    return SettlementEngine(ledger, store, test_settings, clock=lambda: NOW)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def past_deadline() -> datetime:
    return NOW - timedelta(minutes=10)


@pytest.fixture
def future_deadline() -> datetime:
    return NOW + timedelta(hours=6)
