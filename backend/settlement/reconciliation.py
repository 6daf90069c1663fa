"""Find markets the ledger reports as finalized that have no settlement record."""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from loguru import logger

from app.models import utcnow
from ledger import LedgerGateway

from .engine import Clock
from .store import SettlementStore


@dataclass(slots=True)
class ReconciliationReport:
    checked_markets: int = 0
    inactive_markets: int = 0
    recorded_markets: int = 0
    unrecorded: list[int] = field(default_factory=list)
    in_flight: list[int] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    aborted_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked_markets": self.checked_markets,
            "inactive_markets": self.inactive_markets,
            "recorded_markets": self.recorded_markets,
            "unrecorded": self.unrecorded,
            "in_flight": self.in_flight,
            "failures": self.failures,
            "aborted_reason": self.aborted_reason,
        }


class ReconciliationSweep:
    """Compare ledger-inactive markets against the store.

    A market that is inactive on the ledger, past its deadline, and missing from
    the store was most likely finalized by a process that died before writing
    its record. The sweep only reports these; it cannot rebuild a record because
    the finalize transaction is not known to the watchdog.
    """

    def __init__(self, gateway: LedgerGateway, store: SettlementStore, *, clock: Clock = utcnow) -> None:
        self._gateway = gateway
        self._store = store
        self._clock = clock

    def run(self, *, exclude: Collection[int] = ()) -> ReconciliationReport:
        """Sweep every market; ids in ``exclude`` have a settle attempt in flight and are skipped."""

        report = ReconciliationReport()
        try:
            market_count = int(self._gateway.market_count())
        except Exception as exc:  # noqa: BLE001
            report.aborted_reason = f"market_count failed: {exc}"
            logger.error("Reconciliation sweep aborted, could not read market count: {}", exc)
            return report

        now: datetime = self._clock()
        inactive: list[int] = []
        for market_id in range(market_count):
            report.checked_markets += 1
            if market_id in exclude:
                report.in_flight.append(market_id)
                continue
            try:
                snapshot = self._gateway.get_market(market_id)
                finished = not snapshot.active and snapshot.seconds_remaining(now) <= 0
            except Exception as exc:  # noqa: BLE001
                report.failures.append({"market_id": market_id, "reason": str(exc)})
                logger.error("Reconciliation could not read market {}: {}", market_id, exc)
                continue
            if finished:
                inactive.append(market_id)

        report.inactive_markets = len(inactive)
        recorded = self._store.recorded_market_ids(inactive)
        report.recorded_markets = len(recorded)
        report.unrecorded = [market_id for market_id in inactive if market_id not in recorded]

        for market_id in report.unrecorded:
            logger.critical(
                "Market {} is finalized on the ledger but has no settlement record", market_id
            )
        logger.info(
            "Reconciliation sweep finished: checked={}, inactive={}, unrecorded={}",
            report.checked_markets,
            report.inactive_markets,
            len(report.unrecorded),
        )
        return report
