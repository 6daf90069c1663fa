"""Run the settlement watchdog, a single scan, or one operator command."""

from __future__ import annotations

import argparse
import json
import sys
import threading
from pathlib import Path
from typing import Any

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import init_db
from app.services.settlement_service import SettlementService
from ledger import build_gateway


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Finalize markets whose deadline has passed and record each settlement",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run a single scan and exit")
    mode.add_argument(
        "--market-id",
        type=int,
        default=None,
        help="Force settlement of one market, even before its deadline",
    )
    mode.add_argument(
        "--status",
        type=int,
        default=None,
        metavar="MARKET_ID",
        help="Print the settlement status of one market and exit",
    )
    mode.add_argument(
        "--reconcile",
        action="store_true",
        help="List markets finalized on the ledger that have no settlement record",
    )
    parser.add_argument(
        "--gateway",
        default=None,
        help="Override LEDGER_GATEWAY_FACTORY ('package.module:callable')",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary of the command is written",
    )
    return parser.parse_args(argv)


def _configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)


def _write_summary(payload: dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, default=str, indent=2))
    logger.info("Summary written to {}", path)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    _configure_logging(settings)

    factory_path = args.gateway or settings.ledger_gateway_factory
    if not factory_path:
        logger.error("No ledger gateway configured; set LEDGER_GATEWAY_FACTORY or pass --gateway")
        return 2

    init_db()
    service = SettlementService.build(build_gateway(factory_path), settings)

    payload: dict[str, Any] | None = None
    exit_code = 0
    if args.once:
        summary = service.run_scan()
        payload = summary.to_dict() if summary else {"skipped": True}
        if summary and (summary.aborted or summary.unrecorded or summary.insufficient_funds):
            exit_code = 1
    elif args.market_id is not None:
        attempt = service.settle(args.market_id)
        payload = {
            "market_id": attempt.market_id,
            "status": attempt.status.value,
            "tx_id": attempt.tx_id,
            "block_height": attempt.block_height,
            "error": attempt.error,
        }
        exit_code = 0 if attempt.succeeded else 1
    elif args.status is not None:
        payload = service.get_settlement_status(args.status).model_dump()
        print(json.dumps(payload, indent=2))
    elif args.reconcile:
        report = service.reconcile()
        payload = report.to_dict()
        exit_code = 1 if report.unrecorded or report.aborted_reason else 0
    else:
        service.start()
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            logger.info("Interrupted; stopping settlement watchdog")
        finally:
            service.stop()

    if payload is not None and args.summary_path:
        _write_summary(payload, args.summary_path)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
