"""
Manual operator commands against the JSON-backed store.

    python -m tokensale_app.cli --action WHALE_REFUND [--pool 100000]
    python -m tokensale_app.cli --action VESTING
    python -m tokensale_app.cli --action DIVIDEND --pot 10000
    python -m tokensale_app.cli --action PULSE_CHECK
    python -m tokensale_app.cli --action RECONCILE
    python -m tokensale_app.cli --action SCHEDULER
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from tokensale_app.audit import configure_logging
from tokensale_app.config import load_config
from tokensale_app.engine import TokenSaleEngine, build_engine
from tokensale_app.errors import TokenSaleError
from tokensale_app.scheduler import Scheduler
from tokensale_app.services.pricing import price_snapshot
from tokensale_app.services.reconciliation import reconcile
from tokensale_app.store import JsonFileRecordStore
from tokensale_app.utils.json_safety import sanitize

logger = logging.getLogger(__name__)

ACTIONS = ("WHALE_REFUND", "VESTING", "DIVIDEND", "PULSE_CHECK", "RECONCILE", "SCHEDULER")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tokensale", description="Token sale settlement engine")
    parser.add_argument("--action", required=True, type=str.upper, choices=ACTIONS)
    parser.add_argument("--pool", type=float, default=None, help="final pool for WHALE_REFUND (default: summed)")
    parser.add_argument("--pot", type=float, default=None, help="profit pot for DIVIDEND")
    parser.add_argument("--data-file", default=None, help="JSON store path (default: config data_file)")
    return parser


def _print(obj) -> None:
    print(json.dumps(sanitize(obj), indent=2))


def dispatch(engine: TokenSaleEngine, args: argparse.Namespace) -> int:
    if args.action == "WHALE_REFUND":
        result = engine.settlement.run(args.pool)
        logger.warning(
            "MANUAL_CLI_OVERRIDE: settlement executed. Total refunded: %s",
            result.total_refunded,
        )
        _print(result)
        return 0 if result.success else 1

    if args.action == "VESTING":
        result = engine.vesting.run()
        _print(result)
        return 0 if result.success else 1

    if args.action == "DIVIDEND":
        if args.pot is None:
            print("--pot is required for DIVIDEND", file=sys.stderr)
            return 2
        result = engine.dividends.run(args.pot)
        _print(result)
        return 0 if result.success else 1

    if args.action == "PULSE_CHECK":
        _print({
            "pioneers": engine.store.count_accounts(),
            "snapshot": price_snapshot(engine.store, engine.config),
        })
        return 0

    if args.action == "RECONCILE":
        report = reconcile(engine.store, engine.config)
        _print(report)
        return 1 if report.needs_attention else 0

    scheduler = Scheduler(engine.scheduled_jobs())
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        scheduler.stop()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config()
    configure_logging(config.audit_log_dir)

    logger.info("Manual engine activated: %s", args.action)
    try:
        store = JsonFileRecordStore(args.data_file or config.data_file)
        engine = build_engine(config, store=store)
        return dispatch(engine, args)
    except TokenSaleError as exc:
        logger.critical("MANUAL_ENGINE_FAILURE: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
