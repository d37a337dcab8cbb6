"""CLI utility to run periodic ledger consistency checks."""

from __future__ import annotations

import argparse
import logging
from typing import Optional

from ..database import session_scope
from ..services.data_consistency import DataConsistencyService

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Check that credit balances match their history, that bills never hold "
            "more than they owe and that payment recipes add up. Suitable for cron."
        )
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log every finding instead of only the counts.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when any inconsistency is found.",
    )
    return parser.parse_args(argv)


def _log_mismatches(label: str, items: list) -> None:
    if not items:
        LOGGER.info("%s: no findings", label)
        return
    LOGGER.warning("%s: %s findings", label, len(items))
    for item in items:
        LOGGER.debug("%s detail: %s", label, item)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)

    with session_scope() as db:
        snapshot = DataConsistencyService.ledger_snapshot(db)

    _log_mismatches("Credit balances differing from history", snapshot.credit_balances)
    _log_mismatches("Bills breaking paid/due rules", snapshot.bills)
    _log_mismatches("Payments whose allocations do not add up", snapshot.payments)

    LOGGER.info("Ledger consistency check finished")
    if args.strict and not snapshot.is_clean:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
