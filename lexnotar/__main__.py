"""
Maintenance entry point: `python -m lexnotar [--db PATH]`.

Opens (and if needed creates) the practice database, recomputes every job
and client from its steps and payments, saves the result and logs a summary.
"""
from __future__ import annotations

import argparse
import sys

from .constants import APP_NAME
from .database import get_connection
from .database.repositories import open_ledger_service
from .utils.helpers import fmt_money
from .utils.loggers import get_logger


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="lexnotar", description=f"{APP_NAME}: recalculate every balance in the ledger.")
    parser.add_argument("--db", default=None, help="database file (defaults to the configured data dir)")
    args = parser.parse_args(argv)

    log = get_logger()
    conn = get_connection(args.db)
    try:
        state = open_ledger_service(conn).recalculate_all().state
    finally:
        conn.close()

    owing = [c for c in state.clients if c.debt_total > 0]
    log.info(
        "Recalculated %d jobs for %d clients; %d clients owe %s in total",
        len(state.jobs), len(state.clients), len(owing), fmt_money(sum(c.debt_total for c in owing)),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
