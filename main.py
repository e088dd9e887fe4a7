import argparse
import asyncio
import logging
import sys
from os import environ

import db
from anomaly import registry
from anomaly.base import Delays, format_table


logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        description="Run concurrent transactions against PostgreSQL and compare the outcome per isolation level."
    )

    ap.add_argument(
        "--anomaly",
        "-a",
        type=str,
        required=True,
        choices=registry.get_registered()
    )

    ap.add_argument(
        "--isolation-level",
        "-l",
        type=str,
        default=None,
        choices=list(db.ISOLATION_LEVELS),
        help="run only the cases for this isolation level (default: every case)"
    )

    ap.add_argument(
        "--lock",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="run only the cases with (or without) explicit row locking"
    )

    return ap.parse_args(argv)


async def main(args: argparse.Namespace) -> bool:
    conninfo = db.connection_string()
    delays = Delays.from_env()

    (scenario, description) = registry.resolve(args.anomaly)
    cases = scenario.select_cases(args.isolation_level, args.lock)
    if not cases:
        raise ValueError(f"No {args.anomaly} case matches the given isolation level and locking")

    if description:
        print(args.anomaly)
        print(description)
        print()

    rows = []
    for case in cases:
        logger.info("CASE: %s", case)
        result = await scenario.run_case(conninfo, case, delays)
        mismatches = scenario.check(case, result)
        for mismatch in mismatches:
            logger.warning("%s: %s", case, mismatch)

        rows.append({
            "case": str(case),
            "observed": str(result),
            "status": "FAIL" if mismatches else "OK",
        })

    print(format_table(rows))
    return all(row["status"] == "OK" for row in rows)


def _configure_logging():
    logging.basicConfig(
        level=environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(message)s",
    )


if __name__ == "__main__":
    _configure_logging()
    try:
        ok = asyncio.run(main(_parse_args()))
        sys.exit(0 if ok else 1)
    except Exception as exc:
        print(exc)
        sys.exit(1)
