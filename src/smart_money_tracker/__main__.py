"""Command-line entry point.

Usage:
    python -m smart_money_tracker run [--dry-run] [--init-schema]
    python -m smart_money_tracker init-db
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from smart_money_tracker.config import Settings, get_settings
from smart_money_tracker.pipeline import Pipeline
from smart_money_tracker.storage.database import DatabaseManager

logger = logging.getLogger("smart_money_tracker")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smart-money-tracker",
        description="Smart money and position-splitting detection engine",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the pipeline until interrupted")
    run.add_argument("--dry-run", action="store_true", help="Log events instead of publishing them")
    run.add_argument("--init-schema", action="store_true", help="Create missing tables before starting")

    sub.add_parser("init-db", help="Create the database schema")
    return parser


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url, echo=settings.database.echo)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


async def _run(settings: Settings, *, dry_run: bool, init_schema: bool) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run or None, init_schema=init_schema)
    await pipeline.run()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    configure_logging(settings)
    logger.info("Configuration: %s", settings.redacted_summary())

    try:
        if args.command == "init-db":
            asyncio.run(_init_db(settings))
            logger.info("Database schema created")
        else:
            asyncio.run(_run(settings, dry_run=args.dry_run, init_schema=args.init_schema))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
