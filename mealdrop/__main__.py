"""
mealdrop.__main__ — Entry point for ``python -m mealdrop``
===========================================================

Commands:

    init-db     Create tables and seed the global stats row (idempotent).
    expire      Move claimed coupons past their expiry to ``expired``.

Wiring:
1. Load .env (secrets, DATABASE_URL).
2. Load config.yaml (soft settings).
3. Create the SQLAlchemy engine and run the command.

Run with::

    python -m mealdrop init-db
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from mealdrop.config import load_config
from mealdrop.database.engine import create_db_engine, init_db
from mealdrop.services.coupon_service import expire_claims

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("mealdrop")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="mealdrop", description="Mealdrop ledger admin")
    parser.add_argument("--config", default="config.yaml", help="path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create tables and seed global stats")
    sub.add_parser("expire", help="expire coupon claims past their expiry")
    args = parser.parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = load_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        logger.critical("%s", exc)
        return 1
    logger.info("Config loaded — %s", cfg.app_name)

    # 3. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        return 1

    if args.command == "init-db":
        init_db(engine, goal_target=cfg.global_goal_target)
        logger.info("Database ready.")
    elif args.command == "expire":
        count = expire_claims(engine)
        logger.info("Expired %d coupon claims.", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
