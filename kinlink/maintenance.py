"""
kinlink.maintenance — Entry point for ``python -m kinlink.maintenance``
========================================================================

Operational chores that run outside the API process:

* ``backfill-codes``   — issue a connection code to every member lacking one.
* ``expire-requests``  — mark lapsed pending requests as expired.

Wiring:
1. Load .env (``DATABASE_URL``).
2. Load config.yaml (tunables; defaults if the file is absent).
3. Create the SQLAlchemy engine.
4. Run the chosen command and print a one-line summary.

Run with::

    python -m kinlink.maintenance backfill-codes --community c-123 --dry-run
    python -m kinlink.maintenance expire-requests
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from sqlalchemy import Engine

from kinlink.config import KinlinkConfig, load_config
from kinlink.constants import LOG_DATEFMT, LOG_FORMAT
from kinlink.database.engine import create_db_engine
from kinlink.services.backfill_service import backfill_member_codes
from kinlink.services.code_registry import CodeRegistry
from kinlink.services.connection_store import ConnectionStore
from kinlink.services.connection_workflow import ConnectionRequestWorkflow
from kinlink.services.membership_guard import MembershipGuard

logger = logging.getLogger("kinlink")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m kinlink.maintenance",
        description="Kinlink maintenance commands",
    )
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config.yaml (default: %(default)s)"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    backfill = commands.add_parser(
        "backfill-codes", help="Give every community member an active connection code"
    )
    backfill.add_argument("--community", help="Only backfill this community id")
    backfill.add_argument(
        "--dry-run", action="store_true", help="Report what would be created without writing"
    )

    commands.add_parser("expire-requests", help="Expire lapsed pending connection requests")
    return parser


def _load_config_or_default(path: str) -> KinlinkConfig:
    try:
        return load_config(path)
    except FileNotFoundError:
        logger.info("No %s found; using default settings", path)
        return KinlinkConfig()


async def run_command(args: argparse.Namespace, engine: Engine, cfg: KinlinkConfig) -> str:
    """Execute the parsed command against *engine* and return a summary line."""
    registry = CodeRegistry(engine, max_attempts=cfg.max_code_attempts)
    membership = MembershipGuard(engine)

    if args.command == "backfill-codes":
        result = await backfill_member_codes(
            registry, membership, community_id=args.community, dry_run=args.dry_run
        )
        verb = "would create" if result["dry_run"] else "created"
        return (
            f"{result['memberships']} membership(s) scanned, "
            f"{result['already_active']} already active, {verb} {result['created']}"
        )

    workflow = ConnectionRequestWorkflow(
        engine,
        codes=registry,
        membership=membership,
        connections=ConnectionStore(engine),
        request_ttl=cfg.request_ttl,
    )
    expired = await workflow.expire_stale_requests()
    return f"{expired} request(s) expired"


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run one maintenance command and return an exit code."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    args = build_parser().parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = _load_config_or_default(args.config)
    except ValueError as exc:
        logger.critical("Invalid configuration: %s", exc)
        return 2

    # 3. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        return 1

    # 4. Run.
    summary = asyncio.run(run_command(args, engine, cfg))
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
