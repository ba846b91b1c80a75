# src/reaction_relay/cli.py
"""Command line interface for operating the relay.

Examples:
    reaction-relay init-db
    reaction-relay enqueue-reaction 10 20 5 --entity-id atom-1
    reaction-relay run --mode pool
    reaction-relay drain
"""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import inspect
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from alembic import command
from alembic.config import Config

from reaction_relay.core.settings import settings
from reaction_relay.repositories import InvalidQueueItem, StoreError, TransactionQueueRepository
from reaction_relay.services.ledger import LedgerError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _init_db(args: argparse.Namespace) -> int:
    from reaction_relay.db.session import create_tables

    await create_tables()
    print("Database initialized.")
    return 0


def _migrate(args: argparse.Namespace) -> int:
    cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", settings.database_url_sync)
    command.upgrade(cfg, args.revision)
    return 0


async def _run(args: argparse.Namespace) -> int:
    from reaction_relay.services.relay_runtime import build_relay

    config = settings
    if args.mode:
        config = settings.model_copy(update={"relay_mode": args.mode})
    relay = build_relay(config)

    stopping = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stopping.set)

    await relay.start()
    if not relay.running:
        await relay.close()
        return 1
    logger.info("Relay running in %s mode; press Ctrl+C to stop", relay.mode)
    try:
        await stopping.wait()
    finally:
        await relay.close()
    return 0


async def _drain(args: argparse.Namespace) -> int:
    from reaction_relay.services.relay_runtime import build_relay

    relay = build_relay()
    try:
        summary = await relay.drain()
    finally:
        await relay.close()
    _print_json(summary.model_dump(mode="json"))
    return 0


async def _purge(args: argparse.Namespace) -> int:
    repo = TransactionQueueRepository()
    cutoff = repo.now() - args.older_than * 1000
    purged = await repo.purge(cutoff)
    print(f"Purged {purged} queue items.")
    return 0


async def _enqueue_reaction(args: argparse.Namespace) -> int:
    repo = TransactionQueueRepository()
    item_id = await repo.enqueue_reaction(args.x, args.y, args.energy, args.entity_id)
    print(item_id)
    return 0


async def _enqueue_explosion(args: argparse.Namespace) -> int:
    repo = TransactionQueueRepository()
    item_id = await repo.enqueue_explosion(args.entity_id)
    print(item_id)
    return 0


async def _stats(args: argparse.Namespace) -> int:
    repo = TransactionQueueRepository()
    counts = await repo.counts_by_status()
    counts["explosions"] = await repo.count_explosions()
    _print_json(counts)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reaction-relay",
        description="Relay queued reactions and explosions to the ledger.",
    )
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create the queue table if missing")
    p.set_defaults(handler=_init_db)

    p = sub.add_parser("migrate", help="Apply Alembic migrations")
    p.add_argument("--revision", default="head")
    p.set_defaults(handler=_migrate)

    p = sub.add_parser("run", help="Run the relay until interrupted")
    p.add_argument("--mode", choices=["single", "pool"], default=None)
    p.set_defaults(handler=_run)

    p = sub.add_parser("drain", help="Run one scheduled drain-and-sweep pass")
    p.set_defaults(handler=_drain)

    p = sub.add_parser("purge", help="Delete sent and failed items older than a window")
    p.add_argument(
        "--older-than",
        type=int,
        default=settings.retention_window_seconds,
        help="Window in seconds (default: RELAY_RETENTION_WINDOW_SECONDS)",
    )
    p.set_defaults(handler=_purge)

    p = sub.add_parser("enqueue-reaction", help="Queue a reaction")
    p.add_argument("x", type=int)
    p.add_argument("y", type=int)
    p.add_argument("energy", type=int)
    p.add_argument("--entity-id", default=None)
    p.set_defaults(handler=_enqueue_reaction)

    p = sub.add_parser("enqueue-explosion", help="Queue an explosion")
    p.add_argument("entity_id")
    p.set_defaults(handler=_enqueue_explosion)

    p = sub.add_parser("stats", help="Print item counts by status")
    p.set_defaults(handler=_stats)
    return parser


async def _dispatch(
    handler: Callable[[argparse.Namespace], Awaitable[int]], args: argparse.Namespace
) -> int:
    from reaction_relay.db.session import engine

    try:
        return await handler(args)
    finally:
        await engine.dispose()


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    handler = args.handler
    try:
        if inspect.iscoroutinefunction(handler):
            return asyncio.run(_dispatch(handler, args))
        return handler(args)
    except InvalidQueueItem as exc:
        logger.error("Invalid queue item: %s", exc)
        return 2
    except (StoreError, LedgerError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
