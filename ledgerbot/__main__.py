"""
LedgerBot CLI entry point.

Provides command-line interface for running the bot and operational commands.
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from ledgerbot import __version__
from ledgerbot.config.logging import get_logger, setup_logging
from ledgerbot.config.settings import Settings, load_settings
from ledgerbot.db.components import StorageComponents
from ledgerbot.db.errors import BackendUnavailable
from ledgerbot.reminders.models import Reminder, now_ms


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledgerbot",
        description="Discord economy and reminder bot over a document store and a legacy key-value store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"LedgerBot {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the Discord bot")

    subparsers.add_parser("config", help="Show current configuration")

    subparsers.add_parser(
        "init-db",
        help="Create the document store tables (safe to run repeatedly)",
    )

    pending_parser = subparsers.add_parser(
        "pending",
        help="List the earliest queued reminders without delivering them",
    )
    pending_parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="How many reminders to show (default: REMINDERS__BATCH_SIZE from config)",
    )

    player_parser = subparsers.add_parser(
        "player",
        help="Show a player's stored economy profile",
    )
    player_parser.add_argument("user_id", help="Discord user id")

    return parser


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("Current Configuration:")
    logger.info("\n=== LedgerBot Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nBot Name: {settings.bot.name}")
    logger.info(f"Command Prefix: {settings.bot.command_prefix}")
    logger.info(f"Bot Token: {'Set' if settings.bot.token else 'Not set'}")
    logger.info(f"\nDocument Store: {settings.database.document_url}")
    logger.info(f"Redis: {settings.database.redis_url}")
    logger.info(f"Access Logging: {settings.database.log_db_access}")
    logger.info(f"\nReminder Queue: {settings.reminders.queue_key}")
    logger.info(f"Reminder Batch Size: {settings.reminders.batch_size}")
    logger.info(f"Reminder Poll Interval: {settings.reminders.poll_interval_seconds}s")
    logger.info(f"Stale After: {settings.reminders.stale_after_hours}h")
    logger.info(f"Stale Halts Batch: {settings.reminders.stale_halts_batch}")
    logger.info(f"\nBalance Field: {'old_money (legacy)' if settings.economy.use_legacy_money else 'new_money'}")

    return 0


def cmd_run(settings: Settings) -> int:
    """Start the Discord bot."""
    logger = get_logger(__name__)

    if not settings.bot.token:
        logger.error(
            "Discord bot token not set. Add BOT__TOKEN=<your-token> to your .env file."
        )
        return 1

    from ledgerbot.bot import LedgerBot

    bot = LedgerBot(settings)
    logger.info(f"Starting {settings.bot.name}...")
    # log_handler=None: disable discord.py's default logging setup and use ours
    bot.run(settings.bot.token, log_handler=None)
    return 0


async def cmd_init_db(settings: Settings) -> int:
    """Create any missing document tables."""
    logger = get_logger(__name__)
    factory = StorageComponents(settings)

    try:
        async with factory.create_document_store():
            pass
    except BackendUnavailable as e:
        logger.error(f"Could not initialize the document store: {e}")
        return 1

    tables = sorted({kind.table for kind in factory.registry.kinds(backend="document")})
    logger.info(f"Document store ready: {', '.join(tables)}")
    return 0


def _format_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


async def cmd_pending(args, settings: Settings) -> int:
    """Print the earliest reminders in the queue and whether each is due."""
    logger = get_logger(__name__)
    factory = StorageComponents(settings)
    limit = args.limit or settings.reminders.batch_size
    stale_after_ms = int(settings.reminders.stale_after_hours * 3_600_000)

    redis = factory.create_redis()
    try:
        queue = factory.create_reminder_queue(redis)
        members = await queue.fetch_earliest(limit)
        total = await queue.size()
    except BackendUnavailable as e:
        logger.error(f"Reminder queue unavailable: {e}")
        return 1
    finally:
        await redis.aclose()

    now = now_ms()
    print(f"{len(members)} of {total} queued reminder(s):")
    for member in members:
        try:
            reminder = Reminder.from_member(member)
        except ValidationError:
            print(f"  [malformed] {member}")
            continue
        if not reminder.is_due(now):
            status = "scheduled"
        elif reminder.overdue_by(now) > stale_after_ms:
            status = "stale"
        else:
            status = "due"
        print(f"  [{status:>9}] {reminder.full_id}  at {_format_ms(reminder.fired_at)}  {reminder.text!r}")
    return 0


async def cmd_player(args, settings: Settings) -> int:
    """Print a player's economy profile as stored (or its default)."""
    logger = get_logger(__name__)
    factory = StorageComponents(settings)

    redis = factory.create_redis()
    try:
        async with factory.create_document_store() as documents, \
                   factory.create_kv_store(redis) as legacy:
            db = factory.create_database(documents, legacy)
            player = await db.get_player(args.user_id)
            stats = await db.get_player_stats(args.user_id)
    except BackendUnavailable as e:
        logger.error(f"Storage unavailable: {e}")
        return 1
    finally:
        await redis.aclose()

    print(f"Player {args.user_id}")
    print(f"  Balance:    {player.current_money:,}")
    print(f"  Bank:       {player.money_on_bank:,}")
    print(f"  Level:      {player.level} ({player.experience} xp)")
    print(f"  Reputation: {player.reputation}")
    print(f"  Badges:     {', '.join(player.badges) or '-'}")
    print(f"  Gambles:    {stats.gambles_won} won / {stats.gambles_lost} lost")
    return 0


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except ValidationError as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    setup_logging(settings)

    # Execute command
    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "run":
        return cmd_run(settings)
    elif args.command == "init-db":
        return asyncio.run(cmd_init_db(settings))
    elif args.command == "pending":
        return asyncio.run(cmd_pending(args, settings))
    elif args.command == "player":
        return asyncio.run(cmd_player(args, settings))
    else:
        # Default: show help
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
