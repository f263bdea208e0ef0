"""
LedgerBot — discord.py bot client.

Manages the full bot lifecycle:
- Opens the document store, the Redis client and the key-value store once at startup
- Builds the managed database façade and the reminder queue / scheduler
- Loads command cogs (EconomyCog, RemindersCog) and syncs slash commands
- Runs the reminder poll as a discord.ext.tasks loop
- Cleans up all resources on shutdown via AsyncExitStack
"""

from __future__ import annotations

from contextlib import AsyncExitStack

import discord
from discord.ext import commands, tasks

from ledgerbot.config.logging import get_logger
from ledgerbot.config.settings import Settings
from ledgerbot.db.components import StorageComponents
from ledgerbot.db.managed import ManagedDatabase
from ledgerbot.reminders.delivery import DiscordReminderDelivery
from ledgerbot.reminders.queue import ReminderQueue
from ledgerbot.reminders.scheduler import ReminderScheduler

logger = get_logger(__name__)


class LedgerBot(commands.Bot):
    """
    Discord bot front-end for the economy and reminder services.

    Holds shared application state (database façade, reminder queue) and
    exposes it to cogs. All async resources are managed via AsyncExitStack so
    they're properly cleaned up when the bot shuts down.

    Args:
        settings: Full application settings
    """

    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        super().__init__(
            command_prefix=settings.bot.command_prefix,
            intents=intents,
        )
        self.settings = settings
        self.db: ManagedDatabase | None = None
        self.reminders: ReminderQueue | None = None
        self.scheduler: ReminderScheduler | None = None
        self._exit_stack = AsyncExitStack()

    async def setup_hook(self) -> None:
        """
        Called after login, before connecting to the Gateway.

        Opens the stores, loads cogs, syncs slash commands and starts the
        reminder loop.
        """
        # --- 1. Stores (long-lived; kept alive for the bot's lifetime) ---
        logger.info("Initializing storage...")
        factory = StorageComponents(self.settings)
        documents = await self._exit_stack.enter_async_context(factory.create_document_store())
        redis = factory.create_redis()
        self._exit_stack.push_async_callback(redis.aclose)
        legacy = await self._exit_stack.enter_async_context(factory.create_kv_store(redis))
        self.db = factory.create_database(documents, legacy)
        logger.info("Managed database ready")

        # --- 2. Reminders ---
        self.reminders = factory.create_reminder_queue(redis)
        self.scheduler = factory.create_scheduler(self.reminders, DiscordReminderDelivery(self))

        # --- 3. Load cogs ---
        from ledgerbot.bot.cogs.economy import EconomyCog
        from ledgerbot.bot.cogs.reminders import RemindersCog
        await self.add_cog(EconomyCog(self))
        await self.add_cog(RemindersCog(self))
        logger.info("Cogs loaded")

        # --- 4. Sync slash commands ---
        try:
            if self.settings.bot.dev_guild_id:
                guild = discord.Object(id=self.settings.bot.dev_guild_id)
                self.tree.copy_global_to(guild=guild)
                await self.tree.sync(guild=guild)
                logger.info(f"Slash commands synced to dev guild {self.settings.bot.dev_guild_id} (instant)")
            else:
                await self.tree.sync()
                logger.info("Slash commands synced globally (may take up to 1 hour to propagate)")
        except discord.errors.Forbidden:
            logger.warning(
                "Could not sync slash commands (403 Forbidden). "
                "Re-invite the bot with the 'applications.commands' scope."
            )
        except discord.HTTPException as e:
            logger.warning(f"Slash command sync failed: {e}. The bot will still start.")

        # --- 5. Reminder loop ---
        self._start_reminder_loop()

    async def on_ready(self) -> None:
        """Called when the bot successfully connects to Discord."""
        logger.info(f"Logged in as {self.user} (id: {self.user.id})")
        logger.info(f"Connected to {len(self.guilds)} guild(s)")

    def _start_reminder_loop(self) -> None:
        interval = self.settings.reminders.poll_interval_seconds
        self.poll_reminders.change_interval(seconds=interval)
        self.poll_reminders.start()
        logger.info(f"Reminder loop started (every {interval}s)")

    @tasks.loop(seconds=60)  # Default, overridden in setup_hook
    async def poll_reminders(self) -> None:
        """
        One reminder poll cycle.

        tasks.loop never starts an iteration while the previous one is still
        running. Errors are logged here so a bad cycle doesn't stop the loop.
        """
        if self.scheduler is None:
            return
        try:
            await self.scheduler.poll_once()
        except Exception:
            logger.exception("Reminder poll cycle failed")

    @poll_reminders.before_loop
    async def _before_poll_reminders(self) -> None:
        await self.wait_until_ready()

    async def close(self) -> None:
        """Graceful shutdown — stop the reminder loop and release the stores."""
        logger.info("Shutting down LedgerBot...")
        if self.poll_reminders.is_running():
            self.poll_reminders.cancel()
        await self._exit_stack.aclose()
        await super().close()

    def is_allowed_channel(self, channel_id: int | None) -> bool:
        """
        Return True if public commands may answer in this channel.

        An empty ``allowed_channel_ids`` (the default) allows every channel;
        DMs (no channel id) are always allowed.
        """
        allowed = self.settings.bot.allowed_channel_ids
        return not allowed or channel_id is None or channel_id in allowed
