"""
RemindersCog — /remind, /reminders and /cancelreminder slash commands.

Everything goes through the reminder queue. Its per-user index backs
/reminders, and /cancelreminder only builds ids ending in the caller's user id.
"""

from __future__ import annotations

import discord
from discord import app_commands
from discord.ext import commands

from ledgerbot.config.logging import get_logger
from ledgerbot.db.errors import BackendUnavailable
from ledgerbot.reminders.models import Reminder

logger = get_logger(__name__)

MAX_REMINDERS_PER_USER = 25
MAX_DELAY_MINUTES = 60 * 24 * 30


class RemindersCog(commands.Cog):
    """Provides reminder slash commands."""

    def __init__(self, bot) -> None:
        self.bot = bot

    @app_commands.command(name="remind", description="Remind you of something later")
    @app_commands.describe(minutes="In how many minutes", text="What to remind you of")
    async def remind(self, interaction: discord.Interaction, minutes: int, text: str) -> None:
        if not 1 <= minutes <= MAX_DELAY_MINUTES:
            await interaction.response.send_message(
                f"Pick a delay between 1 and {MAX_DELAY_MINUTES} minutes.", ephemeral=True
            )
            return

        user_id = str(interaction.user.id)
        try:
            pending = await self.bot.reminders.list_for_user(user_id)
            if len(pending) >= MAX_REMINDERS_PER_USER:
                await interaction.response.send_message(
                    f"You already have {len(pending)} reminders pending.", ephemeral=True
                )
                return

            reminder = Reminder.create(
                user_id=user_id,
                text=text,
                fire_in_ms=minutes * 60_000,
                guild_id=str(interaction.guild_id) if interaction.guild_id else None,
            )
            await self.bot.reminders.schedule(reminder)
        except BackendUnavailable as e:
            logger.warning(f"Could not schedule reminder for {user_id}: {e}")
            await interaction.response.send_message(
                "Reminders are unavailable right now. Try again later.", ephemeral=True
            )
            return

        await interaction.response.send_message(
            f"⏰ I'll remind you <t:{reminder.fired_at // 1000}:R> (id `{reminder.reminder_id}`).",
            ephemeral=True,
        )

    @app_commands.command(name="reminders", description="List your pending reminders")
    async def reminders(self, interaction: discord.Interaction) -> None:
        pending = await self.bot.reminders.list_for_user(str(interaction.user.id))
        if not pending:
            await interaction.response.send_message("You have no pending reminders.", ephemeral=True)
            return

        embed = discord.Embed(title="Your reminders", color=discord.Color.blurple())
        for reminder in pending:
            embed.add_field(
                name=f"`{reminder.reminder_id}` — <t:{reminder.fired_at // 1000}:R>",
                value=reminder.text or "something",
                inline=False,
            )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="cancelreminder", description="Cancel one of your reminders")
    @app_commands.describe(reminder_id="The reminder id shown by /reminders")
    async def cancel_reminder(self, interaction: discord.Interaction, reminder_id: str) -> None:
        user_id = str(interaction.user.id)
        full_id = f"{reminder_id}:{user_id}"
        if not await self.bot.reminders.cancel(user_id, full_id):
            await interaction.response.send_message(
                f"No pending reminder with id `{reminder_id}`.", ephemeral=True
            )
            return

        logger.info(f"Reminder {full_id} cancelled by its owner")
        await interaction.response.send_message(f"Cancelled reminder `{reminder_id}`.", ephemeral=True)
