"""
EconomyCog — /balance and /give slash commands.

Reads and writes players through the managed database façade. Money always
goes through the player's balance helpers, so the deployment's choice of
money field (legacy or current) is respected here without naming it.
"""

from __future__ import annotations

import discord
from discord import app_commands
from discord.ext import commands

from ledgerbot.config.logging import get_logger

logger = get_logger(__name__)


class EconomyCog(commands.Cog):
    """Provides the /balance and /give slash commands."""

    def __init__(self, bot) -> None:
        self.bot = bot

    async def _persist(self, player) -> None:
        # Only the balance fields changed; a player never stored needs a whole save.
        if not await self.bot.db.flush_changes(player):
            await self.bot.db.save(player)
            player.clear_dirty()

    @app_commands.command(name="balance", description="Show your balance (or someone else's)")
    @app_commands.describe(member="Whose balance to show")
    async def balance(self, interaction: discord.Interaction, member: discord.User | None = None) -> None:
        if not self.bot.is_allowed_channel(interaction.channel_id):
            await interaction.response.send_message(
                "I'm not configured to respond in this channel.", ephemeral=True
            )
            return

        target = member or interaction.user
        player = await self.bot.db.get_player(str(target.id))
        await interaction.response.send_message(
            f"💰 **{target.display_name}** has **{player.current_money:,}** credits."
        )

    @app_commands.command(name="give", description="Give some of your credits to another user")
    @app_commands.describe(member="Who receives the credits", amount="How many credits")
    async def give(self, interaction: discord.Interaction, member: discord.User, amount: int) -> None:
        """
        /give member:<user> amount:<credits>

        Refused while either player is locked by another activity.
        """
        if not self.bot.is_allowed_channel(interaction.channel_id):
            await interaction.response.send_message(
                "I'm not configured to respond in this channel.", ephemeral=True
            )
            return
        if amount <= 0:
            await interaction.response.send_message("Amount must be positive.", ephemeral=True)
            return
        if member.id == interaction.user.id:
            await interaction.response.send_message("You can't give credits to yourself.", ephemeral=True)
            return

        db = self.bot.db
        giver = await db.get_player(str(interaction.user.id))
        receiver = await db.get_player(str(member.id))

        if giver.is_locked() or receiver.is_locked():
            await interaction.response.send_message(
                "One of you is in the middle of another transaction. Try again shortly.",
                ephemeral=True,
            )
            return

        if not giver.remove_money(amount):
            await interaction.response.send_message(
                f"You only have {giver.current_money:,} credits.", ephemeral=True
            )
            return

        try:
            receiver.add_money(amount)
        except OverflowError:
            await interaction.response.send_message(
                f"{member.display_name} can't hold that many credits.", ephemeral=True
            )
            return

        await self._persist(giver)
        await self._persist(receiver)
        logger.info(f"{interaction.user.id} gave {amount} to {member.id}")

        await interaction.response.send_message(
            f"✅ Gave **{amount:,}** credits to **{member.display_name}**."
        )
