"""
Reminder delivery: resolve the owner's private channel and send the message.

The scheduler only knows the ReminderDelivery interface; a delivery either
returns normally (delivered) or raises DeliveryFailure (permanent failure,
the reminder is cancelled). Anything else is treated as transient.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import discord

from ledgerbot.config.logging import get_logger
from ledgerbot.db.errors import DeliveryFailure
from ledgerbot.reminders.models import Reminder

logger = get_logger(__name__)


def format_reminder_message(reminder: Reminder, guild_name: str | None = None) -> str:
    """Render the DM text for a reminder."""
    text = reminder.text.strip() or "something"
    asked_at = reminder.scheduled_at // 1000
    message = (
        "🎉 **Reminder!**\n\n"
        f"You asked me to remind you of: **{text}**\n"
        f"Asked at: <t:{asked_at}>"
    )
    if guild_name:
        message += f"\nAsked on: {guild_name}"
    return message


class ReminderDelivery(ABC):
    """Delivers a reminder to its owner."""

    @abstractmethod
    async def deliver(self, reminder: Reminder) -> None:
        """
        Send ``reminder`` to its owner.

        Raises:
            DeliveryFailure: If the owner cannot be resolved or messaged
        """
        pass


class DiscordReminderDelivery(ReminderDelivery):
    """
    Deliver reminders as direct messages through a discord.py client.

    Args:
        client: Logged-in discord.Client (the bot itself)
    """

    def __init__(self, client: discord.Client):
        self._client = client

    async def deliver(self, reminder: Reminder) -> None:
        try:
            user = await self._client.fetch_user(int(reminder.user_id))
        except ValueError as e:
            raise DeliveryFailure(reminder.user_id, f"invalid user id: {e}") from e
        except discord.NotFound as e:
            raise DeliveryFailure(reminder.user_id, "user not found") from e
        except discord.HTTPException as e:
            raise DeliveryFailure(reminder.user_id, f"could not resolve user: {e}") from e

        guild_name = None
        if reminder.guild_id and reminder.guild_id.isdigit():
            guild = self._client.get_guild(int(reminder.guild_id))
            guild_name = guild.name if guild is not None else None

        try:
            await user.send(format_reminder_message(reminder, guild_name))
        except discord.Forbidden as e:
            raise DeliveryFailure(reminder.user_id, "direct messages are closed") from e
        except discord.HTTPException as e:
            raise DeliveryFailure(reminder.user_id, f"send failed: {e}") from e

        logger.debug(f"Delivered reminder {reminder.full_id}")
