"""
Discord Bot Layer.

Thin discord.py front-end: slash commands over the managed database and the
reminder queue, plus the DM delivery used by the reminder scheduler.
"""

from ledgerbot.bot.client import LedgerBot

__all__ = ["LedgerBot"]
