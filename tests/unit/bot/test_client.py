"""
Tests for LedgerBot.is_allowed_channel() logic, the reminder poll loop and shutdown.

No Discord connection required.
"""

from contextlib import AsyncExitStack
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from discord.ext import tasks

from ledgerbot.bot.client import LedgerBot
from ledgerbot.config.settings import BotSettings, ReminderSettings, Settings
from ledgerbot.reminders.scheduler import ReminderScheduler


def _make_bot(allowed_channel_ids: list[int]) -> LedgerBot:
    """Create a LedgerBot with the given channel restriction list."""
    settings = MagicMock(spec=Settings)
    settings.bot = MagicMock(spec=BotSettings)
    settings.bot.command_prefix = "!"
    settings.bot.allowed_channel_ids = allowed_channel_ids
    settings.reminders = ReminderSettings(poll_interval_seconds=5)
    # Skip discord internals so __init__ doesn't require a real connection
    bot = LedgerBot.__new__(LedgerBot)
    bot.settings = settings
    bot.scheduler = None
    return bot


class TestBotChannelRestriction:
    def test_empty_list_allows_all_channels(self):
        bot = _make_bot([])
        assert bot.is_allowed_channel(111) is True
        assert bot.is_allowed_channel(999999) is True

    def test_listed_channel_is_allowed(self):
        bot = _make_bot([111, 222, 333])
        assert bot.is_allowed_channel(111) is True
        assert bot.is_allowed_channel(333) is True

    def test_unlisted_channel_is_blocked(self):
        bot = _make_bot([111, 222])
        assert bot.is_allowed_channel(999) is False

    def test_direct_messages_always_allowed(self):
        bot = _make_bot([111])
        assert bot.is_allowed_channel(None) is True


class TestReminderLoop:
    def test_start_uses_configured_interval(self):
        bot = _make_bot([])
        with patch.object(tasks.Loop, "start") as start:
            bot._start_reminder_loop()
        assert bot.poll_reminders.seconds == 5
        start.assert_called_once()

    @pytest.mark.asyncio
    async def test_iteration_runs_one_poll_cycle(self):
        bot = _make_bot([])
        bot.scheduler = MagicMock(spec=ReminderScheduler)
        bot.scheduler.poll_once = AsyncMock(return_value=[])

        await bot.poll_reminders()

        bot.scheduler.poll_once.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_cycle_does_not_raise(self):
        bot = _make_bot([])
        bot.scheduler = MagicMock(spec=ReminderScheduler)
        bot.scheduler.poll_once = AsyncMock(side_effect=RuntimeError("boom"))

        await bot.poll_reminders()

        bot.scheduler.poll_once.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_iteration_before_setup_is_a_no_op(self):
        bot = _make_bot([])
        await bot.poll_reminders()


class TestBotShutdown:
    @pytest.mark.asyncio
    async def test_close_cancels_reminder_loop_and_releases_resources(self):
        bot = _make_bot([])
        released = AsyncMock()
        bot._exit_stack = AsyncExitStack()
        bot._exit_stack.push_async_callback(released)

        with patch.object(tasks.Loop, "is_running", return_value=True), \
             patch.object(tasks.Loop, "cancel") as cancel, \
             patch("discord.ext.commands.Bot.close", new=AsyncMock()) as parent_close:
            await bot.close()

        cancel.assert_called_once()
        released.assert_awaited_once()
        parent_close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_without_running_loop(self):
        bot = _make_bot([])
        bot._exit_stack = AsyncExitStack()

        with patch.object(tasks.Loop, "cancel") as cancel, \
             patch("discord.ext.commands.Bot.close", new=AsyncMock()):
            await bot.close()

        cancel.assert_not_called()
