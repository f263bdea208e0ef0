"""
Tests for ReminderScheduler.poll_once().

The queue is real (fakeredis) so removal is observable; delivery is mocked.

Covers:
- not-yet-due reminders stay scheduled and are never delivered early
- due reminders are delivered, then removed
- stale reminders are removed without delivery (per item, or halting the batch)
- any delivery error cancels and removes the reminder
- a queue error while handling one reminder leaves it queued
- malformed members are dropped
- an unreachable queue abandons the cycle quietly
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fakeredis import aioredis

from ledgerbot.db.errors import BackendUnavailable, DeliveryFailure
from ledgerbot.reminders.delivery import ReminderDelivery
from ledgerbot.reminders.models import Reminder
from ledgerbot.reminders.queue import ReminderQueue
from ledgerbot.reminders.scheduler import (
    DAY_MS,
    CancelReason,
    ReminderScheduler,
    ReminderState,
)

NOW = 1_700_000_000_000


@pytest_asyncio.fixture
async def queue():
    client = aioredis.FakeRedis(decode_responses=True)
    yield ReminderQueue(client)
    await client.aclose()


@pytest.fixture
def delivery():
    mock = MagicMock(spec=ReminderDelivery)
    mock.deliver = AsyncMock()
    return mock


def _scheduler(queue, delivery, **kwargs) -> ReminderScheduler:
    return ReminderScheduler(queue, delivery, clock=lambda: NOW, **kwargs)


def _reminder(reminder_id: str, fired_at: int, user_id: str = "u1") -> Reminder:
    return Reminder(reminder_id=reminder_id, user_id=user_id, text="hi",
                    fired_at=fired_at, scheduled_at=fired_at - 60_000)


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_future_reminder_not_delivered(self, queue, delivery):
        await queue.schedule(_reminder("r1", NOW + 60_000))

        outcomes = await _scheduler(queue, delivery).poll_once()

        assert [o.state for o in outcomes] == [ReminderState.SCHEDULED]
        delivery.deliver.assert_not_awaited()
        assert await queue.size() == 1

    @pytest.mark.asyncio
    async def test_due_reminder_delivered_and_removed(self, queue, delivery):
        reminder = _reminder("r1", NOW - 1_000)
        await queue.schedule(reminder)

        outcomes = await _scheduler(queue, delivery).poll_once()

        delivery.deliver.assert_awaited_once_with(reminder)
        assert outcomes[0].state is ReminderState.DELIVERED
        assert outcomes[0].reason is CancelReason.DELIVERED
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_exactly_due_is_delivered(self, queue, delivery):
        await queue.schedule(_reminder("r1", NOW))
        outcomes = await _scheduler(queue, delivery).poll_once()
        assert outcomes[0].state is ReminderState.DELIVERED

    @pytest.mark.asyncio
    async def test_not_removed_before_delivery_finishes(self, queue, delivery):
        await queue.schedule(_reminder("r1", NOW - 1_000))
        sizes = []

        async def record_size(_reminder):
            sizes.append(await queue.size())

        delivery.deliver.side_effect = record_size
        await _scheduler(queue, delivery).poll_once()

        assert sizes == [1]
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_stale_reminder_removed_without_delivery(self, queue, delivery):
        await queue.schedule(_reminder("old", NOW - DAY_MS - 1))

        outcomes = await _scheduler(queue, delivery).poll_once()

        assert outcomes[0].state is ReminderState.STALE
        assert outcomes[0].reason is CancelReason.STALE
        delivery.deliver.assert_not_awaited()
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_exactly_one_day_late_is_still_delivered(self, queue, delivery):
        await queue.schedule(_reminder("edge", NOW - DAY_MS))
        outcomes = await _scheduler(queue, delivery).poll_once()
        assert outcomes[0].state is ReminderState.DELIVERED

    @pytest.mark.asyncio
    async def test_stale_item_does_not_block_rest_of_batch(self, queue, delivery):
        await queue.schedule(_reminder("old", NOW - 2 * DAY_MS))
        await queue.schedule(_reminder("due", NOW - 1_000))

        outcomes = await _scheduler(queue, delivery).poll_once()

        assert [o.state for o in outcomes] == [ReminderState.STALE, ReminderState.DELIVERED]
        assert delivery.deliver.await_count == 1

    @pytest.mark.asyncio
    async def test_stale_halts_batch_when_configured(self, queue, delivery):
        await queue.schedule(_reminder("old", NOW - 2 * DAY_MS))
        await queue.schedule(_reminder("due", NOW - 1_000))

        outcomes = await _scheduler(queue, delivery, stale_halts_batch=True).poll_once()

        assert [o.state for o in outcomes] == [ReminderState.STALE]
        delivery.deliver.assert_not_awaited()
        assert await queue.size() == 1

    @pytest.mark.asyncio
    async def test_delivery_failure_cancels(self, queue, delivery):
        await queue.schedule(_reminder("r1", NOW - 1_000))
        delivery.deliver.side_effect = DeliveryFailure("u1", "direct messages are closed")

        outcomes = await _scheduler(queue, delivery).poll_once()

        assert outcomes[0].state is ReminderState.CANCELLED
        assert outcomes[0].reason is CancelReason.DELIVERY_ERROR
        assert outcomes[0].detail == "direct messages are closed"
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_batch(self, queue, delivery):
        await queue.schedule(_reminder("a", NOW - 3_000, user_id="u1"))
        await queue.schedule(_reminder("b", NOW - 2_000, user_id="u2"))
        await queue.schedule(_reminder("c", NOW - 1_000, user_id="u3"))

        async def deliver(reminder):
            if reminder.user_id == "u2":
                raise RuntimeError("boom")

        delivery.deliver.side_effect = deliver
        outcomes = await _scheduler(queue, delivery).poll_once()

        assert [o.state for o in outcomes] == [
            ReminderState.DELIVERED, ReminderState.CANCELLED, ReminderState.DELIVERED,
        ]
        assert outcomes[1].detail == "RuntimeError: boom"
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_unexpected_delivery_error_cancels(self, queue, delivery):
        await queue.schedule(_reminder("r1", NOW - 1_000))
        delivery.deliver.side_effect = TimeoutError("gateway timed out")

        outcomes = await _scheduler(queue, delivery).poll_once()

        assert outcomes[0].state is ReminderState.CANCELLED
        assert outcomes[0].reason is CancelReason.DELIVERY_ERROR
        assert await queue.size() == 0
        assert await queue.list_for_user("u1") == []

    @pytest.mark.asyncio
    async def test_failing_reminders_do_not_starve_the_queue(self, queue, delivery):
        for i in range(15):
            await queue.schedule(_reminder(f"bad{i}", NOW - 10_000 + i, user_id="broken"))
        await queue.schedule(_reminder("good", NOW - 1_000, user_id="ok"))
        delivered = []

        async def deliver(reminder):
            if reminder.user_id == "broken":
                raise TimeoutError("gateway timed out")
            delivered.append(reminder.reminder_id)

        delivery.deliver.side_effect = deliver
        scheduler = _scheduler(queue, delivery)
        await scheduler.poll_once()
        await scheduler.poll_once()

        assert delivered == ["good"]
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_delivery_failure_logged_as_warning(self, queue, delivery, caplog):
        caplog.set_level(logging.INFO, logger="ledgerbot")
        await queue.schedule(_reminder("r1", NOW - 1_000))
        delivery.deliver.side_effect = DeliveryFailure("u1", "direct messages are closed")

        await _scheduler(queue, delivery).poll_once()

        records = [r for r in caplog.records if "cancelled" in r.getMessage()]
        assert [r.levelno for r in records] == [logging.WARNING]

    @pytest.mark.asyncio
    async def test_queue_error_after_delivery_leaves_reminder_queued(self, queue, delivery):
        await queue.schedule(_reminder("r1", NOW - 1_000))
        queue.remove = AsyncMock(side_effect=BackendUnavailable("reminder queue", "refused"))

        outcomes = await _scheduler(queue, delivery).poll_once()

        assert outcomes[0].state is ReminderState.SCHEDULED
        assert await queue.size() == 1

    @pytest.mark.asyncio
    async def test_malformed_member_is_dropped(self, queue, delivery):
        await queue._client.zadd(queue.queue_key, {"{not json": 1})
        await queue.schedule(_reminder("r1", NOW - 1_000))

        outcomes = await _scheduler(queue, delivery).poll_once()

        assert outcomes[0].reason is CancelReason.MALFORMED
        assert outcomes[1].state is ReminderState.DELIVERED
        assert await queue.size() == 0

    @pytest.mark.asyncio
    async def test_batch_size_limits_fetch(self, queue, delivery):
        for i in range(5):
            await queue.schedule(_reminder(f"r{i}", NOW - 10_000 + i))

        outcomes = await _scheduler(queue, delivery, batch_size=3).poll_once()

        assert len(outcomes) == 3
        assert await queue.size() == 2

    @pytest.mark.asyncio
    async def test_unavailable_queue_abandons_cycle(self, delivery):
        broken = MagicMock(spec=ReminderQueue)
        broken.fetch_earliest = AsyncMock(side_effect=BackendUnavailable("reminder queue", "refused"))

        outcomes = await ReminderScheduler(broken, delivery).poll_once()

        assert outcomes == []
        delivery.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_now_overrides_clock(self, queue, delivery):
        await queue.schedule(_reminder("r1", NOW + 60_000))
        outcomes = await _scheduler(queue, delivery).poll_once(now=NOW + 60_000)
        assert outcomes[0].state is ReminderState.DELIVERED

