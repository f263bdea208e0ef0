"""
Delayed-delivery scheduler.

Each poll cycle fetches the earliest reminders from the queue and moves every
due one to a terminal state:

    SCHEDULED ──due, overdue > stale_after──> STALE       (removed, not sent)
              ──due, delivered─────────────> DELIVERED   (removed)
              ──due, delivery raised───────> CANCELLED   (removed, "delivery-error")

Reminders that are not due yet stay SCHEDULED. A reminder is removed only
after its delivery has finished one way or the other; removal is the only
durable side effect.

Failure handling:
- queue unreachable: the cycle is logged and abandoned, nothing was dequeued
- one reminder failing never stops the rest of the batch
- any error from the delivery collaborator cancels the reminder; it is never
  retried
- a queue error while handling one reminder leaves it SCHEDULED for the next
  cycle
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from pydantic import ValidationError

from ledgerbot.config.logging import get_logger
from ledgerbot.db.errors import BackendUnavailable, DeliveryFailure
from ledgerbot.reminders.delivery import ReminderDelivery
from ledgerbot.reminders.models import Reminder, now_ms
from ledgerbot.reminders.queue import ReminderQueue

logger = get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


class ReminderState(str, Enum):
    SCHEDULED = "scheduled"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    STALE = "stale"


class CancelReason(str, Enum):
    """Why a reminder left the queue."""

    DELIVERED = "delivered"
    DELIVERY_ERROR = "delivery-error"
    STALE = "stale"
    USER_CANCELLED = "user-cancelled"
    MALFORMED = "malformed"


@dataclass
class PollOutcome:
    """What one poll cycle did with one fetched queue member."""

    member: str
    state: ReminderState
    reason: CancelReason | None = None
    reminder: Reminder | None = None
    detail: str | None = None

    @property
    def full_id(self) -> str | None:
        return self.reminder.full_id if self.reminder else None


class ReminderScheduler:
    """
    Polls the reminder queue and delivers due reminders.

    Args:
        queue: Reminder queue
        delivery: Delivery collaborator
        batch_size: Earliest reminders fetched per cycle
        stale_after_ms: Overdue reminders older than this are dropped unsent
        stale_halts_batch: Stop the cycle after dropping a stale reminder
            instead of carrying on with the rest of the batch
        clock: Returns the current time in epoch ms
    """

    def __init__(
        self,
        queue: ReminderQueue,
        delivery: ReminderDelivery,
        batch_size: int = 15,
        stale_after_ms: int = DAY_MS,
        stale_halts_batch: bool = False,
        clock: Callable[[], int] = now_ms,
    ):
        self.queue = queue
        self.delivery = delivery
        self.batch_size = batch_size
        self.stale_after_ms = stale_after_ms
        self.stale_halts_batch = stale_halts_batch
        self._clock = clock

    async def poll_once(self, now: int | None = None) -> list[PollOutcome]:
        """
        Run one poll cycle.

        Returns:
            One outcome per fetched member (not-yet-due ones included as
            SCHEDULED); empty if the queue could not be reached
        """
        now = self._clock() if now is None else now
        try:
            members = await self.queue.fetch_earliest(self.batch_size)
        except BackendUnavailable as e:
            logger.warning(f"Reminder poll skipped, queue unavailable: {e}")
            return []

        logger.debug(f"Reminder check - fetched {len(members)} reminder(s)")
        outcomes: list[PollOutcome] = []
        for member in members:
            try:
                outcome = await self._process(member, now)
            except Exception as e:
                logger.exception(f"Unexpected error handling reminder {member!r}")
                outcome = PollOutcome(member, ReminderState.SCHEDULED, detail=str(e))
            outcomes.append(outcome)

            if outcome.state is ReminderState.STALE and self.stale_halts_batch:
                logger.info("Stale reminder dropped; ending this cycle early")
                break
        return outcomes

    async def _process(self, member: str, now: int) -> PollOutcome:
        try:
            reminder = Reminder.from_member(member)
        except ValidationError as e:
            logger.warning(f"Dropping malformed reminder {member!r}: {e.error_count()} error(s)")
            await self.queue.remove_raw(member)
            return PollOutcome(member, ReminderState.CANCELLED, CancelReason.MALFORMED, detail=str(e))

        if not reminder.is_due(now):
            return PollOutcome(member, ReminderState.SCHEDULED, reminder=reminder)

        if reminder.overdue_by(now) > self.stale_after_ms:
            logger.info(
                f"Reminder {reminder.full_id} is stale "
                f"({reminder.overdue_by(now) // 1000}s overdue); dropping without delivery"
            )
            await self.queue.remove(reminder, member)
            return PollOutcome(member, ReminderState.STALE, CancelReason.STALE, reminder=reminder)

        try:
            await self.delivery.deliver(reminder)
        except Exception as e:
            if isinstance(e, DeliveryFailure):
                logger.warning(f"Reminder {reminder.full_id} cancelled: {e}")
                detail = e.detail
            else:
                logger.warning(
                    f"Reminder {reminder.full_id} cancelled after unexpected delivery error",
                    exc_info=True,
                )
                detail = f"{type(e).__name__}: {e}"
            await self.queue.remove(reminder, member)
            return PollOutcome(
                member, ReminderState.CANCELLED, CancelReason.DELIVERY_ERROR,
                reminder=reminder, detail=detail,
            )

        removed = await self.queue.remove(reminder, member)
        if not removed:
            logger.debug(f"Reminder {reminder.full_id} was already removed")
        logger.info(f"Reminded {reminder.user_id} ({reminder.full_id})")
        return PollOutcome(member, ReminderState.DELIVERED, CancelReason.DELIVERED, reminder=reminder)

