"""
Delayed Delivery (Reminders).

A Redis sorted set of reminders ordered by fire time, polled by a
single-flight scheduler that delivers due reminders through a pluggable
delivery collaborator (Discord DMs in production).
"""

from ledgerbot.reminders.delivery import DiscordReminderDelivery, ReminderDelivery
from ledgerbot.reminders.models import Reminder
from ledgerbot.reminders.queue import ReminderQueue
from ledgerbot.reminders.scheduler import (
    CancelReason,
    PollOutcome,
    ReminderScheduler,
    ReminderState,
)

__all__ = [
    "CancelReason",
    "DiscordReminderDelivery",
    "PollOutcome",
    "Reminder",
    "ReminderDelivery",
    "ReminderQueue",
    "ReminderScheduler",
    "ReminderState",
]
