"""
Data models for delayed delivery (reminders).

A reminder is queued as a flat JSON object, scored by the time it fires:

    {"id": "...", "user": "...", "guild": "...", "reminder": "...",
     "at": <fire time, ms>, "scheduledAt": <creation time, ms>}

The serialized object itself is the sorted-set member, so removal is by exact
value; ``to_member`` must produce the same string every time for a reminder.
"""

from __future__ import annotations

import time
import uuid

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    return int(time.time() * 1000)


class Reminder(BaseModel):
    """
    One scheduled delivery.

    Attributes:
        reminder_id: Unique id of the reminder (per user)
        user_id: Owner who receives the reminder
        guild_id: Guild the reminder was created on (informational)
        text: What the owner asked to be reminded of
        fired_at: When to deliver (epoch ms; the queue score)
        scheduled_at: When the reminder was created (epoch ms)
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    reminder_id: str = Field(alias="id")
    user_id: str = Field(alias="user")
    guild_id: str | None = Field(default=None, alias="guild")
    text: str = Field(default="", alias="reminder")
    fired_at: int = Field(alias="at", ge=0)
    scheduled_at: int = Field(alias="scheduledAt", ge=0)

    @property
    def full_id(self) -> str:
        """Composite key ``<reminderId>:<userId>`` used for cancellation."""
        return f"{self.reminder_id}:{self.user_id}"

    def is_due(self, now: int) -> bool:
        return now >= self.fired_at

    def overdue_by(self, now: int) -> int:
        return now - self.fired_at

    def to_member(self) -> str:
        """Serialize to the queue member string."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_member(cls, member: str) -> Reminder:
        """
        Parse a queue member.

        Raises:
            pydantic.ValidationError: If the member is not a valid reminder
        """
        return cls.model_validate_json(member)

    @classmethod
    def create(
        cls,
        user_id: str,
        text: str,
        fire_in_ms: int,
        guild_id: str | None = None,
        now: int | None = None,
    ) -> Reminder:
        """Build a new reminder firing ``fire_in_ms`` from now."""
        now = now_ms() if now is None else now
        return cls(
            reminder_id=uuid.uuid4().hex[:12],
            user_id=user_id,
            guild_id=guild_id,
            text=text,
            fired_at=now + fire_in_ms,
            scheduled_at=now,
        )
