"""
Time-ordered reminder queue backed by a Redis sorted set.

Layout (``queue_key`` defaults to ``zreminder``):

    <queue_key>               ZSET  member = serialized reminder, score = fire time (ms)
    reminder:<fullId>         STRING  the member, so a reminder can be removed by id
    reminders:user:<userId>   SET   full ids of the user's pending reminders

All three are written and removed together in one MULTI/EXEC.
"""

from __future__ import annotations

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ledgerbot.config.logging import get_logger
from ledgerbot.db.errors import BackendUnavailable
from ledgerbot.reminders.models import Reminder

logger = get_logger(__name__)

_UNAVAILABLE = (RedisConnectionError, RedisTimeoutError)


def reminder_key(full_id: str) -> str:
    return f"reminder:{full_id}"


def user_index_key(user_id: str) -> str:
    return f"reminders:user:{user_id}"


class ReminderQueue:
    """
    Schedule, fetch and remove reminders.

    Example:
        >>> queue = ReminderQueue(redis_client)
        >>> await queue.schedule(Reminder.create("1234", "water the plants", 60_000))
        >>> due_soon = await queue.fetch_earliest(15)
    """

    def __init__(self, client: Redis, queue_key: str = "zreminder"):
        self._client = client
        self.queue_key = queue_key

    async def schedule(self, reminder: Reminder) -> None:
        member = reminder.to_member()
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zadd(self.queue_key, {member: reminder.fired_at})
                pipe.set(reminder_key(reminder.full_id), member)
                pipe.sadd(user_index_key(reminder.user_id), reminder.full_id)
                await pipe.execute()
        except _UNAVAILABLE as e:
            raise BackendUnavailable("reminder queue", str(e)) from e
        logger.debug(f"Scheduled reminder {reminder.full_id} at {reminder.fired_at}")

    async def fetch_earliest(self, count: int) -> list[str]:
        """
        Raw members of the ``count`` earliest reminders, due or not.

        Members are returned unparsed so a malformed entry can still be
        removed by value.
        """
        try:
            return await self._client.zrange(self.queue_key, 0, count - 1)
        except _UNAVAILABLE as e:
            raise BackendUnavailable("reminder queue", str(e)) from e

    async def remove(self, reminder: Reminder, member: str | None = None) -> bool:
        """
        Remove a fetched reminder and its index entries.

        Pass the raw ``member`` as fetched when available; otherwise the
        reminder is re-serialized to find it.

        Returns:
            True if this call removed it from the queue; False if it was
            already gone (so a reminder is only ever removed once)
        """
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.zrem(self.queue_key, member if member is not None else reminder.to_member())
                pipe.delete(reminder_key(reminder.full_id))
                pipe.srem(user_index_key(reminder.user_id), reminder.full_id)
                removed, _, _ = await pipe.execute()
        except _UNAVAILABLE as e:
            raise BackendUnavailable("reminder queue", str(e)) from e
        return removed > 0

    async def cancel(self, user_id: str, full_id: str) -> bool:
        """
        Remove a reminder by its composite id (user-initiated cancellation).

        Returns:
            False if the user has no such pending reminder
        """
        try:
            member = await self._client.get(reminder_key(full_id))
            async with self._client.pipeline(transaction=True) as pipe:
                if member is not None:
                    pipe.zrem(self.queue_key, member)
                pipe.delete(reminder_key(full_id))
                pipe.srem(user_index_key(user_id), full_id)
                results = await pipe.execute()
        except _UNAVAILABLE as e:
            raise BackendUnavailable("reminder queue", str(e)) from e
        return member is not None and results[0] > 0

    async def remove_raw(self, member: str) -> bool:
        """Remove an unparseable member by value."""
        try:
            return await self._client.zrem(self.queue_key, member) > 0
        except _UNAVAILABLE as e:
            raise BackendUnavailable("reminder queue", str(e)) from e

    async def list_for_user(self, user_id: str) -> list[Reminder]:
        """The user's pending reminders, earliest first."""
        try:
            full_ids = await self._client.smembers(user_index_key(user_id))
            if not full_ids:
                return []
            members = await self._client.mget([reminder_key(f) for f in full_ids])
        except _UNAVAILABLE as e:
            raise BackendUnavailable("reminder queue", str(e)) from e
        reminders = [Reminder.from_member(m) for m in members if m is not None]
        return sorted(reminders, key=lambda r: r.fired_at)

    async def size(self) -> int:
        try:
            return await self._client.zcard(self.queue_key)
        except _UNAVAILABLE as e:
            raise BackendUnavailable("reminder queue", str(e)) from e
