"""
Legacy key-value store implementation using Redis.

Each record is a Redis hash at ``<table>:<id>`` whose fields are the entity's
top-level fields, JSON-encoded. This gives the two insert conflict policies
for free:

- replace: ``DEL`` + ``HSET`` in one MULTI/EXEC, so fields missing from the
  new record disappear
- merge: plain ``HSET``, so each written field wins and unwritten fields stay

Writes are fire-and-forget: they are scheduled as asyncio tasks and the task
is returned as a handle the caller may await or drop. They are eventually
durable; a read issued right after a write may still see the old record.

Some tables use composite ids such as ``<userId>:g``; ``scan_by_pattern``
walks a table and yields the records whose id matches a regular expression.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import AsyncIterator, Awaitable
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ledgerbot.config.logging import get_logger
from ledgerbot.db.base import ManagedEntity, NullableStore
from ledgerbot.db.errors import BackendUnavailable
from ledgerbot.db.registry import EntityRegistry

logger = get_logger(__name__)


def encode_record(entity: ManagedEntity) -> dict[str, str]:
    """Flatten an entity into a Redis hash mapping (id included)."""
    record = entity.to_record()
    record["id"] = entity.get_id()
    return {name: json.dumps(value) for name, value in record.items()}


def decode_record(raw: dict[str, str]) -> dict[str, Any]:
    return {name: json.loads(value) for name, value in raw.items()}


class KeyValueStore(NullableStore):
    """
    Get / replace / merge / delete / scan over Redis hashes.

    The Redis client must be created with ``decode_responses=True``.

    Example:
        >>> store = KeyValueStore(redis_client, registry)
        >>> stats = await store.get("player_stats", "1234") or PlayerStats.of("1234")
        >>> store.upsert_merge(stats)        # returns immediately
        >>> await store.drain()              # wait for outstanding writes
    """

    def __init__(self, client: Redis, registry: EntityRegistry):
        self._client = client
        self._registry = registry
        self._pending: set[asyncio.Task] = set()

    @staticmethod
    def key_for(table: str, entity_id: str) -> str:
        return f"{table}:{entity_id}"

    def _table(self, kind: str) -> str:
        entry = self._registry.get(kind)
        if entry.backend != "kv":
            raise ValueError(f"Entity kind {kind!r} is not stored in the key-value backend")
        return entry.table

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, kind: str, entity_id: str) -> ManagedEntity | None:
        """
        Direct key lookup.

        Returns:
            The stored entity, or None when no record exists (no default is built)

        Raises:
            BackendUnavailable: If Redis cannot be reached
        """
        key = self.key_for(self._table(kind), entity_id)
        try:
            raw = await self._client.hgetall(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise BackendUnavailable("key-value store", str(e)) from e
        if not raw:
            return None
        return self._registry.construct(kind, decode_record(raw))

    async def scan_by_pattern(self, kind: str, pattern: str) -> AsyncIterator[ManagedEntity]:
        """
        Yield every record of ``kind`` whose id matches ``pattern``.

        The sequence is lazy and finite. It cannot be restarted: iterate it
        again and nothing is produced. Order is whatever Redis SCAN returns.

        Args:
            kind: Registered entity kind tag
            pattern: Regular expression searched against the record id
                (e.g. ``":g$"`` for global sub-records)
        """
        table = self._table(kind)
        prefix = f"{table}:"
        matcher = re.compile(pattern)
        try:
            async for key in self._client.scan_iter(match=f"{prefix}*"):
                entity_id = key[len(prefix):]
                if not matcher.search(entity_id):
                    continue
                raw = await self._client.hgetall(key)
                if raw:
                    yield self._registry.construct(kind, decode_record(raw))
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise BackendUnavailable("key-value store", str(e)) from e

    # ------------------------------------------------------------------
    # Fire-and-forget writes
    # ------------------------------------------------------------------

    def upsert_replace(self, entity: ManagedEntity) -> asyncio.Task:
        """Overwrite the whole record. Returns the write's task handle."""
        key = self.key_for(self._table(entity.kind), entity.get_id())
        mapping = encode_record(entity)

        async def write() -> None:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=mapping)
                await pipe.execute()

        return self._spawn(write(), f"replace {key}")

    def upsert_merge(self, entity: ManagedEntity) -> asyncio.Task:
        """Write every field of the record, keeping stored fields it does not carry."""
        key = self.key_for(self._table(entity.kind), entity.get_id())
        mapping = encode_record(entity)
        return self._spawn(self._client.hset(key, mapping=mapping), f"merge {key}")

    def delete(self, entity: ManagedEntity) -> asyncio.Task:
        key = self.key_for(self._table(entity.kind), entity.get_id())
        return self._spawn(self._client.delete(key), f"delete {key}")

    def _spawn(self, write: Awaitable[Any], description: str) -> asyncio.Task:
        task = asyncio.ensure_future(write)
        self._pending.add(task)

        def on_done(done: asyncio.Task) -> None:
            self._pending.discard(done)
            if done.cancelled():
                logger.warning(f"Key-value write cancelled: {description}")
                return
            error = done.exception()
            if error is not None:
                logger.error(f"Key-value write failed ({description}): {error}")

        task.add_done_callback(on_done)
        return task

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every outstanding write (errors are already logged)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def shutdown(self) -> None:
        """Flush outstanding writes. The Redis client is owned by the caller."""
        await self.drain()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False
