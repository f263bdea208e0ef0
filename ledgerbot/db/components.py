"""
Storage component factory.

Centralises the construction of the stores, the façade and the reminder
pipeline from settings, so the CLI, the bot and tests wire them the same way.
"""

from __future__ import annotations

from redis.asyncio import Redis, from_url

from ledgerbot.config.settings import Settings
from ledgerbot.db.document_store import DocumentStore
from ledgerbot.db.entities import build_registry
from ledgerbot.db.kv_store import KeyValueStore
from ledgerbot.db.managed import ManagedDatabase
from ledgerbot.db.registry import EntityRegistry
from ledgerbot.reminders.delivery import ReminderDelivery
from ledgerbot.reminders.queue import ReminderQueue
from ledgerbot.reminders.scheduler import ReminderScheduler


class StorageComponents:
    """
    Factory for building persistence components from settings.

    Example::

        factory = StorageComponents(settings)
        redis = factory.create_redis()
        async with factory.create_document_store() as documents, \\
                   factory.create_kv_store(redis) as legacy:
            db = factory.create_database(documents, legacy)
            player = await db.get_player("1234")
        await redis.aclose()
    """

    def __init__(self, settings: Settings, registry: EntityRegistry | None = None):
        self.settings = settings
        self.registry = registry or build_registry()

    def create_redis(self) -> Redis:
        """Create a Redis client (string responses) for the legacy store and the queue."""
        return from_url(self.settings.database.redis_url, decode_responses=True)

    def create_document_store(self) -> DocumentStore:
        return DocumentStore(
            url=self.settings.database.document_url,
            registry=self.registry,
            echo=self.settings.database.echo_sql,
        )

    def create_kv_store(self, client: Redis) -> KeyValueStore:
        return KeyValueStore(client, self.registry)

    def create_database(self, documents: DocumentStore, legacy: KeyValueStore) -> ManagedDatabase:
        """Create the façade; the money field and access logging come from settings."""
        return ManagedDatabase(
            documents=documents,
            legacy=legacy,
            use_legacy_money=self.settings.economy.use_legacy_money,
            log_access=self.settings.database.log_db_access,
        )

    def create_reminder_queue(self, client: Redis) -> ReminderQueue:
        return ReminderQueue(client, queue_key=self.settings.reminders.queue_key)

    def create_scheduler(self, queue: ReminderQueue, delivery: ReminderDelivery) -> ReminderScheduler:
        reminders = self.settings.reminders
        return ReminderScheduler(
            queue=queue,
            delivery=delivery,
            batch_size=reminders.batch_size,
            stale_after_ms=int(reminders.stale_after_hours * 3_600_000),
            stale_halts_batch=reminders.stale_halts_batch,
        )
