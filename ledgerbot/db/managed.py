"""
Managed database façade.

Single entry point for reading and writing entities. It holds no entity
state: each typed getter is bound to the store that owns that kind, and the
write operations route on the entity's backend.

    get_*            -> DocumentStore.get_or_default / find   (document kinds)
                     -> KeyValueStore.get (+ default here)   (legacy kinds)
    save             -> replace whole record
    save_updating    -> merge (legacy); whole replace (document)
    delete           -> remove record
    flush_changes    -> DocumentStore.update_fields(dirty set), then clear it

Store errors propagate unchanged. Access logging is diagnostic only and is
switched off unless ``DATABASE__LOG_DB_ACCESS`` is set.

The façade is constructed once at startup and passed to whatever needs
persistence; nothing reaches it through a global.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from ledgerbot.config.logging import AccessLog, get_logger
from ledgerbot.db.base import DocumentEntity, LegacyEntity, ManagedEntity
from ledgerbot.db.document_store import DocumentStore
from ledgerbot.db.entities import (
    BotData,
    CustomCommand,
    GuildData,
    LegacyPlayer,
    Marriage,
    Player,
    PlayerStats,
    PremiumKey,
    UserData,
)
from ledgerbot.db.entities.player import GLOBAL_SUFFIX
from ledgerbot.db.kv_store import KeyValueStore

logger = get_logger(__name__)


class ManagedDatabase:
    """
    Typed get / save / delete over the document and key-value stores.

    Args:
        documents: Initialized document store
        legacy: Key-value store for legacy kinds
        use_legacy_money: Whether loaded players treat ``old_money`` as their balance
        log_access: Log every store access (diagnostic)
    """

    def __init__(
        self,
        documents: DocumentStore,
        legacy: KeyValueStore,
        use_legacy_money: bool = False,
        log_access: bool = False,
    ):
        self._documents = documents
        self._legacy = legacy
        self._use_legacy_money = use_legacy_money
        self._log = AccessLog(logger, enabled=log_access)

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    async def get_player(self, user_id: str) -> Player:
        self._log("Requesting player %s from the document store", user_id)
        player = await self._documents.get_or_default(Player.kind, user_id)
        player.use_legacy_money(self._use_legacy_money)
        return player

    async def get_player_stats(self, user_id: str) -> PlayerStats:
        self._log("Requesting player stats %s from the key-value store", user_id)
        stats = await self._legacy.get(PlayerStats.kind, user_id)
        return stats if stats is not None else PlayerStats.of(user_id)

    async def get_legacy_player(self, user_id: str) -> LegacyPlayer:
        """Global legacy profile (``<userId>:g``)."""
        self._log("Requesting legacy player %s from the key-value store", user_id)
        player = await self._legacy.get(LegacyPlayer.kind, user_id + GLOBAL_SUFFIX)
        return player if player is not None else LegacyPlayer.of(user_id)

    def get_legacy_players(self) -> AsyncIterator[LegacyPlayer]:
        """Every global legacy profile. Lazy, single-pass."""
        self._log("Requesting all legacy players from the key-value store")
        return self._legacy.scan_by_pattern(LegacyPlayer.kind, f"{GLOBAL_SUFFIX}$")

    # ------------------------------------------------------------------
    # Users, guilds, bot
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserData:
        self._log("Requesting user %s from the document store", user_id)
        return await self._documents.get_or_default(UserData.kind, user_id)

    async def get_guild(self, guild_id: str) -> GuildData:
        self._log("Requesting guild %s from the document store", guild_id)
        return await self._documents.get_or_default(GuildData.kind, guild_id)

    async def get_bot_data(self) -> BotData:
        """The singleton bot document, created and saved on first access."""
        self._log("Requesting bot data from the document store")
        data = await self._documents.find_first(BotData.kind)
        if data is None:
            data = BotData.create()
            await self._documents.replace_whole(data)
        return data

    # ------------------------------------------------------------------
    # Kinds that may legitimately not exist
    # ------------------------------------------------------------------

    async def get_marriage(self, marriage_id: str | None) -> Marriage | None:
        if marriage_id is None:
            return None
        self._log("Requesting marriage %s from the document store", marriage_id)
        return await self._documents.find(Marriage.kind, marriage_id)

    async def get_marriages(self) -> list[Marriage]:
        self._log("Requesting all marriages from the document store")
        return await self._documents.find_all(Marriage.kind)

    async def get_premium_key(self, key_id: str | None) -> PremiumKey | None:
        """Look up a premium key; None doubles as "not a valid key"."""
        if key_id is None:
            return None
        self._log("Requesting premium key %s from the document store", key_id)
        return await self._documents.find(PremiumKey.kind, key_id)

    async def get_premium_keys(self) -> list[PremiumKey]:
        self._log("Requesting all premium keys from the document store")
        return await self._documents.find_all(PremiumKey.kind)

    async def get_custom_command(self, guild_id: str, name: str) -> CustomCommand | None:
        command_id = CustomCommand.make_id(guild_id, name)
        self._log("Requesting custom command %s from the document store", command_id)
        return await self._documents.find(CustomCommand.kind, command_id)

    async def get_custom_commands(self, guild_id: str) -> list[CustomCommand]:
        self._log("Requesting all custom commands on guild %s from the document store", guild_id)
        return await self._documents.find_by_field(CustomCommand.kind, "guild_id", guild_id)

    async def get_all_custom_commands(self) -> list[CustomCommand]:
        self._log("Requesting all custom commands from the document store")
        return await self._documents.find_all(CustomCommand.kind)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(self, entity: ManagedEntity) -> asyncio.Task | None:
        """
        Replace the whole stored record with ``entity``.

        Document kinds are written before this returns. Legacy kinds are
        written in the background; the returned task is the write handle.
        The entity's dirty-field set is left alone.
        """
        self._log("Saving %s %s:%s (replacing)", type(entity).__name__, entity.get_table_name(), entity.id)
        if isinstance(entity, DocumentEntity):
            await self._documents.replace_whole(entity)
            return None
        if isinstance(entity, LegacyEntity):
            return self._legacy.upsert_replace(entity)
        raise TypeError(f"Cannot save {type(entity).__name__}: unknown backend")

    async def save_updating(self, entity: ManagedEntity) -> asyncio.Task | None:
        """
        Save ``entity`` letting the backend merge it with the stored record.

        Legacy kinds merge field by field (last writer wins per field).
        The document backend treats the in-memory entity as authoritative and
        replaces the whole document.
        """
        self._log("Saving %s %s:%s (updating)", type(entity).__name__, entity.get_table_name(), entity.id)
        if isinstance(entity, DocumentEntity):
            await self._documents.replace_whole(entity)
            return None
        if isinstance(entity, LegacyEntity):
            return self._legacy.upsert_merge(entity)
        raise TypeError(f"Cannot save {type(entity).__name__}: unknown backend")

    async def delete(self, entity: ManagedEntity) -> asyncio.Task | None:
        self._log("Deleting %s %s:%s", type(entity).__name__, entity.get_table_name(), entity.id)
        if isinstance(entity, DocumentEntity):
            await self._documents.delete_whole(entity)
            return None
        if isinstance(entity, LegacyEntity):
            return self._legacy.delete(entity)
        raise TypeError(f"Cannot delete {type(entity).__name__}: unknown backend")

    async def flush_changes(self, entity: DocumentEntity) -> bool:
        """
        Persist the fields ``entity`` has marked dirty, then clear its tracker.

        The tracker is cleared only when a stored document was updated. If no
        document matched (never saved) or the store call raises, the pending
        changes stay on the entity so a later save still carries them. An
        empty tracker writes nothing.

        Returns:
            True if a stored document was updated
        """
        fields = entity.dirty_fields
        self._log(
            "Updating tracked set for id %s (table: %s, set size: %d)",
            entity.id, entity.get_table_name(), len(fields),
        )
        updated = await self._documents.update_fields(entity, fields)
        if updated:
            entity.clear_dirty()
        return updated

    async def update_field_value(self, entity: DocumentEntity, key: str, value: Any) -> bool:
        """Set a single field of the stored document, bypassing the tracker."""
        self._log("Updating id %s key %s (table %s) to %s", entity.id, key, entity.get_table_name(), value)
        return await self._documents.update_fields(entity, {key: value})
