"""
Tests for ManagedDatabase (the façade).

Most tests mock the stores to pin down routing, defaulting and the
dirty-field lifecycle. TestWithRealStores runs the façade over SQLite
(aiosqlite, tmp_path) and fakeredis.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fakeredis import aioredis

from ledgerbot.db.document_store import DocumentStore
from ledgerbot.db.entities import (
    BotData,
    CustomCommand,
    LegacyPlayer,
    Marriage,
    Player,
    PlayerStats,
    UserData,
    build_registry,
)
from ledgerbot.db.errors import BackendUnavailable
from ledgerbot.db.kv_store import KeyValueStore
from ledgerbot.db.managed import ManagedDatabase


def _make_db(use_legacy_money=False, log_access=False):
    documents = MagicMock(spec=DocumentStore)
    documents.get_or_default = AsyncMock(side_effect=lambda kind, entity_id: {
        "player": Player.of, "user": UserData.of,
    }[kind](entity_id))
    documents.find = AsyncMock(return_value=None)
    documents.find_first = AsyncMock(return_value=None)
    documents.find_all = AsyncMock(return_value=[])
    documents.find_by_field = AsyncMock(return_value=[])
    documents.replace_whole = AsyncMock()
    documents.update_fields = AsyncMock(return_value=True)
    documents.delete_whole = AsyncMock()

    legacy = MagicMock(spec=KeyValueStore)
    legacy.get = AsyncMock(return_value=None)
    legacy.upsert_replace = MagicMock(return_value="replace-task")
    legacy.upsert_merge = MagicMock(return_value="merge-task")
    legacy.delete = MagicMock(return_value="delete-task")

    db = ManagedDatabase(documents, legacy, use_legacy_money=use_legacy_money, log_access=log_access)
    return db, documents, legacy


class TestGetters:
    @pytest.mark.asyncio
    async def test_get_player_uses_current_money_by_default(self):
        db, documents, _ = _make_db()
        player = await db.get_player("1")
        documents.get_or_default.assert_awaited_once_with("player", "1")
        assert player.balance.field == "new_money"

    @pytest.mark.asyncio
    async def test_get_player_on_legacy_deployment(self):
        db, _, _ = _make_db(use_legacy_money=True)
        player = await db.get_player("1")
        assert player.balance.field == "old_money"

    @pytest.mark.asyncio
    async def test_get_player_stats_defaults_missing_record(self):
        db, _, legacy = _make_db()
        stats = await db.get_player_stats("1")
        legacy.get.assert_awaited_once_with("player_stats", "1")
        assert isinstance(stats, PlayerStats)
        assert stats.id == "1"

    @pytest.mark.asyncio
    async def test_get_player_stats_returns_stored_record(self):
        db, _, legacy = _make_db()
        legacy.get.return_value = PlayerStats(id="1", looted=4)
        assert (await db.get_player_stats("1")).looted == 4

    @pytest.mark.asyncio
    async def test_get_legacy_player_uses_global_key(self):
        db, _, legacy = _make_db()
        player = await db.get_legacy_player("1")
        legacy.get.assert_awaited_once_with("legacy_player", "1:g")
        assert isinstance(player, LegacyPlayer)
        assert player.id == "1:g"

    def test_get_legacy_players_scans_global_suffix(self):
        db, _, legacy = _make_db()
        legacy.scan_by_pattern = MagicMock(return_value="iterator")
        assert db.get_legacy_players() == "iterator"
        legacy.scan_by_pattern.assert_called_once_with("legacy_player", ":g$")

    @pytest.mark.asyncio
    async def test_get_user(self):
        db, documents, _ = _make_db()
        user = await db.get_user("u")
        assert isinstance(user, UserData)
        documents.get_or_default.assert_awaited_once_with("user", "u")

    @pytest.mark.asyncio
    async def test_get_bot_data_creates_on_first_access(self):
        db, documents, _ = _make_db()
        data = await db.get_bot_data()
        assert isinstance(data, BotData)
        documents.replace_whole.assert_awaited_once_with(data)

    @pytest.mark.asyncio
    async def test_get_bot_data_existing(self):
        db, documents, _ = _make_db()
        stored = BotData.create()
        documents.find_first.return_value = stored
        assert await db.get_bot_data() is stored
        documents.replace_whole.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_optional_reference_none_short_circuits(self):
        db, documents, _ = _make_db()
        assert await db.get_marriage(None) is None
        assert await db.get_premium_key(None) is None
        documents.find.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_marriage_is_none(self):
        db, documents, _ = _make_db()
        assert await db.get_marriage("m1") is None
        documents.find.assert_awaited_once_with("marriage", "m1")

    @pytest.mark.asyncio
    async def test_custom_command_lookups(self):
        db, documents, _ = _make_db()
        await db.get_custom_command("g1", "hello")
        documents.find.assert_awaited_once_with("custom_command", "g1:hello")
        await db.get_custom_commands("g1")
        documents.find_by_field.assert_awaited_once_with("custom_command", "guild_id", "g1")

    @pytest.mark.asyncio
    async def test_backend_errors_propagate(self):
        db, documents, _ = _make_db()
        documents.get_or_default.side_effect = BackendUnavailable("document store", "down")
        with pytest.raises(BackendUnavailable):
            await db.get_player("1")


class TestWrites:
    @pytest.mark.asyncio
    async def test_save_document_replaces_whole(self):
        db, documents, _ = _make_db()
        player = Player.of("1")
        assert await db.save(player) is None
        documents.replace_whole.assert_awaited_once_with(player)

    @pytest.mark.asyncio
    async def test_save_legacy_returns_write_handle(self):
        db, _, legacy = _make_db()
        stats = PlayerStats.of("1")
        assert await db.save(stats) == "replace-task"
        legacy.upsert_replace.assert_called_once_with(stats)

    @pytest.mark.asyncio
    async def test_save_updating_legacy_merges(self):
        db, _, legacy = _make_db()
        stats = PlayerStats.of("1")
        assert await db.save_updating(stats) == "merge-task"
        legacy.upsert_merge.assert_called_once_with(stats)

    @pytest.mark.asyncio
    async def test_save_updating_document_replaces(self):
        db, documents, _ = _make_db()
        marriage = Marriage.create("a", "b")
        await db.save_updating(marriage)
        documents.replace_whole.assert_awaited_once_with(marriage)

    @pytest.mark.asyncio
    async def test_save_does_not_clear_dirty_fields(self):
        db, _, _ = _make_db()
        player = Player.of("1")
        player.add_reputation()
        await db.save(player)
        assert player.dirty_fields == {"reputation": 1}

    @pytest.mark.asyncio
    async def test_delete_routes_by_backend(self):
        db, documents, legacy = _make_db()
        command = CustomCommand.create("g", "n", ["v"])
        await db.delete(command)
        documents.delete_whole.assert_awaited_once_with(command)
        assert await db.delete(PlayerStats.of("1")) == "delete-task"


class TestFlushChanges:
    @pytest.mark.asyncio
    async def test_flush_sends_dirty_set_and_clears(self):
        db, documents, _ = _make_db()
        player = Player.of("1")
        player.add_money(50)
        player.add_reputation(2)

        assert await db.flush_changes(player) is True

        documents.update_fields.assert_awaited_once_with(player, {"new_money": 50, "reputation": 2})
        assert player.dirty_fields == {}

    @pytest.mark.asyncio
    async def test_failed_flush_keeps_dirty_set(self):
        db, documents, _ = _make_db()
        documents.update_fields.side_effect = BackendUnavailable("document store", "down")
        player = Player.of("1")
        player.add_reputation()

        with pytest.raises(BackendUnavailable):
            await db.flush_changes(player)
        assert player.dirty_fields == {"reputation": 1}

    @pytest.mark.asyncio
    async def test_flush_matching_no_document_keeps_dirty_set(self):
        db, documents, _ = _make_db()
        documents.update_fields.return_value = False
        user = UserData.of("1")
        user.set_timezone("UTC")

        assert await db.flush_changes(user) is False
        assert user.dirty_fields == {"timezone": "UTC"}

    @pytest.mark.asyncio
    async def test_update_field_value_bypasses_tracker(self):
        db, documents, _ = _make_db()
        player = Player.of("1")
        await db.update_field_value(player, "level", 3)
        documents.update_fields.assert_awaited_once_with(player, {"level": 3})
        assert player.dirty_fields == {}


class TestAccessLogging:
    @pytest.mark.asyncio
    async def test_access_logging_off_by_default(self, caplog):
        caplog.set_level(logging.INFO, logger="ledgerbot")
        db, _, _ = _make_db()
        await db.get_player("1")
        assert "Requesting player" not in caplog.text

    @pytest.mark.asyncio
    async def test_access_logging_when_enabled(self, caplog):
        caplog.set_level(logging.INFO, logger="ledgerbot")
        db, _, _ = _make_db(log_access=True)
        await db.get_player("1")
        assert "Requesting player 1 from the document store" in caplog.text


@pytest_asyncio.fixture
async def real_db(tmp_path):
    registry = build_registry()
    client = aioredis.FakeRedis(decode_responses=True)
    url = f"sqlite+aiosqlite:///{tmp_path / 'ledgerbot.db'}"
    async with DocumentStore(url, registry) as documents, KeyValueStore(client, registry) as legacy:
        yield ManagedDatabase(documents, legacy), legacy
    await client.aclose()


class TestWithRealStores:
    @pytest.mark.asyncio
    async def test_save_then_get_round_trip(self, real_db):
        db, _ = real_db
        user = UserData.of("1")
        user.set_timezone("Europe/Madrid")
        user.set_premium_key("key-1")
        await db.save(user)

        loaded = await db.get_user("1")

        assert loaded.model_dump() == user.model_dump()

    @pytest.mark.asyncio
    async def test_disjoint_flushes_both_land(self, real_db):
        db, _ = real_db
        base = Player.of("1")
        base.add_money(100)
        base.add_badge_if_absent("early")
        await db.save(base)

        first = await db.get_player("1")
        second = await db.get_player("1")
        first.add_money(25)
        second.add_reputation(3)
        assert await db.flush_changes(first) is True
        assert await db.flush_changes(second) is True

        stored = await db.get_player("1")
        assert stored.current_money == 125
        assert stored.reputation == 3
        assert stored.badges == ["early"]

    @pytest.mark.asyncio
    async def test_flush_of_never_saved_document_keeps_changes(self, real_db):
        db, _ = real_db
        player = await db.get_player("new")
        player.add_money(10)

        assert await db.flush_changes(player) is False
        assert player.dirty_fields == {"new_money": 10}

        await db.save(player)
        assert (await db.get_player("new")).current_money == 10

    @pytest.mark.asyncio
    async def test_legacy_save_then_get(self, real_db):
        db, legacy = real_db
        await db.save(PlayerStats(id="1", looted=4))
        await legacy.drain()

        assert (await db.get_player_stats("1")).looted == 4
        missing = await db.get_player_stats("2")
        assert missing.id == "2"
        assert missing.looted == 0
