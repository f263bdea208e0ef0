"""
Persisted entity kinds.

``build_registry()`` registers every kind explicitly; call it once at
startup and hand the registry to the stores.
"""

from ledgerbot.db.entities.bot_data import BotData
from ledgerbot.db.entities.guild import CustomCommand, GuildData
from ledgerbot.db.entities.marriage import Marriage
from ledgerbot.db.entities.money import VersionedBalance
from ledgerbot.db.entities.player import LegacyPlayer, Player, PlayerStats
from ledgerbot.db.entities.premium_key import PremiumKey, PremiumKeyType
from ledgerbot.db.entities.user import UserData
from ledgerbot.db.registry import EntityRegistry


def build_registry() -> EntityRegistry:
    """Create the registry of every entity kind the bot persists."""
    registry = EntityRegistry()

    # Document backend, defaulted when missing
    registry.register_entity(Player)
    registry.register_entity(UserData)
    registry.register_entity(GuildData)
    registry.register_entity(BotData)

    # Document backend, may legitimately not exist
    registry.register_entity(Marriage, defaultable=False)
    registry.register_entity(PremiumKey, defaultable=False)
    registry.register_entity(CustomCommand, defaultable=False)

    # Legacy key-value backend
    registry.register_entity(PlayerStats)
    registry.register_entity(LegacyPlayer)

    return registry


__all__ = [
    "BotData",
    "CustomCommand",
    "GuildData",
    "LegacyPlayer",
    "Marriage",
    "Player",
    "PlayerStats",
    "PremiumKey",
    "PremiumKeyType",
    "UserData",
    "VersionedBalance",
    "build_registry",
]
