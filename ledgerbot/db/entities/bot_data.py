"""Process-wide bot data (a single document)."""

from __future__ import annotations

from typing import ClassVar

from pydantic import Field

from ledgerbot.db.base import DocumentEntity

BOT_DATA_ID = "ledgerbot"


class BotData(DocumentEntity):
    """Global blacklists and similar singleton state."""

    kind: ClassVar[str] = "bot_data"
    table_name: ClassVar[str] = "botdata"

    blacklisted_users: list[str] = Field(default_factory=list)
    blacklisted_guilds: list[str] = Field(default_factory=list)

    @classmethod
    def create(cls) -> BotData:
        return cls(id=BOT_DATA_ID)

    def blacklist_user(self, user_id: str) -> bool:
        if user_id in self.blacklisted_users:
            return False
        self._set_tracked("blacklisted_users", [*self.blacklisted_users, user_id])
        return True

    def unblacklist_user(self, user_id: str) -> bool:
        if user_id not in self.blacklisted_users:
            return False
        self._set_tracked("blacklisted_users", [u for u in self.blacklisted_users if u != user_id])
        return True

    def blacklist_guild(self, guild_id: str) -> bool:
        if guild_id in self.blacklisted_guilds:
            return False
        self._set_tracked("blacklisted_guilds", [*self.blacklisted_guilds, guild_id])
        return True
