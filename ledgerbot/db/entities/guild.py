"""Guild settings and guild-scoped custom commands."""

from __future__ import annotations

from typing import ClassVar

from pydantic import Field

from ledgerbot.db.base import DocumentEntity


class GuildData(DocumentEntity):
    """Per-guild configuration."""

    kind: ClassVar[str] = "guild"
    table_name: ClassVar[str] = "guilds"

    premium_key: str | None = None
    prefix: str | None = None
    lang: str | None = None
    disabled_commands: list[str] = Field(default_factory=list)

    def set_premium_key(self, key_id: str | None) -> None:
        self._set_tracked("premium_key", key_id)

    def set_prefix(self, prefix: str | None) -> None:
        self._set_tracked("prefix", prefix)

    def disable_command(self, name: str) -> bool:
        if name in self.disabled_commands:
            return False
        self._set_tracked("disabled_commands", [*self.disabled_commands, name])
        return True

    def enable_command(self, name: str) -> bool:
        if name not in self.disabled_commands:
            return False
        self._set_tracked("disabled_commands", [c for c in self.disabled_commands if c != name])
        return True


class CustomCommand(DocumentEntity):
    """
    A guild-defined text command, keyed ``<guildId>:<name>``.

    Custom commands are looked up, never defaulted: a missing command is a
    legitimate answer.
    """

    kind: ClassVar[str] = "custom_command"
    table_name: ClassVar[str] = "commands"

    guild_id: str
    name: str
    owner: str | None = None
    values: list[str] = Field(default_factory=list)
    locked: bool = False

    @staticmethod
    def make_id(guild_id: str, name: str) -> str:
        return f"{guild_id}:{name}"

    @classmethod
    def create(cls, guild_id: str, name: str, values: list[str], owner: str | None = None) -> CustomCommand:
        return cls(
            id=cls.make_id(guild_id, name),
            guild_id=guild_id,
            name=name,
            values=values,
            owner=owner,
        )

    def add_value(self, value: str) -> None:
        self._set_tracked("values", [*self.values, value])
