"""Per-user settings that are not part of the economy profile."""

from __future__ import annotations

from typing import ClassVar

from ledgerbot.db.base import DocumentEntity


class UserData(DocumentEntity):
    """User-level preferences and references."""

    kind: ClassVar[str] = "user"
    table_name: ClassVar[str] = "users"

    premium_key: str | None = None
    timezone: str | None = None
    lang: str | None = None

    def set_premium_key(self, key_id: str | None) -> None:
        self._set_tracked("premium_key", key_id)

    def set_timezone(self, timezone: str | None) -> None:
        self._set_tracked("timezone", timezone)
