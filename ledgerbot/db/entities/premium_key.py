"""Premium keys that unlock premium features for a user or a guild."""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import ClassVar

from ledgerbot.db.base import DocumentEntity

DAY_MS = 24 * 60 * 60 * 1000


class PremiumKeyType(str, Enum):
    USER = "user"
    GUILD = "guild"


class PremiumKey(DocumentEntity):
    """
    A premium key. Looking one up by id doubles as a validity check: an
    unknown id yields None.

    A key starts unactivated; ``activate`` records when the duration starts
    counting down.
    """

    kind: ClassVar[str] = "premium_key"
    table_name: ClassVar[str] = "keys"

    owner: str
    key_type: PremiumKeyType = PremiumKeyType.USER
    duration_days: int = 365
    activated_at: int | None = None
    linked_to: str | None = None
    enabled: bool = True

    @classmethod
    def generate(
        cls,
        owner: str,
        key_type: PremiumKeyType,
        duration_days: int = 365,
        linked_to: str | None = None,
    ) -> PremiumKey:
        return cls(
            id=uuid.uuid4().hex,
            owner=owner,
            key_type=key_type,
            duration_days=duration_days,
            linked_to=linked_to,
        )

    def activate(self, now_ms: int | None = None) -> None:
        self._set_tracked("activated_at", int(time.time() * 1000) if now_ms is None else now_ms)

    def expires_at(self) -> int | None:
        if self.activated_at is None:
            return None
        return self.activated_at + self.duration_days * DAY_MS

    def is_valid(self, now_ms: int | None = None) -> bool:
        """Enabled and either not yet activated or still within its duration."""
        if not self.enabled:
            return False
        expires = self.expires_at()
        if expires is None:
            return True
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        return now_ms < expires
