"""Marriages between two players."""

from __future__ import annotations

import time
import uuid
from typing import ClassVar

from ledgerbot.db.base import DocumentEntity


class Marriage(DocumentEntity):
    """
    A marriage record. Players reference it by id; it may legitimately be
    absent (never married, or divorced and deleted).
    """

    kind: ClassVar[str] = "marriage"
    table_name: ClassVar[str] = "marriages"

    player1: str
    player2: str
    created_at: int = 0
    locked: bool = False

    @classmethod
    def create(cls, player1: str, player2: str, now_ms: int | None = None) -> Marriage:
        return cls(
            id=uuid.uuid4().hex,
            player1=player1,
            player2=player2,
            created_at=int(time.time() * 1000) if now_ms is None else now_ms,
        )

    def other_player(self, player_id: str) -> str | None:
        """Return the partner of ``player_id``, or None if they are not in this marriage."""
        if player_id == self.player1:
            return self.player2
        if player_id == self.player2:
            return self.player1
        return None
