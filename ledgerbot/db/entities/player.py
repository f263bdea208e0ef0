"""
Player entities.

- Player: the economy profile, stored in the document backend. Mutators
  record what they change so a flush only rewrites those fields.
- PlayerStats: gameplay counters kept in the legacy key-value backend.
- LegacyPlayer: the pre-migration global profile, keyed ``<userId>:g`` in the
  legacy backend so all global profiles can be found with a ``:g$`` scan.
"""

from __future__ import annotations

import random
import time
from typing import ClassVar, Literal

from pydantic import Field, PrivateAttr

from ledgerbot.db.base import DocumentEntity, LegacyEntity
from ledgerbot.db.entities.money import VersionedBalance

# How long a player stays locked after set_locked(True).
LOCK_DURATION_MS = 35_000

GLOBAL_SUFFIX = ":g"

ExperienceKind = Literal["mining", "fishing", "chop"]


def _now_ms() -> int:
    return int(time.time() * 1000)


class Player(DocumentEntity):
    """
    Economy profile for one user.

    The balance is split over ``old_money`` and ``new_money`` during the
    money migration; use ``balance`` (or the money helpers) rather than either
    field. The façade tells each loaded player which field is authoritative.
    """

    kind: ClassVar[str] = "player"
    table_name: ClassVar[str] = "players"

    level: int = 0
    experience: int = 0
    reputation: int = 0
    old_money: int = 0
    new_money: int = 0
    money_on_bank: int = 0
    daily_streak: int = 0
    last_daily_at: int = 0
    games_won: int = 0
    locked_until: int = 0
    description: str | None = None
    married_since: int | None = None
    married_with: str | None = None
    main_badge: str | None = None
    show_badge: bool = True
    badges: list[str] = Field(default_factory=list)
    mining_experience: int = 0
    fishing_experience: int = 0
    chop_experience: int = 0
    pet_slots: int = 4
    last_seen_campaign: int = 0
    inventory: dict[str, int] = Field(default_factory=dict)

    _legacy_money: bool = PrivateAttr(default=False)

    def use_legacy_money(self, legacy: bool) -> None:
        """Select ``old_money`` (True) or ``new_money`` (False) as the live balance."""
        self._legacy_money = legacy

    @property
    def balance(self) -> VersionedBalance:
        return VersionedBalance(self, legacy=self._legacy_money)

    @property
    def current_money(self) -> int:
        return self.balance.value

    def set_current_money(self, amount: int) -> None:
        self.balance.set(amount)

    def add_money(self, amount: int) -> bool:
        return self.balance.add(amount)

    def remove_money(self, amount: int) -> bool:
        return self.balance.remove(amount)

    def add_reputation(self, amount: int = 1) -> None:
        self._set_tracked("reputation", self.reputation + amount)

    def has_badge(self, badge: str) -> bool:
        return badge in self.badges

    def add_badge_if_absent(self, badge: str) -> bool:
        if self.has_badge(badge):
            return False
        self._set_tracked("badges", [*self.badges, badge])
        return True

    def remove_badge(self, badge: str) -> bool:
        if not self.has_badge(badge):
            return False
        self._set_tracked("badges", [b for b in self.badges if b != badge])
        return True

    def is_locked(self, now_ms: int | None = None) -> bool:
        now_ms = _now_ms() if now_ms is None else now_ms
        return self.locked_until - now_ms > 0

    def set_locked(self, locked: bool, now_ms: int | None = None) -> None:
        now_ms = _now_ms() if now_ms is None else now_ms
        self._set_tracked("locked_until", now_ms + LOCK_DURATION_MS if locked else 0)

    def add_experience(self, kind: ExperienceKind, rng: random.Random | None = None) -> int:
        """Add 1-5 points of ``kind`` experience; returns the amount added."""
        rng = rng or random.Random()
        gained = rng.randint(1, 5)
        field = f"{kind}_experience"
        self._set_tracked(field, getattr(self, field) + gained)
        return gained

    def add_item(self, item: str, amount: int = 1) -> None:
        """Adjust an inventory count; entries that reach zero are dropped."""
        inventory = dict(self.inventory)
        count = inventory.get(item, 0) + amount
        if count < 0:
            raise ValueError(f"Cannot remove {-amount} x {item!r}: only {inventory.get(item, 0)} held")
        if count == 0:
            inventory.pop(item, None)
        else:
            inventory[item] = count
        self._set_tracked("inventory", inventory)

    def mark_campaign_seen(self, now_ms: int | None = None) -> None:
        self._set_tracked("last_seen_campaign", _now_ms() if now_ms is None else now_ms)


class PlayerStats(LegacyEntity):
    """Gameplay counters. Missing records are defaulted by the façade."""

    kind: ClassVar[str] = "player_stats"
    table_name: ClassVar[str] = "playerstats"

    looted: int = 0
    gambles_won: int = 0
    gambles_lost: int = 0
    gamble_win_amount: int = 0
    slots_wins: int = 0
    slots_win_amount: int = 0
    crafted_items: int = 0
    repaired_items: int = 0

    def record_gamble(self, won: bool, amount: int = 0) -> None:
        if won:
            self.gambles_won += 1
            self.gamble_win_amount += amount
        else:
            self.gambles_lost += 1


class LegacyPlayer(LegacyEntity):
    """Pre-migration global profile stored under ``<userId>:g``."""

    kind: ClassVar[str] = "legacy_player"
    table_name: ClassVar[str] = "players"

    money: int = 0
    reputation: int = 0
    level: int = 0
    experience: int = 0
    inventory: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def of(cls, user_id: str) -> LegacyPlayer:
        """Default global profile for ``user_id`` (accepts a bare user id or a full key)."""
        entity_id = user_id if user_id.endswith(GLOBAL_SUFFIX) else user_id + GLOBAL_SUFFIX
        return cls(id=entity_id)

    @property
    def user_id(self) -> str:
        return self.get_id().removesuffix(GLOBAL_SUFFIX)
