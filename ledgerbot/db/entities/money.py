"""
Versioned balance for entities that carry two money fields.

Player balances are being migrated from ``old_money`` to ``new_money``.
Which one is authoritative depends on how the bot is deployed (premium and
self-hosted bots keep the legacy field). VersionedBalance is the single place
that decision is made: callers read and write "the balance" and never name
either field.
"""

from __future__ import annotations

from ledgerbot.db.base import ManagedEntity

LEGACY_FIELD = "old_money"
CURRENT_FIELD = "new_money"

# Stored as a 64-bit signed integer by the backends.
MAX_BALANCE = 2**63 - 1


class VersionedBalance:
    """
    Reads and writes whichever money field is authoritative for an entity.

    Every write goes through the owner's tracked setter, so the change is
    picked up by the next flush under the right field name.

    Example:
        >>> balance = VersionedBalance(player, legacy=False)
        >>> balance.add(250)
        True
        >>> player.dirty_fields
        {'new_money': 250}
    """

    def __init__(self, owner: ManagedEntity, legacy: bool):
        self._owner = owner
        self.legacy = legacy

    @property
    def field(self) -> str:
        return LEGACY_FIELD if self.legacy else CURRENT_FIELD

    @property
    def value(self) -> int:
        return getattr(self._owner, self.field)

    def set(self, amount: int) -> None:
        """Set the balance, clamping negatives to zero."""
        self._owner._set_tracked(self.field, max(0, amount))

    def add(self, amount: int) -> bool:
        """
        Add ``amount`` to the balance.

        Returns:
            False (and changes nothing) if amount is negative

        Raises:
            OverflowError: If the result no longer fits in a 64-bit integer
        """
        if amount < 0:
            return False
        total = self.value + amount
        if total > MAX_BALANCE:
            raise OverflowError(f"Balance would overflow: {self.value} + {amount}")
        self._owner._set_tracked(self.field, total)
        return True

    def remove(self, amount: int) -> bool:
        """Subtract ``amount``; refuses (returns False) if the balance would go negative."""
        remaining = self.value - amount
        if remaining < 0:
            return False
        self._owner._set_tracked(self.field, remaining)
        return True
