"""
Entity-kind registry.

Maps a kind tag (e.g. ``"player"``) to the table it lives in, the backend that
holds it and the functions that build it, either from a stored record or as a
fresh default. The registry is populated explicitly at process start (see
``ledgerbot.db.entities.build_registry``); stores never look classes up by name.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ledgerbot.db.base import Backend, ManagedEntity
from ledgerbot.db.errors import UnknownEntityKind


@dataclass(frozen=True)
class EntityKind:
    """Everything a store needs to know about one entity kind."""

    tag: str
    table: str
    backend: Backend
    construct: Callable[[dict[str, Any]], ManagedEntity]
    default: Callable[[str], ManagedEntity] | None = None


class EntityRegistry:
    """
    Discriminator -> constructor map for persisted entity kinds.

    Example:
        >>> registry = EntityRegistry()
        >>> registry.register_entity(Player)
        >>> registry.construct("player", {"id": "42", "level": 3}).level
        3
    """

    def __init__(self) -> None:
        self._kinds: dict[str, EntityKind] = {}

    def register(self, kind: EntityKind) -> None:
        if kind.tag in self._kinds:
            raise ValueError(f"Entity kind {kind.tag!r} is already registered")
        self._kinds[kind.tag] = kind

    def register_entity(self, entity_cls: type[ManagedEntity], defaultable: bool = True) -> None:
        """Register a ManagedEntity subclass using its class-level declarations."""
        self.register(EntityKind(
            tag=entity_cls.kind,
            table=entity_cls.table_name,
            backend=entity_cls.backend,
            construct=entity_cls.model_validate,
            default=entity_cls.of if defaultable else None,
        ))

    def get(self, tag: str) -> EntityKind:
        try:
            return self._kinds[tag]
        except KeyError:
            raise UnknownEntityKind(f"No entity kind registered for {tag!r}") from None

    def construct(self, tag: str, record: dict[str, Any]) -> ManagedEntity:
        return self.get(tag).construct(record)

    def default(self, tag: str, entity_id: str) -> ManagedEntity:
        kind = self.get(tag)
        if kind.default is None:
            raise UnknownEntityKind(f"Entity kind {tag!r} has no default constructor")
        return kind.default(entity_id)

    def kinds(self, backend: Backend | None = None) -> list[EntityKind]:
        return [k for k in self._kinds.values() if backend is None or k.backend == backend]

    def __contains__(self, tag: object) -> bool:
        return tag in self._kinds
