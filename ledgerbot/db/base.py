"""
Base classes for persistable entities and the stores that hold them.

This module defines the entity contract shared by both backends:
- DirtyFieldTracker: pending (field -> value) mutations awaiting a flush
- ManagedEntity: identity, home collection and dirty-field bookkeeping
- DocumentEntity / LegacyEntity: which backend an entity kind lives in
- DefaultableStore / NullableStore: the two read capabilities. A document
  store synthesizes a default for a missing id; the legacy key-value store
  returns None and leaves defaulting to the caller.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic_core import to_jsonable_python

from ledgerbot.db.errors import InvariantViolation

Backend = Literal["document", "kv"]


class DirtyFieldTracker:
    """
    Accumulates field mutations pending a selective update.

    Repeated marks of the same field keep only the latest value. The tracker
    rejects field names outside the schema it was built with.

    Example:
        >>> tracker = DirtyFieldTracker(frozenset({"level", "experience"}))
        >>> tracker.mark("level", 2)
        >>> tracker.mark("level", 3)
        >>> tracker.snapshot()
        {'level': 3}
    """

    def __init__(self, schema: frozenset[str]):
        self._schema = schema
        self._pending: dict[str, Any] = {}

    def mark(self, field: str, value: Any) -> None:
        if field not in self._schema:
            raise InvariantViolation(f"Field {field!r} is not part of the entity schema")
        self._pending[field] = value

    def clear(self) -> None:
        self._pending.clear()

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON-compatible copy of the pending changes."""
        return {name: to_jsonable_python(value) for name, value in self._pending.items()}

    def __contains__(self, field: object) -> bool:
        return field in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def __iter__(self) -> Iterator[str]:
        return iter(self._pending)


class ManagedEntity(BaseModel):
    """
    A persistable domain object with a stable identity and a home collection.

    Subclasses declare ``kind`` (registry tag), ``table_name`` (collection or
    table) and ``backend``. The ``id`` field is frozen once set; two entities
    with the same ``id`` and ``table_name`` denote the same logical record.

    Mutator methods on subclasses go through ``_set_tracked`` so the change is
    both applied and recorded for the next flush. Only the façade clears the
    tracker, and only after the flush succeeded.
    """

    kind: ClassVar[str]
    table_name: ClassVar[str]
    backend: ClassVar[Backend]

    id: str | None = Field(default=None, frozen=True, description="Record identity")

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    _dirty: DirtyFieldTracker = PrivateAttr()

    def model_post_init(self, __context: Any) -> None:
        self._dirty = DirtyFieldTracker(self.schema_fields())

    @classmethod
    def schema_fields(cls) -> frozenset[str]:
        """Names of the persisted fields, excluding the identity."""
        return frozenset(name for name in cls.model_fields if name != "id")

    def get_id(self) -> str:
        if not self.id:
            raise InvariantViolation(
                f"{type(self).__name__} has no identity assigned yet"
            )
        return self.id

    def get_table_name(self) -> str:
        return self.table_name

    def mark_dirty(self, field: str, value: Any) -> None:
        """Record a pending change for ``field`` (last write wins until flushed)."""
        self._dirty.mark(field, value)

    def clear_dirty(self) -> None:
        self._dirty.clear()

    @property
    def dirty_fields(self) -> dict[str, Any]:
        """Pending changes as a JSON-compatible mapping (a copy)."""
        return self._dirty.snapshot()

    def _set_tracked(self, field: str, value: Any) -> None:
        setattr(self, field, value)
        self.mark_dirty(field, getattr(self, field))

    def to_record(self) -> dict[str, Any]:
        """Serialize all persisted fields (without ``id``) to JSON-compatible values."""
        return self.model_dump(mode="json", exclude={"id"})


class DocumentEntity(ManagedEntity):
    """Entity kind stored in the document backend (supports selective updates)."""

    backend: ClassVar[Backend] = "document"

    @classmethod
    def of(cls, entity_id: str) -> DocumentEntity:
        """Build the default (never persisted) entity for ``entity_id``."""
        return cls(id=entity_id)


class LegacyEntity(ManagedEntity):
    """Entity kind stored in the legacy key-value backend."""

    backend: ClassVar[Backend] = "kv"

    @classmethod
    def of(cls, entity_id: str) -> LegacyEntity:
        return cls(id=entity_id)


class DefaultableStore(ABC):
    """A store whose reads never come back empty-handed."""

    @abstractmethod
    async def get_or_default(
        self,
        kind: str,
        entity_id: str,
        default_factory: Callable[[], ManagedEntity] | None = None,
    ) -> ManagedEntity:
        """
        Look up ``entity_id``; build a default in memory when absent.

        The default is NOT persisted until it is explicitly saved.
        """
        pass


class NullableStore(ABC):
    """A store that reports a missing record as None."""

    @abstractmethod
    async def get(self, kind: str, entity_id: str) -> ManagedEntity | None:
        """Look up ``entity_id``; return None when absent."""
        pass


def check_fields(entity: ManagedEntity, fields: Mapping[str, Any]) -> None:
    """Raise InvariantViolation if ``fields`` names anything outside the entity schema."""
    unknown = set(fields) - entity.schema_fields()
    if unknown:
        raise InvariantViolation(
            f"{type(entity).__name__} has no field(s) {sorted(unknown)}"
        )
