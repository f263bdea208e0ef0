"""
Document store implementation using SQLAlchemy (async).

Each document entity kind gets its own table with two columns:
- ``id``: the record identity (primary key)
- ``data``: the rest of the entity as a JSON document

Reads synthesize a default entity for a missing id. Writes come in two
flavours: ``replace_whole`` upserts the complete document, ``update_fields``
sets only the named top-level fields in a single UPDATE statement so that
concurrent flushes touching disjoint fields do not clobber each other.

Example:
    >>> async with DocumentStore("sqlite+aiosqlite:///data/ledgerbot.db", registry) as store:
    ...     player = await store.get_or_default("player", "1234")
    ...     await store.replace_whole(player)
    ...     await store.update_fields(player, {"level": 2})
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import (
    JSON,
    Column,
    MetaData,
    String,
    Table,
    cast,
    delete,
    func,
    insert,
    literal,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from ledgerbot.config.logging import get_logger
from ledgerbot.db.base import DefaultableStore, ManagedEntity, check_fields
from ledgerbot.db.errors import BackendUnavailable
from ledgerbot.db.registry import EntityRegistry

logger = get_logger(__name__)

DocumentJSON = JSON().with_variant(JSONB(), "postgresql")


class DocumentStore(DefaultableStore):
    """
    Get-or-default, whole-document and selective-field persistence.

    Attributes:
        url: SQLAlchemy async database URL
        _engine: AsyncEngine (created in initialize() unless injected)
        _tables: Table objects keyed by table name
        _initialized: Whether tables exist and the store is usable
    """

    def __init__(
        self,
        url: str,
        registry: EntityRegistry,
        echo: bool = False,
        engine: AsyncEngine | None = None,
    ):
        """
        Initialize the document store (doesn't connect yet).

        Args:
            url: SQLAlchemy async URL, e.g. "sqlite+aiosqlite:///data/ledgerbot.db"
            registry: Entity registry; every kind with backend "document" gets a table
            echo: Echo emitted SQL
            engine: Pre-built engine (tests); skips engine creation in initialize()
        """
        self.url = url
        self._registry = registry
        self._echo = echo
        self._engine = engine
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._initialized = False

        for kind in registry.kinds(backend="document"):
            if kind.table not in self._tables:
                self._tables[kind.table] = Table(
                    kind.table,
                    self._metadata,
                    Column("id", String(191), primary_key=True),
                    Column("data", DocumentJSON, nullable=False),
                )

    async def initialize(self) -> None:
        """
        Create the engine and any missing tables.

        Raises:
            BackendUnavailable: If the database cannot be reached
        """
        url = make_url(self.url)
        logger.info(f"Initializing document store at {url.render_as_string(hide_password=True)}")

        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        if self._engine is None:
            self._engine = create_async_engine(self.url, echo=self._echo)

        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(self._metadata.create_all)
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Failed to initialize document store: {e}")
            raise BackendUnavailable("document store", str(e)) from e

        self._initialized = True
        logger.info(f"Document store ready ({len(self._tables)} collections)")

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        """Open a transaction; connection-level failures surface as BackendUnavailable."""
        if not self._initialized or self._engine is None:
            raise RuntimeError(
                "Document store not initialized. "
                "Use 'async with DocumentStore(...) as store:' or call await store.initialize()"
            )
        try:
            async with self._engine.begin() as conn:
                yield conn
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Document store operation failed: {e}")
            raise BackendUnavailable("document store", str(e)) from e

    def _table(self, kind: str) -> Table:
        table_name = self._registry.get(kind).table
        try:
            return self._tables[table_name]
        except KeyError:
            raise ValueError(f"Entity kind {kind!r} is not stored in the document backend") from None

    def _materialize(self, kind: str, row: Any) -> ManagedEntity:
        return self._registry.construct(kind, {**row.data, "id": row.id})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find(self, kind: str, entity_id: str) -> ManagedEntity | None:
        """Look up a document by id; None when absent."""
        table = self._table(kind)
        async with self._connect() as conn:
            result = await conn.execute(
                select(table.c.id, table.c.data).where(table.c.id == entity_id)
            )
            row = result.first()
        return None if row is None else self._materialize(kind, row)

    async def get_or_default(
        self,
        kind: str,
        entity_id: str,
        default_factory: Callable[[], ManagedEntity] | None = None,
    ) -> ManagedEntity:
        found = await self.find(kind, entity_id)
        if found is not None:
            return found
        if default_factory is not None:
            return default_factory()
        return self._registry.default(kind, entity_id)

    async def find_first(self, kind: str) -> ManagedEntity | None:
        """Return any one document of ``kind`` (for singleton collections)."""
        table = self._table(kind)
        async with self._connect() as conn:
            result = await conn.execute(select(table.c.id, table.c.data).limit(1))
            row = result.first()
        return None if row is None else self._materialize(kind, row)

    async def find_all(self, kind: str) -> list[ManagedEntity]:
        table = self._table(kind)
        async with self._connect() as conn:
            result = await conn.execute(select(table.c.id, table.c.data))
            rows = result.all()
        return [self._materialize(kind, row) for row in rows]

    async def find_by_field(self, kind: str, field: str, value: str) -> list[ManagedEntity]:
        """Return documents whose top-level string ``field`` equals ``value``."""
        table = self._table(kind)
        async with self._connect() as conn:
            result = await conn.execute(
                select(table.c.id, table.c.data).where(table.c.data[field].as_string() == value)
            )
            rows = result.all()
        return [self._materialize(kind, row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def replace_whole(self, entity: ManagedEntity) -> None:
        """Upsert the complete document, replacing any stored version."""
        table = self._table(entity.kind)
        entity_id = entity.get_id()
        record = entity.to_record()
        dialect = self._dialect()

        async with self._connect() as conn:
            if dialect in ("sqlite", "postgresql"):
                insert_fn = sqlite_insert if dialect == "sqlite" else pg_insert
                stmt = insert_fn(table).values(id=entity_id, data=record)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[table.c.id],
                    set_={"data": stmt.excluded.data},
                )
                await conn.execute(stmt)
            else:
                result = await conn.execute(
                    update(table).where(table.c.id == entity_id).values(data=record)
                )
                if result.rowcount == 0:
                    await conn.execute(insert(table).values(id=entity_id, data=record))

    async def update_fields(self, entity: ManagedEntity, fields: Mapping[str, Any]) -> bool:
        """
        Set only the given top-level fields of the stored document.

        Fields not named are left untouched. An empty mapping is a caller
        error: it is logged and nothing is written. A document that was never
        saved is not created here.

        Args:
            entity: Entity whose stored document is updated
            fields: field name -> new value

        Returns:
            True if a stored document was updated

        Raises:
            InvariantViolation: If a field is not part of the entity schema
            BackendUnavailable: If the database cannot be reached
        """
        if not fields:
            logger.warning(
                f"Empty tracked set when requesting update of "
                f"{entity.get_table_name()}:{entity.id}; nothing written"
            )
            return False

        check_fields(entity, fields)
        table = self._table(entity.kind)
        entity_id = entity.get_id()
        values = {name: to_jsonable_python(value) for name, value in fields.items()}
        dialect = self._dialect()

        async with self._connect() as conn:
            if dialect == "sqlite":
                args: list[Any] = [table.c.data]
                for name, value in values.items():
                    args.append(f'$."{name}"')
                    args.append(func.json(json.dumps(value)))
                result = await conn.execute(
                    update(table).where(table.c.id == entity_id).values(data=func.json_set(*args))
                )
            elif dialect == "postgresql":
                patch = cast(literal(json.dumps(values), String), JSONB)
                result = await conn.execute(
                    update(table).where(table.c.id == entity_id).values(data=table.c.data.op("||")(patch))
                )
            else:
                current = await conn.execute(
                    select(table.c.data).where(table.c.id == entity_id).with_for_update()
                )
                row = current.first()
                if row is None:
                    result = None
                else:
                    result = await conn.execute(
                        update(table).where(table.c.id == entity_id).values(data={**row.data, **values})
                    )

        updated = result is not None and result.rowcount > 0
        if not updated:
            logger.debug(f"No stored document {entity.get_table_name()}:{entity_id}; update skipped")
        return updated

    async def delete_whole(self, entity: ManagedEntity) -> None:
        """Remove the document; no-op if it does not exist."""
        table = self._table(entity.kind)
        async with self._connect() as conn:
            await conn.execute(delete(table).where(table.c.id == entity.get_id()))

    def _dialect(self) -> str:
        return self._engine.dialect.name

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Dispose of the engine's connection pool."""
        if self._engine is not None:
            logger.debug("Shutting down document store")
            await self._engine.dispose()
        self._initialized = False

    async def __aenter__(self):
        """Enter async context manager (initializes store)."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager (cleans up store)."""
        await self.shutdown()
        return False
