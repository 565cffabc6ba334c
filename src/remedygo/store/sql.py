"""SQLAlchemy async implementation of the row store.

Mutations run in their own short transaction. After commit, each affected
row is published to the change feed as a ``ChangeEvent`` so subscribers
only ever observe committed state.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import ColumnElement, MetaData, Table, and_, delete, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from remedygo.database import build_session_factory
from remedygo.db.base import Base
from remedygo.db.models import new_id
from remedygo.errors import StoreError
from remedygo.realtime.hub import WATCHED_TABLES
from remedygo.realtime.schemas import ChangeEvent, ChangeType
from remedygo.store.base import Row, RowStore

logger = structlog.get_logger()

ChangePublisher = Callable[[ChangeEvent], Awaitable[Any]]

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _normalize(value: Any) -> Any:
    # SQLite hands back naive datetimes; every timestamp in the core is UTC.
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_dict(row: Any) -> Row:
    return {key: _normalize(value) for key, value in row._mapping.items()}


def _filter_clause(table: Table, key: str, value: Any) -> ColumnElement[bool]:
    name, _, op = key.partition("__")
    if name not in table.c:
        msg = f"Unknown column {name!r} on {table.name}"
        raise ValueError(msg)
    column = table.c[name]

    if op in ("", "eq"):
        return column.is_(None) if value is None else column == value
    if op == "ne":
        return column.is_not(None) if value is None else column != value
    if op == "in":
        return column.in_(list(value))
    if op == "gt":
        return column > value
    if op == "gte":
        return column >= value
    if op == "lt":
        return column < value
    if op == "lte":
        return column <= value

    msg = f"Unsupported filter operator: {op}"
    raise ValueError(msg)


class SqlRowStore(RowStore):
    """Row store over an async SQLAlchemy engine (asyncpg or aiosqlite)."""

    def __init__(
        self,
        engine: AsyncEngine,
        publisher: ChangePublisher | None = None,
        *,
        metadata: MetaData = Base.metadata,
        watched_tables: set[str] | None = None,
    ) -> None:
        self._engine = engine
        self._session_factory = build_session_factory(engine)
        self._metadata = metadata
        self._publisher = publisher
        self._watched = watched_tables if watched_tables is not None else WATCHED_TABLES

    def _table(self, name: str) -> Table:
        table = self._metadata.tables.get(name)
        if table is None:
            msg = f"Unknown table: {name}"
            raise ValueError(msg)
        return table

    def _where(self, table: Table, filters: dict[str, Any]) -> ColumnElement[bool] | None:
        clauses = [_filter_clause(table, key, value) for key, value in filters.items()]
        if not clauses:
            return None
        return and_(*clauses)

    async def _publish(self, table: str, change: ChangeType, new: Row | None, old: Row | None) -> None:
        if self._publisher is None or table not in self._watched:
            return
        await self._publisher(ChangeEvent(table=table, type=change, new=new, old=old))

    # ── Reads ──

    async def select(
        self,
        table: str,
        /,
        *,
        order_by: str | Sequence[str] | None = None,
        limit: int | None = None,
        **filters: Any,
    ) -> list[Row]:
        t = self._table(table)
        stmt = select(t)
        where = self._where(t, filters)
        if where is not None:
            stmt = stmt.where(where)

        if order_by:
            for key in [order_by] if isinstance(order_by, str) else order_by:
                column = t.c[key.lstrip("-")]
                stmt = stmt.order_by(column.desc() if key.startswith("-") else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [_row_to_dict(row) for row in result]
        except SQLAlchemyError as exc:
            raise StoreError("select", table, str(exc)) from exc

    # ── Writes ──

    async def insert(
        self,
        table: str,
        row: Row,
        /,
        *,
        ignore_conflict_on: Sequence[str] | None = None,
    ) -> Row | None:
        t = self._table(table)
        values = dict(row)
        if "id" in t.c and values.get("id") is None:
            values["id"] = new_id()

        if ignore_conflict_on:
            dialect_insert = _DIALECT_INSERTS[self._engine.dialect.name]
            stmt = dialect_insert(t).values(**values).on_conflict_do_nothing(
                index_elements=list(ignore_conflict_on),
            )
        else:
            stmt = insert(t).values(**values)

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError("insert", table, str(exc)) from exc

        if ignore_conflict_on and result.rowcount == 0:
            logger.debug("store_insert_conflict_ignored", table=table, keys=list(ignore_conflict_on))
            return None

        created = await self.get(table, values["id"])
        await self._publish(table, ChangeType.INSERT, created, None)
        return created

    async def upsert(self, table: str, row: Row, /, *, conflict_on: Sequence[str]) -> Row:
        t = self._table(table)
        keys = {column: row[column] for column in conflict_on}
        existing = await self.select(table, limit=1, **keys)

        values = dict(row)
        if values.get("id") is None:
            values["id"] = existing[0]["id"] if existing else new_id()

        dialect_insert = _DIALECT_INSERTS[self._engine.dialect.name]
        stmt = dialect_insert(t).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(conflict_on),
            set_={key: stmt.excluded[key] for key in values if key not in conflict_on and key != "id"},
        )

        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError("upsert", table, str(exc)) from exc

        stored = (await self.select(table, limit=1, **keys))[0]
        if existing:
            await self._publish(table, ChangeType.UPDATE, stored, existing[0])
        else:
            await self._publish(table, ChangeType.INSERT, stored, None)
        return stored

    async def update(self, table: str, values: Row, /, **filters: Any) -> list[Row]:
        t = self._table(table)
        before = await self.select(table, **filters)
        if not before:
            return []

        ids = [r["id"] for r in before]
        stmt = update(t).where(t.c.id.in_(ids)).values(**values)
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError("update", table, str(exc)) from exc

        after = await self.select(table, id__in=ids)
        old_by_id = {r["id"]: r for r in before}
        for new_row in after:
            await self._publish(table, ChangeType.UPDATE, new_row, old_by_id.get(new_row["id"]))
        return after

    async def delete(self, table: str, /, **filters: Any) -> list[Row]:
        t = self._table(table)
        before = await self.select(table, **filters)
        if not before:
            return []

        stmt = delete(t).where(t.c.id.in_([r["id"] for r in before]))
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise StoreError("delete", table, str(exc)) from exc

        for old_row in before:
            await self._publish(table, ChangeType.DELETE, None, old_row)
        return before

    async def create_all(self) -> None:
        """Create every backend table (local runs and tests; production uses migrations)."""
        async with self._engine.begin() as conn:
            await conn.run_sync(self._metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()
