"""Row-store interface the engagement core depends on.

The backend is treated as an opaque relational store: insert, update,
delete and filtered select over named tables. Rows travel as plain dicts.

Filter keywords use ``column`` for equality and ``column__op`` for the other
comparisons: ``ne``, ``in``, ``gt``, ``gte``, ``lt``, ``lte``. ``None`` with
equality means ``IS NULL``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

Row = dict[str, Any]


class RowStore(ABC):
    """Abstract backend row store."""

    @abstractmethod
    async def select(
        self,
        table: str,
        /,
        *,
        order_by: str | Sequence[str] | None = None,
        limit: int | None = None,
        **filters: Any,
    ) -> list[Row]:
        """Return rows matching ``filters``. ``order_by`` entries prefixed with ``-`` sort descending."""

    @abstractmethod
    async def insert(
        self,
        table: str,
        row: Row,
        /,
        *,
        ignore_conflict_on: Sequence[str] | None = None,
    ) -> Row | None:
        """Insert one row and return it as stored.

        With ``ignore_conflict_on`` a unique-key conflict is not an error and
        ``None`` is returned instead of the row.
        """

    @abstractmethod
    async def upsert(self, table: str, row: Row, /, *, conflict_on: Sequence[str]) -> Row:
        """Insert ``row`` or update the existing row sharing the ``conflict_on`` columns."""

    @abstractmethod
    async def update(self, table: str, values: Row, /, **filters: Any) -> list[Row]:
        """Apply ``values`` to every matching row and return the updated rows."""

    @abstractmethod
    async def delete(self, table: str, /, **filters: Any) -> list[Row]:
        """Delete every matching row and return the rows as they were."""

    async def get(self, table: str, row_id: str, /) -> Row | None:
        rows = await self.select(table, id=row_id, limit=1)
        return rows[0] if rows else None
