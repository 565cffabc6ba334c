"""Backend row store seam."""

from remedygo.store.base import Row, RowStore
from remedygo.store.sql import SqlRowStore

__all__ = ["Row", "RowStore", "SqlRowStore"]
