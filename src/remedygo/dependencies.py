"""Shared FastAPI dependencies."""

from fastapi import Request

from remedygo.store.base import RowStore


def get_store(request: Request) -> RowStore:
    """The row store built at startup."""
    return request.app.state.store
