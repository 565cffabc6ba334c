"""Exception types shared across the engagement core.

Rule violations subclass ``ValueError`` so callers that already handle
``ValueError`` from service functions keep working. Backend failures are
``StoreError`` and always propagate out of chat operations.
"""

from __future__ import annotations


class RemedyGoError(Exception):
    """Base class for engagement-core errors."""


class StoreError(RemedyGoError):
    """The backend row store rejected or failed a request."""

    def __init__(self, operation: str, table: str, detail: str) -> None:
        super().__init__(f"{operation} on {table} failed: {detail}")
        self.operation = operation
        self.table = table
        self.detail = detail


class PermissionDenied(RemedyGoError, ValueError):
    """The acting user is not allowed to perform the operation."""


class NotFound(RemedyGoError, ValueError):
    """The referenced chat, message or session does not exist locally or remotely."""


class InvalidOperation(RemedyGoError, ValueError):
    """The operation does not apply in the current state (e.g. renaming a 1:1 chat)."""
