"""Declarative base for backend tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
