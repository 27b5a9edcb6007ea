"""Dialect-aware ``INSERT ... ON CONFLICT`` helpers."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any, TypeVar

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from app.errors import StoreError


T = TypeVar("T")

# Keeps each statement well under the bind-parameter limits of sqlite and postgres.
UPSERT_CHUNK_SIZE = 500


def dialect_insert(session: Session, model: Any):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise StoreError(f"upserts are not supported on the {dialect} dialect")


def chunked(items: Sequence[T], size: int = UPSERT_CHUNK_SIZE) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


__all__ = ["UPSERT_CHUNK_SIZE", "chunked", "dialect_insert"]
