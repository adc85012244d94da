"""Dialect checks for code paths that only apply on PostgreSQL."""

from __future__ import annotations

from sqlalchemy.exc import UnboundExecutionError
from sqlalchemy.orm import Session


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """Name of the dialect behind ``session``, or ``default`` when it is unbound."""
    try:
        bind = session.get_bind()
    except UnboundExecutionError:
        return default
    return bind.dialect.name or default


def is_postgres(session: Session) -> bool:
    return get_dialect_name(session).startswith("postgres")
