"""
Engine, session factory and declarative base.

Tests run against in-memory SQLite on a StaticPool so every session shares
one connection; deployments run PostgreSQL, where the assignment exclusion
constraint and row locks apply.
"""

from __future__ import annotations

import logging
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from salon_engine.core.config import settings

logger = logging.getLogger(__name__)

POSTGRES_POOL_OPTIONS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    # an exhausted pool surfaces quickly and is retried as transient
    "pool_timeout": 2,
    "pool_recycle": 300,
    "pool_pre_ping": True,
}

IN_MEMORY_SQLITE_URLS = ("sqlite://", "sqlite:///:memory:")


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(db_url: str, echo: bool = False) -> Engine:
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=echo, **POSTGRES_POOL_OPTIONS)

    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if db_url in IN_MEMORY_SQLITE_URLS:
        options["poolclass"] = StaticPool
    sqlite_engine = create_engine(db_url, echo=echo, **options)
    event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
    return sqlite_engine


engine: Engine = build_engine(settings.get_database_url(), echo=settings.sql_echo)
logger.debug("Database engine created for dialect %s", engine.dialect.name)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; commits leftovers and always closes."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


__all__ = ["Base", "SessionLocal", "build_engine", "engine", "get_db"]
