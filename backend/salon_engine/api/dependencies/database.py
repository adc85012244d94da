# backend/salon_engine/api/dependencies/database.py
"""Session dependency; tests override this one to inject their own session."""

from typing import Generator

from sqlalchemy.orm import Session

from ...database import get_db as _session_scope


def get_db() -> Generator[Session, None, None]:
    yield from _session_scope()
