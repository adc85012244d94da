# backend/salon_engine/repositories/base_repository.py
"""
Generic data access shared by the aggregate repositories.

Repositories flush but never commit. The service that owns the transaction
decides when the conflict check, the assignment rows and the outbox row
become visible, which is what makes check-then-insert atomic.
"""

import logging
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..database.session_utils import is_postgres

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def supports_row_locks(self) -> bool:
        """SELECT ... FOR UPDATE is only issued against PostgreSQL."""
        return is_postgres(self.db)

    def _fail(self, action: str, error: SQLAlchemyError) -> RepositoryException:
        self.logger.error("Failed to %s %s: %s", action, self.model.__name__, error)
        return RepositoryException(f"Failed to {action} {self.model.__name__}: {error}")

    def get_by_id(self, id: str, load_relationships: bool = True) -> Optional[T]:
        try:
            query = self.db.query(self.model).filter(self.model.id == id)
            if load_relationships:
                query = self._apply_eager_loading(query)
            return query.first()
        except SQLAlchemyError as e:
            raise self._fail("load", e) from e

    def find_one_by(self, **criteria: Any) -> Optional[T]:
        try:
            return self.db.query(self.model).filter_by(**criteria).first()
        except SQLAlchemyError as e:
            raise self._fail("find", e) from e

    def create(self, **values: Any) -> T:
        """
        Add and flush a new row.

        IntegrityError is re-raised as-is; a unique or exclusion violation
        means something different to each caller.
        """
        entity = self.model(**values)
        try:
            self.db.add(entity)
            self.db.flush()
        except IntegrityError:
            raise
        except SQLAlchemyError as e:
            raise self._fail("create", e) from e
        return entity

    def update(self, entity: T, **values: Any) -> T:
        try:
            for field, value in values.items():
                if hasattr(entity, field):
                    setattr(entity, field, value)
            self.db.flush()
        except SQLAlchemyError as e:
            raise self._fail("update", e) from e
        return entity

    def flush(self) -> None:
        self.db.flush()

    def _apply_eager_loading(self, query: Query) -> Query:
        """Subclasses add the relationships their callers always touch."""
        return query
