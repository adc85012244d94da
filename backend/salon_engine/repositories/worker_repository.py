"""Worker lookups, including the ordered row lock taken before assignment."""

import logging
from typing import Iterable, List, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.worker import Worker
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class WorkerRepository(BaseRepository[Worker]):
    def __init__(self, db: Session):
        super().__init__(db, Worker)
        self.logger = logging.getLogger(__name__)

    def get_many(self, worker_ids: Iterable[str], lock: bool = False) -> List[Worker]:
        """
        Load workers by id, ordered by id.

        With ``lock=True`` the rows are locked FOR UPDATE. Locks are always
        taken in id order so concurrent assignments touching overlapping
        worker sets cannot deadlock on each other.
        """
        ids = sorted(set(worker_ids))
        if not ids:
            return []
        try:
            query = self.db.query(Worker).filter(Worker.id.in_(ids)).order_by(Worker.id)
            if lock and self.supports_row_locks:
                query = query.with_for_update()
            return cast(List[Worker], query.all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading workers {ids}: {str(e)}")
            raise RepositoryException(f"Failed to load workers: {str(e)}") from e
