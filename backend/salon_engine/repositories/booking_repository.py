# backend/salon_engine/repositories/booking_repository.py
"""
Booking Repository for the salon booking engine.

Point lookups (optionally row-locked), the day-window range query used by
the queue, and the payment-status write used by reconciliation.
"""

from datetime import datetime
import logging
from typing import List, Optional, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from ..core.enums import BookingStatus
from ..core.exceptions import RepositoryException
from ..core.timezone_utils import ensure_utc
from ..models.booking import Booking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            selectinload(Booking.service_items),
            selectinload(Booking.assignments),
        )

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        """
        Load a booking holding its row lock for the rest of the transaction.

        On backends without row locks this is a plain read; the surrounding
        transaction provides the isolation instead.
        """
        try:
            query = self.db.query(Booking).filter(Booking.id == booking_id)
            if self.supports_row_locks:
                query = query.with_for_update()
            booking = query.populate_existing().first()
            return cast(Optional[Booking], booking)
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock booking: {str(e)}") from e

    def find_by_payment_reference(self, reference: str) -> Optional[Booking]:
        """Booking whose recorded payment reference equals ``reference``."""
        try:
            return cast(
                Optional[Booking],
                self.db.query(Booking)
                .filter(Booking.payment_reference == reference)
                .order_by(Booking.payment_updated_at.desc())
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error finding booking by payment reference: {str(e)}")
            raise RepositoryException(f"Failed to find booking: {str(e)}") from e

    def list_scheduled_between(
        self,
        start: datetime,
        end: datetime,
        exclude_statuses: Optional[List[BookingStatus]] = None,
    ) -> List[Booking]:
        """
        Bookings whose scheduled start falls in ``[start, end)``.

        Args:
            start: Inclusive UTC lower bound
            end: Exclusive UTC upper bound
            exclude_statuses: Lifecycle statuses to leave out

        Returns:
            Bookings with assignments eagerly loaded, ordered by id
        """
        try:
            query = (
                self.db.query(Booking)
                .options(selectinload(Booking.assignments))
                .filter(
                    Booking.scheduled_at >= ensure_utc(start),
                    Booking.scheduled_at < ensure_utc(end),
                )
            )
            if exclude_statuses:
                query = query.filter(Booking.status.notin_([s.value for s in exclude_statuses]))
            return cast(List[Booking], query.order_by(Booking.id).all())
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing bookings for window: {str(e)}")
            raise RepositoryException(f"Failed to list bookings: {str(e)}") from e

    def update_payment_status(
        self,
        booking: Booking,
        status: str,
        method: Optional[str],
        reference: Optional[str],
        at: datetime,
    ) -> Booking:
        """Write the payment axis of a booking. Never touches ``status``."""
        values = {"payment_status": status, "payment_updated_at": at}
        if method is not None:
            values["payment_method"] = method
        if reference is not None:
            values["payment_reference"] = reference
        return self.update(booking, **values)
