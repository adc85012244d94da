# backend/salon_engine/core/exceptions.py
"""
Domain-specific exceptions for the salon booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
Business-rule errors carry structured ``details`` (conflicting bookings,
unavailable workers) so callers can render an actionable message.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input is malformed. Never retried."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when the acting user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""


# Specific business exceptions


class WorkerConflictException(ConflictException):
    """Raised when a worker assignment overlaps an existing assignment."""

    def __init__(self, conflicts: List[Dict[str, Any]], message: Optional[str] = None):
        if message is None:
            if conflicts:
                first = conflicts[0]
                interval = first.get("conflicting_interval") or {}
                message = (
                    f"Worker {first.get('worker_id')} is already booked on "
                    f"{first.get('conflicting_booking_reference') or first.get('conflicting_booking_id')} "
                    f"({interval.get('start')} - {interval.get('end')})"
                )
                if len(conflicts) > 1:
                    message += f" and {len(conflicts) - 1} more conflict(s)"
            else:
                message = "Worker assignment conflicts with an existing booking"
        super().__init__(
            message=message,
            code="WORKER_CONFLICT",
            details={"conflicts": conflicts},
        )
        self.conflicts = conflicts


class WorkerAvailabilityException(BusinessRuleException):
    """Raised when a worker is inactive, suspended or otherwise not assignable."""

    def __init__(self, unavailable_workers: List[Dict[str, Any]]):
        names = ", ".join(str(w.get("worker_name") or w.get("worker_id")) for w in unavailable_workers)
        super().__init__(
            message=f"Workers not available for assignment: {names}",
            code="WORKER_UNAVAILABLE",
            details={"unavailable_workers": unavailable_workers},
        )
        self.unavailable_workers = unavailable_workers


class BookingStateException(BusinessRuleException):
    """Raised when a booking's lifecycle state forbids the requested mutation."""

    def __init__(self, booking_id: str, current_status: str, action: str):
        super().__init__(
            message=f"Cannot {action} booking {booking_id} while it is {current_status}",
            code="INVALID_BOOKING_STATE",
            details={"booking_id": booking_id, "status": current_status, "action": action},
        )


class PaymentAnomalyException(ConflictException):
    """
    Raised when a payment event reports a terminal state that conflicts with
    the booking's recorded payment state.

    The anomaly has already been persisted for manual review when this is
    raised; booking state is left unchanged.
    """

    def __init__(
        self,
        booking_id: str,
        current_status: str,
        reported_status: str,
        anomaly_id: Optional[str] = None,
        external_reference: Optional[str] = None,
    ):
        super().__init__(
            message=(
                f"Payment for booking {booking_id} is {current_status}; "
                f"a later event reported {reported_status} and was held for review"
            ),
            code="PAYMENT_ANOMALY",
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "reported_status": reported_status,
                "anomaly_id": anomaly_id,
                "external_reference": external_reference,
            },
        )
        self.anomaly_id = anomaly_id


class DuplicatePaymentEventException(DomainException):
    """
    Raised by the repository layer when an external reference is already recorded.

    Not a failure: services translate it into an idempotent no-op.
    """

    def __init__(self, external_reference: str):
        super().__init__(
            message=f"Payment event {external_reference} already recorded",
            code="DUPLICATE_EVENT",
            details={"external_reference": external_reference},
        )
        self.external_reference = external_reference


class TransientStorageException(DomainException):
    """Deadlock, serialization failure, lost connection or attempt deadline overrun."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str, reason: str = "transient"):
        super().__init__(message=message, code="TRANSIENT_STORAGE_ERROR", details={"reason": reason})
        self.reason = reason


class RetryExhaustedException(ServiceException):
    """Raised when transient failures persist after the retry budget is spent."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, operation: str, attempts: int):
        super().__init__(
            message=f"{operation} failed after {attempts} attempts; please retry shortly",
            code="SYSTEM_ERROR",
            details={"operation": operation, "attempts": attempts},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


class InvalidSignatureException(DomainException):
    """Raised when an inbound webhook fails signature verification."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message=message, code="INVALID_SIGNATURE")
