"""
Core enums for the salon booking engine.

Every status column in the schema is backed by one of these closed
enumerations. Values are the lowercase strings stored in the database and
exchanged over the API.
"""

from enum import Enum


class BookingStatus(str, Enum):
    """Service lifecycle of a booking."""

    PENDING_CONFIRMATION = "pending_confirmation"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment axis of a booking, orthogonal to BookingStatus."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class CustomerType(str, Enum):
    WALK_IN = "walk_in"
    PRE_BOOKED = "pre_booked"


class PaymentChannel(str, Enum):
    """Independent channels able to report a payment outcome."""

    GATEWAY_WEBHOOK = "gateway_webhook"
    MANUAL_FALLBACK = "manual_fallback"
    POS_TERMINAL = "pos_terminal"
    BANK_TRANSFER = "bank_transfer"


class PaymentEventOutcome(str, Enum):
    """What applying a payment event did to the booking."""

    APPLIED = "applied"
    NOOP = "noop"
    ANOMALY = "anomaly"
    OVERRIDE = "override"
    # Reported to callers only, never persisted
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class ManualPaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    POS_TERMINAL = "pos_terminal"
    COMPANY_ACCOUNT = "company_account"


class WorkerRole(str, Enum):
    STAFF = "staff"
    MANAGER = "manager"
    ADMIN = "admin"


class WorkerStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    ON_BREAK = "on_break"
    ABSENT = "absent"
    UNAVAILABLE = "unavailable"
    SUSPENDED = "suspended"


class AssignmentRole(str, Enum):
    PRIMARY = "primary"
    ASSISTANT = "assistant"


class VerificationMethod(str, Enum):
    """Provenance of a payment verification result."""

    GATEWAY_API = "gateway_api"
    WEBHOOK_FALLBACK = "webhook_fallback"
    BOOKING_STATUS_FALLBACK = "booking_status_fallback"
    ALL_METHODS_FAILED = "all_methods_failed"


ASSIGNABLE_WORKER_STATUSES = frozenset({WorkerStatus.AVAILABLE, WorkerStatus.BUSY})
CLOSED_BOOKING_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})
