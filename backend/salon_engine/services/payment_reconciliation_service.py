# backend/salon_engine/services/payment_reconciliation_service.py
"""
Payment Reconciliation Service for the salon booking engine.

Reconciles a booking's payment status across independent channels (gateway
webhook, manual fallback, POS terminal, bank transfer) so that:

- an external reference is applied at most once, whichever channel reports
  it first and however often it is redelivered
- the only automatic transitions are pending -> completed, pending -> failed
  and completed -> refunded
- a later report that contradicts a terminal state is recorded as an anomaly
  for review and never overwrites the booking
- everything else (failed -> completed, leaving refunded, resolving
  anomalies) goes through an admin-only manual override

Completing payment on a scheduled walk-in also starts the service. Pre-booked
customers wait for staff.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import SecretStr
from sqlalchemy.orm import Session
import ulid

from ..core.actor import Actor
from ..core.config import settings
from ..core.enums import (
    BookingStatus,
    ManualPaymentMethod,
    PaymentChannel,
    PaymentEventOutcome,
    PaymentStatus,
    VerificationMethod,
)
from ..core.exceptions import (
    BusinessRuleException,
    DuplicatePaymentEventException,
    InvalidSignatureException,
    NotFoundException,
    PaymentAnomalyException,
    ValidationException,
)
from ..core.retry import RetryPolicy
from ..core.timezone_utils import utc_now
from ..events.booking_events import PaymentAnomalyRaised, PaymentStatusChanged
from ..events.publisher import EventPublisher
from ..integrations.paystack_client import (
    PaystackClient,
    PaystackError,
    PaystackUnavailableError,
    verify_signature,
)
from ..models.booking import Booking
from ..models.payment_event import PaymentAnomaly, PaymentEvent
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


class TransitionDecision(str, Enum):
    APPLY = "apply"
    NOOP = "noop"
    ANOMALY = "anomaly"


ALLOWED_PAYMENT_TRANSITIONS = frozenset(
    {
        (PaymentStatus.PENDING, PaymentStatus.COMPLETED),
        (PaymentStatus.PENDING, PaymentStatus.FAILED),
        (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED),
    }
)

WEBHOOK_EVENT_STATUS: Dict[str, PaymentStatus] = {
    "charge.success": PaymentStatus.COMPLETED,
    "charge.failed": PaymentStatus.FAILED,
    "refund.processed": PaymentStatus.REFUNDED,
}

MANUAL_METHOD_CHANNELS: Dict[ManualPaymentMethod, PaymentChannel] = {
    ManualPaymentMethod.CASH: PaymentChannel.MANUAL_FALLBACK,
    ManualPaymentMethod.COMPANY_ACCOUNT: PaymentChannel.MANUAL_FALLBACK,
    ManualPaymentMethod.BANK_TRANSFER: PaymentChannel.BANK_TRANSFER,
    ManualPaymentMethod.POS_TERMINAL: PaymentChannel.POS_TERMINAL,
}

# Methods whose confirmation is meaningless without the channel's own reference
_REFERENCE_REQUIRED = frozenset({ManualPaymentMethod.BANK_TRANSFER, ManualPaymentMethod.POS_TERMINAL})


def classify_transition(
    current: Union[PaymentStatus, str], reported: Union[PaymentStatus, str]
) -> TransitionDecision:
    """
    Decide what a reported payment status does to the recorded one.

    A report equal to the current state, or a report of ``pending``, changes
    nothing. Reports outside the allowed transitions are anomalies.
    """
    current, reported = PaymentStatus(current), PaymentStatus(reported)
    if reported == current or reported == PaymentStatus.PENDING:
        return TransitionDecision.NOOP
    if (current, reported) in ALLOWED_PAYMENT_TRANSITIONS:
        return TransitionDecision.APPLY
    return TransitionDecision.ANOMALY


@dataclass(frozen=True)
class PaymentEventInput:
    """A payment outcome as reported by one channel."""

    channel: PaymentChannel
    external_reference: str
    reported_status: PaymentStatus
    event_type: str = "payment.reported"
    payload: Dict[str, Any] = field(default_factory=dict)
    amount: Optional[Decimal] = None
    payment_method: Optional[str] = None
    # Written to booking.payment_reference when the event is applied
    booking_reference: Optional[str] = None
    received_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        reference = (self.external_reference or "").strip()
        if not reference:
            raise ValidationException("Payment reference is required", code="MISSING_REFERENCE")
        try:
            object.__setattr__(self, "channel", PaymentChannel(self.channel))
            object.__setattr__(self, "reported_status", PaymentStatus(self.reported_status))
        except ValueError as exc:
            raise ValidationException(str(exc), code="INVALID_PAYMENT_EVENT") from exc
        object.__setattr__(self, "external_reference", reference)


@dataclass(frozen=True)
class PaymentApplyResult:
    """What applying one payment event did."""

    booking: Booking
    outcome: PaymentEventOutcome
    payment_status: str
    status: str
    event_id: Optional[str] = None
    auto_advanced: bool = False

    @property
    def is_duplicate(self) -> bool:
        return self.outcome == PaymentEventOutcome.DUPLICATE


@dataclass(frozen=True)
class VerificationResult:
    """Uniform verification answer regardless of which method produced it."""

    success: bool
    method: VerificationMethod
    booking_id: Optional[str]
    reference: str
    gateway_status: Optional[str] = None
    attempts: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class WebhookResult:
    event: str
    reference: Optional[str]
    outcome: PaymentEventOutcome
    booking_id: Optional[str] = None
    anomaly_id: Optional[str] = None


@dataclass(frozen=True)
class _AnomalyRecorded:
    booking_id: str
    current_status: str
    reported_status: str
    anomaly_id: str
    external_reference: str


def _parse_amount(value: Any, minor_units: bool = False) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount / 100 if minor_units else amount


class PaymentReconciliationService(BaseService):
    """Idempotent, channel-agnostic payment state machine."""

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaystackClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        publisher: Optional[EventPublisher] = None,
        webhook_secret: Optional[Union[str, SecretStr]] = None,
    ):
        super().__init__(db)
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.paystack_secret_key
        self.gateway = gateway if gateway is not None else self._default_gateway()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.event_repository = RepositoryFactory.create_payment_event_repository(db)
        self.publisher = publisher or EventPublisher(
            RepositoryFactory.create_event_outbox_repository(db)
        )

    @staticmethod
    def _default_gateway() -> Optional[PaystackClient]:
        if not settings.paystack_secret_key.get_secret_value():
            return None
        return PaystackClient(
            secret_key=settings.paystack_secret_key,
            base_url=settings.paystack_base_url,
            timeout=settings.paystack_timeout_seconds,
        )

    # ------------------------------------------------------------------ core

    @BaseService.measure_operation("apply_payment_event")
    def apply_payment_event(
        self, booking_id: str, event: PaymentEventInput, actor: Optional[Actor] = None
    ) -> PaymentApplyResult:
        """
        Apply a reported payment outcome to a booking exactly once.

        Args:
            booking_id: Booking the event belongs to
            event: The reported outcome; ``external_reference`` is the dedup key
            actor: Acting user for manual channels, None for gateway deliveries

        Returns:
            PaymentApplyResult; a redelivered reference yields outcome ``duplicate``
            with the booking unchanged and no notification

        Raises:
            NotFoundException: Unknown booking
            ValidationException: Reference already recorded against another booking
            PaymentAnomalyException: Conflicting terminal state, recorded for review
        """
        try:
            outcome = self.retry_policy.run(
                "apply_payment_event", lambda: self._apply_once(booking_id, event, actor)
            )
        except DuplicatePaymentEventException:
            # A concurrent delivery recorded the reference first
            outcome = self._duplicate_result(booking_id, event)

        if isinstance(outcome, _AnomalyRecorded):
            prometheus_metrics.record_payment_event(event.channel.value, PaymentEventOutcome.ANOMALY.value)
            self.logger.warning(
                f"Payment anomaly on booking {booking_id}: {outcome.current_status} "
                f"then {outcome.reported_status} via {event.channel.value}",
                extra={
                    "event": "payment_anomaly",
                    "booking_id": booking_id,
                    "anomaly_id": outcome.anomaly_id,
                    "external_reference": event.external_reference,
                },
            )
            raise PaymentAnomalyException(
                booking_id=outcome.booking_id,
                current_status=outcome.current_status,
                reported_status=outcome.reported_status,
                anomaly_id=outcome.anomaly_id,
                external_reference=outcome.external_reference,
            )

        prometheus_metrics.record_payment_event(event.channel.value, outcome.outcome.value)
        if outcome.outcome == PaymentEventOutcome.DUPLICATE:
            self.logger.debug(
                f"Duplicate payment event {event.external_reference} ignored",
                extra={"event": "payment_duplicate", "booking_id": booking_id},
            )
        elif outcome.outcome == PaymentEventOutcome.APPLIED:
            self.logger.info(
                f"Payment for booking {outcome.booking.booking_number} is now {outcome.payment_status}",
                extra={
                    "event": "payment_applied",
                    "booking_id": booking_id,
                    "channel": event.channel.value,
                    "external_reference": event.external_reference,
                    "auto_advanced": outcome.auto_advanced,
                },
            )
        return outcome

    def _apply_once(
        self, booking_id: str, event: PaymentEventInput, actor: Optional[Actor]
    ) -> Union[PaymentApplyResult, _AnomalyRecorded]:
        with self.transaction():
            booking = self._lock_booking(booking_id)
            existing = self.event_repository.get_by_reference(event.external_reference)
            if existing is not None:
                self._ensure_same_booking(existing, booking_id)
                result: Union[PaymentApplyResult, _AnomalyRecorded] = self._result(
                    booking, PaymentEventOutcome.DUPLICATE, existing.id
                )
            else:
                current = PaymentStatus(booking.payment_status)
                decision = classify_transition(current, event.reported_status)
                if decision == TransitionDecision.APPLY:
                    result = self._apply_transition(booking, event, actor)
                elif decision == TransitionDecision.NOOP:
                    recorded = self._record(booking, event, actor, PaymentEventOutcome.NOOP)
                    result = self._result(booking, PaymentEventOutcome.NOOP, recorded.id)
                else:
                    result = self._record_anomaly(booking, event, actor, current)
        return result

    def _apply_transition(
        self, booking: Booking, event: PaymentEventInput, actor: Optional[Actor]
    ) -> PaymentApplyResult:
        now = utc_now()
        previous = booking.payment_status
        recorded = self._record(booking, event, actor, PaymentEventOutcome.APPLIED)
        self.booking_repository.update_payment_status(
            booking,
            event.reported_status.value,
            method=event.payment_method,
            reference=event.booking_reference,
            at=now,
        )

        auto_advanced = False
        if (
            event.reported_status == PaymentStatus.COMPLETED
            and booking.is_walk_in
            and booking.status == BookingStatus.SCHEDULED.value
        ):
            booking.status = BookingStatus.IN_PROGRESS.value
            booking.started_at = now
            auto_advanced = True
            self.booking_repository.flush()

        self.publisher.publish(
            PaymentStatusChanged(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                status=booking.status,
                payment_status=booking.payment_status,
                actor_id=actor.id if actor else None,
                occurred_at=now,
                previous_payment_status=previous,
                channel=event.channel.value,
                external_reference=event.external_reference,
                auto_advanced=auto_advanced,
            ),
            dedup_key=event.external_reference,
        )
        return self._result(booking, PaymentEventOutcome.APPLIED, recorded.id, auto_advanced)

    def _record_anomaly(
        self,
        booking: Booking,
        event: PaymentEventInput,
        actor: Optional[Actor],
        current: PaymentStatus,
    ) -> _AnomalyRecorded:
        recorded = self._record(booking, event, actor, PaymentEventOutcome.ANOMALY)
        anomaly = self.event_repository.create_anomaly(
            booking_id=booking.id,
            payment_event_id=recorded.id,
            channel=event.channel.value,
            current_status=current.value,
            reported_status=event.reported_status.value,
            reason=(
                f"{event.channel.value} reported {event.reported_status.value} "
                f"for a {current.value} payment"
            ),
        )
        self.publisher.publish(
            PaymentAnomalyRaised(
                booking_id=booking.id,
                booking_number=booking.booking_number,
                status=booking.status,
                payment_status=booking.payment_status,
                actor_id=actor.id if actor else None,
                occurred_at=utc_now(),
                anomaly_id=anomaly.id,
                reported_status=event.reported_status.value,
                channel=event.channel.value,
            ),
            dedup_key=anomaly.id,
        )
        return _AnomalyRecorded(
            booking_id=booking.id,
            current_status=current.value,
            reported_status=event.reported_status.value,
            anomaly_id=anomaly.id,
            external_reference=event.external_reference,
        )

    def _record(
        self,
        booking: Booking,
        event: PaymentEventInput,
        actor: Optional[Actor],
        outcome: PaymentEventOutcome,
    ) -> PaymentEvent:
        return self.event_repository.record_event(
            booking_id=booking.id,
            channel=event.channel.value,
            external_reference=event.external_reference,
            event_type=event.event_type,
            reported_status=event.reported_status.value,
            outcome=outcome.value,
            payload=event.payload,
            amount=event.amount,
            payment_method=event.payment_method,
            actor_id=actor.id if actor else None,
            received_at=event.received_at,
        )

    def _duplicate_result(self, booking_id: str, event: PaymentEventInput) -> PaymentApplyResult:
        existing = self.event_repository.get_by_reference(event.external_reference)
        if existing is not None:
            self._ensure_same_booking(existing, booking_id)
        booking = self._get_booking(booking_id)
        return self._result(booking, PaymentEventOutcome.DUPLICATE, existing.id if existing else None)

    @staticmethod
    def _result(
        booking: Booking,
        outcome: PaymentEventOutcome,
        event_id: Optional[str],
        auto_advanced: bool = False,
    ) -> PaymentApplyResult:
        return PaymentApplyResult(
            booking=booking,
            outcome=outcome,
            payment_status=booking.payment_status,
            status=booking.status,
            event_id=event_id,
            auto_advanced=auto_advanced,
        )

    @staticmethod
    def _ensure_same_booking(existing: PaymentEvent, booking_id: str) -> None:
        if existing.booking_id != booking_id:
            raise ValidationException(
                f"Payment reference {existing.external_reference} belongs to another booking",
                code="REFERENCE_MISMATCH",
                details={
                    "external_reference": existing.external_reference,
                    "booking_id": booking_id,
                },
            )

    def _lock_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_for_update(booking_id)
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_id} not found",
                code="BOOKING_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        return booking

    def _get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, load_relationships=False)
        if booking is None:
            raise NotFoundException(
                f"Booking {booking_id} not found",
                code="BOOKING_NOT_FOUND",
                details={"booking_id": booking_id},
            )
        return booking

    # ------------------------------------------------------------- gateway ingress

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> None:
        """
        Check the gateway's HMAC-SHA512 signature over the raw request body.

        Raises:
            InvalidSignatureException: Missing, malformed or wrong signature
        """
        if not verify_signature(self.webhook_secret, body, signature):
            self.logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignatureException()

    @BaseService.measure_operation("handle_gateway_webhook")
    def handle_gateway_webhook(self, payload: Dict[str, Any]) -> WebhookResult:
        """
        Translate a gateway webhook into a payment event and apply it.

        Unknown event types and references that match no booking are
        acknowledged and ignored so the gateway stops redelivering them.
        """
        event_name = str(payload.get("event") or "")
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValidationException("Webhook data must be an object", code="INVALID_WEBHOOK")

        reported = WEBHOOK_EVENT_STATUS.get(event_name)
        if reported is None:
            self.logger.info(f"Ignoring unhandled webhook event {event_name!r}")
            prometheus_metrics.record_payment_event(
                PaymentChannel.GATEWAY_WEBHOOK.value, PaymentEventOutcome.IGNORED.value
            )
            return WebhookResult(event=event_name, reference=None, outcome=PaymentEventOutcome.IGNORED)

        if reported == PaymentStatus.REFUNDED:
            reference = data.get("transaction_reference") or data.get("reference")
        else:
            reference = data.get("reference")
        reference = reference or payload.get("reference")
        if not reference:
            raise ValidationException("Webhook is missing a payment reference", code="MISSING_REFERENCE")
        reference = str(reference)

        booking_id = self._booking_id_from_gateway(data, reference) or payload.get("booking_id")
        if not booking_id:
            self.logger.warning(f"Webhook {event_name} for {reference} matches no booking")
            prometheus_metrics.record_payment_event(
                PaymentChannel.GATEWAY_WEBHOOK.value, PaymentEventOutcome.IGNORED.value
            )
            return WebhookResult(event=event_name, reference=reference, outcome=PaymentEventOutcome.IGNORED)

        event = PaymentEventInput(
            channel=PaymentChannel.GATEWAY_WEBHOOK,
            # The success report owns the bare reference so every channel dedups on it
            external_reference=(
                reference if reported == PaymentStatus.COMPLETED else f"{reference}:{reported.value}"
            ),
            reported_status=reported,
            event_type=event_name,
            payload=payload,
            amount=_parse_amount(data.get("amount"), minor_units=True),
            payment_method=f"paystack_{data['channel']}" if data.get("channel") else "paystack",
            booking_reference=None if reported == PaymentStatus.REFUNDED else reference,
        )
        try:
            result = self.apply_payment_event(str(booking_id), event)
        except NotFoundException as exc:
            if exc.code != "BOOKING_NOT_FOUND":
                raise
            # metadata named a booking this deployment does not have
            self.logger.warning(f"Webhook {event_name} for {reference} names unknown booking {booking_id}")
            prometheus_metrics.record_payment_event(
                PaymentChannel.GATEWAY_WEBHOOK.value, PaymentEventOutcome.IGNORED.value
            )
            return WebhookResult(event=event_name, reference=reference, outcome=PaymentEventOutcome.IGNORED)
        except PaymentAnomalyException as exc:
            return WebhookResult(
                event=event_name,
                reference=reference,
                outcome=PaymentEventOutcome.ANOMALY,
                booking_id=str(booking_id),
                anomaly_id=exc.anomaly_id,
            )
        return WebhookResult(
            event=event_name,
            reference=reference,
            outcome=result.outcome,
            booking_id=result.booking.id,
        )

    def _booking_id_from_gateway(self, data: Dict[str, Any], reference: str) -> Optional[str]:
        metadata = data.get("metadata")
        if isinstance(metadata, dict) and metadata.get("booking_id"):
            return str(metadata["booking_id"])
        if data.get("booking_id"):
            return str(data["booking_id"])
        booking = self.booking_repository.find_by_payment_reference(reference)
        return booking.id if booking else None

    # ---------------------------------------------------------- manual channels

    @BaseService.measure_operation("confirm_manual_payment")
    def confirm_manual_payment(
        self,
        booking_id: str,
        actor: Actor,
        method: Union[ManualPaymentMethod, str],
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> PaymentApplyResult:
        """
        Record a payment confirmed by staff outside the gateway.

        Raises:
            ForbiddenException: Actor is not a manager or admin
            ValidationException: Unknown method, or missing reference where required
        """
        actor.require_manager("Manual payment confirmation")
        try:
            method = ManualPaymentMethod(method)
        except ValueError as exc:
            raise ValidationException(
                f"Unsupported payment method: {method}",
                code="INVALID_PAYMENT_METHOD",
                details={"allowed": [m.value for m in ManualPaymentMethod]},
            ) from exc

        reference = (reference or "").strip() or None
        if reference is None and method in _REFERENCE_REQUIRED:
            raise ValidationException(
                f"A reference is required for {method.value} payments",
                code="REFERENCE_REQUIRED",
            )
        reference = reference or f"{settings.payment_reference_prefix}-{ulid.ULID()}"

        event = PaymentEventInput(
            channel=MANUAL_METHOD_CHANNELS[method],
            external_reference=reference,
            reported_status=PaymentStatus.COMPLETED,
            event_type=f"manual.{method.value}",
            payload={"method": method.value, "notes": notes, "confirmed_by": actor.id},
            amount=_parse_amount(amount),
            payment_method=method.value,
            booking_reference=reference,
        )
        return self.apply_payment_event(booking_id, event, actor)

    def confirm_pos_payment(
        self,
        booking_id: str,
        actor: Actor,
        terminal_reference: str,
        notes: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> PaymentApplyResult:
        """Confirm a card payment taken on a physical POS terminal."""
        return self.confirm_manual_payment(
            booking_id, actor, ManualPaymentMethod.POS_TERMINAL, terminal_reference, notes, amount
        )

    def confirm_bank_transfer(
        self,
        booking_id: str,
        actor: Actor,
        transfer_reference: str,
        notes: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> PaymentApplyResult:
        return self.confirm_manual_payment(
            booking_id, actor, ManualPaymentMethod.BANK_TRANSFER, transfer_reference, notes, amount
        )

    @BaseService.measure_operation("manual_override")
    def manual_override(
        self,
        booking_id: str,
        target_status: Union[PaymentStatus, str],
        actor: Actor,
        reason: str,
    ) -> PaymentApplyResult:
        """
        Force a booking's payment status. Admin only.

        The only way to move failed -> completed or out of refunded. Resolves
        every open anomaly on the booking. Does not auto-advance the service
        status; staff decide that explicitly.
        """
        actor.require_admin("Payment override")
        try:
            target = PaymentStatus(target_status)
        except ValueError as exc:
            raise ValidationException(
                f"Unknown payment status: {target_status}", code="INVALID_STATUS"
            ) from exc
        if not (reason or "").strip():
            raise ValidationException("An override reason is required", code="REASON_REQUIRED")

        reference = f"override-{ulid.ULID()}"
        with self.transaction():
            booking = self._lock_booking(booking_id)
            previous = booking.payment_status
            now = utc_now()
            recorded = self.event_repository.record_event(
                booking_id=booking.id,
                channel=PaymentChannel.MANUAL_FALLBACK.value,
                external_reference=reference,
                event_type="manual.override",
                reported_status=target.value,
                outcome=PaymentEventOutcome.OVERRIDE.value,
                payload={"reason": reason, "previous_status": previous},
                actor_id=actor.id,
                received_at=now,
            )
            self.booking_repository.update_payment_status(
                booking, target.value, method=None, reference=None, at=now
            )
            resolved = 0
            for anomaly in self.event_repository.list_open_anomalies(booking_id=booking.id):
                anomaly.resolve(actor.id, reason)
                resolved += 1
            self.db.flush()

            self.publisher.publish(
                PaymentStatusChanged(
                    booking_id=booking.id,
                    booking_number=booking.booking_number,
                    status=booking.status,
                    payment_status=booking.payment_status,
                    actor_id=actor.id,
                    occurred_at=now,
                    previous_payment_status=previous,
                    channel=PaymentChannel.MANUAL_FALLBACK.value,
                    external_reference=reference,
                ),
                dedup_key=reference,
            )

        prometheus_metrics.record_payment_event(
            PaymentChannel.MANUAL_FALLBACK.value, PaymentEventOutcome.OVERRIDE.value
        )
        self.logger.warning(
            f"Payment override on booking {booking.booking_number}: {previous} -> {target.value}",
            extra={
                "event": "payment_override",
                "booking_id": booking.id,
                "actor_id": actor.id,
                "resolved_anomalies": resolved,
            },
        )
        return self._result(booking, PaymentEventOutcome.OVERRIDE, recorded.id)

    # ---------------------------------------------------------------- verification

    @BaseService.measure_operation("verify_payment")
    def verify_payment(self, reference: str) -> VerificationResult:
        """
        Verify a payment reference.

        The gateway API is authoritative whenever it answers. Only when it is
        unreachable (or not configured) do the fallbacks run, in order:
        a recent gateway webhook success recorded for the reference, then
        the booking's own payment fields.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValidationException("Payment reference is required", code="MISSING_REFERENCE")

        attempts: List[Dict[str, Any]] = []

        if self.gateway is None:
            attempts.append(
                {"method": VerificationMethod.GATEWAY_API.value, "ok": False, "detail": "not configured"}
            )
        else:
            try:
                data = self.gateway.verify_transaction(reference)
            except PaystackUnavailableError as exc:
                self.logger.warning(f"Gateway unavailable verifying {reference}: {exc}")
                attempts.append(
                    {"method": VerificationMethod.GATEWAY_API.value, "ok": False, "detail": str(exc)}
                )
            except PaystackError as exc:
                attempts.append(
                    {"method": VerificationMethod.GATEWAY_API.value, "ok": True, "detail": str(exc)}
                )
                return VerificationResult(
                    success=False,
                    method=VerificationMethod.GATEWAY_API,
                    booking_id=self._booking_id_from_gateway({}, reference),
                    reference=reference,
                    attempts=attempts,
                )
            else:
                gateway_status = str(data.get("status") or "")
                attempts.append(
                    {"method": VerificationMethod.GATEWAY_API.value, "ok": True, "detail": gateway_status}
                )
                return VerificationResult(
                    success=gateway_status == "success",
                    method=VerificationMethod.GATEWAY_API,
                    booking_id=self._booking_id_from_gateway(data, reference),
                    reference=reference,
                    gateway_status=gateway_status,
                    attempts=attempts,
                )

        since = utc_now() - timedelta(hours=settings.webhook_verification_window_hours)
        webhook_event = self.event_repository.find_recent_event(
            reference,
            channel=PaymentChannel.GATEWAY_WEBHOOK.value,
            reported_status=PaymentStatus.COMPLETED.value,
            since=since,
        )
        attempts.append(
            {"method": VerificationMethod.WEBHOOK_FALLBACK.value, "ok": webhook_event is not None}
        )
        if webhook_event is not None:
            return VerificationResult(
                success=True,
                method=VerificationMethod.WEBHOOK_FALLBACK,
                booking_id=webhook_event.booking_id,
                reference=reference,
                attempts=attempts,
            )

        booking = self.booking_repository.find_by_payment_reference(reference)
        paid = booking is not None and booking.is_paid
        attempts.append({"method": VerificationMethod.BOOKING_STATUS_FALLBACK.value, "ok": paid})
        if paid:
            return VerificationResult(
                success=True,
                method=VerificationMethod.BOOKING_STATUS_FALLBACK,
                booking_id=booking.id,
                reference=reference,
                attempts=attempts,
            )

        self.logger.warning(f"All verification methods failed for {reference}")
        return VerificationResult(
            success=False,
            method=VerificationMethod.ALL_METHODS_FAILED,
            booking_id=booking.id if booking else None,
            reference=reference,
            attempts=attempts,
        )

    @BaseService.measure_operation("reconcile_from_gateway")
    def reconcile_from_gateway(self, booking_id: str, reference: str, actor: Actor) -> PaymentApplyResult:
        """
        Verify a reference and apply it as a manual-fallback completion.

        The gateway reference is reused as the dedup key, so a webhook for the
        same payment arriving later is a duplicate rather than a second
        transition.
        """
        actor.require_manager("Payment reconciliation")
        result = self.verify_payment(reference)
        if not result.success:
            raise BusinessRuleException(
                f"Payment {result.reference} could not be verified",
                code="PAYMENT_NOT_VERIFIED",
                details={"method": result.method.value, "attempts": result.attempts},
            )
        if result.booking_id and result.booking_id != booking_id:
            raise ValidationException(
                f"Payment {result.reference} belongs to another booking",
                code="REFERENCE_MISMATCH",
                details={"booking_id": booking_id, "verified_booking_id": result.booking_id},
            )

        event = PaymentEventInput(
            channel=PaymentChannel.MANUAL_FALLBACK,
            external_reference=result.reference,
            reported_status=PaymentStatus.COMPLETED,
            event_type=f"verification.{result.method.value}",
            payload={"verification_method": result.method.value, "attempts": result.attempts},
            payment_method="paystack",
            booking_reference=result.reference,
        )
        return self.apply_payment_event(booking_id, event, actor)

    # ---------------------------------------------------------------- review

    def list_open_anomalies(self, booking_id: Optional[str] = None) -> List[PaymentAnomaly]:
        return self.event_repository.list_open_anomalies(booking_id=booking_id)

    def get_payment_history(self, booking_id: str) -> List[PaymentEvent]:
        self._get_booking(booking_id)
        return self.event_repository.list_for_booking(booking_id)
