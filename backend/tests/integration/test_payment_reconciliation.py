from decimal import Decimal

import httpx
import pytest

from salon_engine.core.enums import (
    BookingStatus,
    CustomerType,
    PaymentChannel,
    PaymentEventOutcome,
    PaymentStatus,
    VerificationMethod,
)
from salon_engine.core.exceptions import (
    BusinessRuleException,
    ForbiddenException,
    InvalidSignatureException,
    NotFoundException,
    PaymentAnomalyException,
    ValidationException,
)
from salon_engine.integrations.paystack_client import PaystackClient
from salon_engine.models import PaymentEvent
from salon_engine.repositories.event_outbox_repository import EventOutboxRepository
from salon_engine.services.payment_reconciliation_service import (
    PaymentEventInput,
    PaymentReconciliationService,
)
from tests.helpers import TEST_WEBHOOK_SECRET, charge_success, signed_body


def _gateway(handler):
    return PaystackClient(secret_key="sk_test_gateway", transport=httpx.MockTransport(handler))


def _gateway_answer(status, booking_id=None, reference="PSK-1"):
    def handler(request):
        return httpx.Response(
            200,
            json={
                "status": True,
                "message": "Verification successful",
                "data": {
                    "status": status,
                    "reference": reference,
                    "amount": 500000,
                    "metadata": {"booking_id": booking_id} if booking_id else {},
                },
            },
        )

    return handler


def _gateway_down(request):
    return httpx.Response(503, json={"status": False, "message": "upstream unavailable"})


@pytest.fixture
def service(db, no_sleep_policy):
    return PaymentReconciliationService(
        db, retry_policy=no_sleep_policy, webhook_secret=TEST_WEBHOOK_SECRET
    )


@pytest.fixture
def walk_in(make_booking):
    return make_booking(customer_type=CustomerType.WALK_IN, customer_id=None, customer_name="Walk-in")


def _notifications(db, booking_id, event_type="booking.payment_updated"):
    return [e for e in EventOutboxRepository(db).list_for_booking(booking_id) if e.event_type == event_type]


def _webhook_event(reference, status=PaymentStatus.COMPLETED):
    return PaymentEventInput(
        channel=PaymentChannel.GATEWAY_WEBHOOK,
        external_reference=reference,
        reported_status=status,
        event_type="charge.success",
        booking_reference=reference,
    )


class TestIdempotency:
    def test_duplicate_webhook_is_a_silent_noop(self, db, service, make_booking):
        booking = make_booking()

        first = service.handle_gateway_webhook(charge_success("PSK-1", booking.id))
        second = service.handle_gateway_webhook(charge_success("PSK-1", booking.id))

        assert first.outcome == PaymentEventOutcome.APPLIED
        assert second.outcome == PaymentEventOutcome.DUPLICATE
        db.refresh(booking)
        assert booking.payment_status == PaymentStatus.COMPLETED.value
        assert booking.payment_reference == "PSK-1"
        assert booking.payment_method == "paystack_card"
        assert len(_notifications(db, booking.id)) == 1
        assert db.query(PaymentEvent).filter_by(external_reference="PSK-1").count() == 1

    def test_duplicate_returns_current_booking(self, service, make_booking):
        booking = make_booking()
        service.apply_payment_event(booking.id, _webhook_event("PSK-2"))

        result = service.apply_payment_event(booking.id, _webhook_event("PSK-2"))

        assert result.is_duplicate
        assert result.payment_status == PaymentStatus.COMPLETED.value
        assert result.auto_advanced is False

    def test_reference_from_another_booking_is_rejected(self, service, make_booking):
        first, second = make_booking(), make_booking()
        service.apply_payment_event(first.id, _webhook_event("PSK-3"))

        with pytest.raises(ValidationException) as exc_info:
            service.apply_payment_event(second.id, _webhook_event("PSK-3"))
        assert exc_info.value.code == "REFERENCE_MISMATCH"

    def test_same_state_from_second_channel_is_recorded_as_noop(self, db, service, make_booking):
        booking = make_booking()
        service.apply_payment_event(booking.id, _webhook_event("PSK-4"))

        result = service.apply_payment_event(
            booking.id,
            PaymentEventInput(PaymentChannel.POS_TERMINAL, "POS-99", PaymentStatus.COMPLETED),
        )

        assert result.outcome == PaymentEventOutcome.NOOP
        assert len(_notifications(db, booking.id)) == 1
        db.refresh(booking)
        assert booking.payment_reference == "PSK-4"

    def test_unknown_booking(self, service):
        with pytest.raises(NotFoundException):
            service.apply_payment_event("missing", _webhook_event("PSK-5"))


class TestAnomalies:
    def test_failed_after_completed_does_not_downgrade(self, db, service, make_booking):
        booking = make_booking()
        service.apply_payment_event(booking.id, _webhook_event("PSK-10"))

        with pytest.raises(PaymentAnomalyException) as exc_info:
            service.apply_payment_event(
                booking.id,
                PaymentEventInput(PaymentChannel.MANUAL_FALLBACK, "MAN-10", PaymentStatus.FAILED),
            )

        db.refresh(booking)
        assert booking.payment_status == PaymentStatus.COMPLETED.value
        anomalies = service.list_open_anomalies(booking.id)
        assert len(anomalies) == 1
        assert anomalies[0].id == exc_info.value.anomaly_id
        assert anomalies[0].current_status == "completed"
        assert anomalies[0].reported_status == "failed"
        assert len(_notifications(db, booking.id, "booking.payment_anomaly")) == 1

    def test_anomalous_webhook_is_acknowledged(self, db, service, make_booking):
        booking = make_booking(payment_status=PaymentStatus.FAILED)

        result = service.handle_gateway_webhook(charge_success("PSK-11", booking.id))

        assert result.outcome == PaymentEventOutcome.ANOMALY
        assert result.anomaly_id is not None
        db.refresh(booking)
        assert booking.payment_status == PaymentStatus.FAILED.value

    def test_history_keeps_every_outcome(self, service, make_booking):
        booking = make_booking()
        service.apply_payment_event(booking.id, _webhook_event("PSK-12"))
        with pytest.raises(PaymentAnomalyException):
            service.apply_payment_event(
                booking.id, PaymentEventInput(PaymentChannel.POS_TERMINAL, "POS-12", "failed")
            )

        history = service.get_payment_history(booking.id)
        assert [e.outcome for e in history] == ["applied", "anomaly"]


class TestAutoAdvance:
    def test_walk_in_starts_service_on_payment(self, db, service, walk_in):
        result = service.apply_payment_event(walk_in.id, _webhook_event("PSK-20"))

        assert result.auto_advanced is True
        db.refresh(walk_in)
        assert walk_in.status == BookingStatus.IN_PROGRESS.value
        assert walk_in.started_at is not None
        assert _notifications(db, walk_in.id)[0].payload["auto_advanced"] is True

    def test_pre_booked_waits_for_staff(self, db, service, make_booking):
        booking = make_booking()
        result = service.apply_payment_event(booking.id, _webhook_event("PSK-21"))

        assert result.auto_advanced is False
        db.refresh(booking)
        assert booking.status == BookingStatus.SCHEDULED.value

    def test_failed_payment_never_advances(self, db, service, walk_in):
        service.apply_payment_event(walk_in.id, _webhook_event("PSK-22", PaymentStatus.FAILED))
        db.refresh(walk_in)
        assert walk_in.status == BookingStatus.SCHEDULED.value
        assert walk_in.payment_status == PaymentStatus.FAILED.value


class TestGatewayWebhook:
    def test_signature_is_checked_against_raw_body(self, service):
        body, signature = signed_body({"event": "charge.success"}, TEST_WEBHOOK_SECRET)
        service.verify_webhook_signature(body, signature)

        with pytest.raises(InvalidSignatureException):
            service.verify_webhook_signature(body, "0" * 128)
        with pytest.raises(InvalidSignatureException):
            service.verify_webhook_signature(body, None)

    def test_unhandled_event_is_ignored(self, service):
        result = service.handle_gateway_webhook({"event": "transfer.success", "data": {"reference": "T-1"}})
        assert result.outcome == PaymentEventOutcome.IGNORED

    def test_unknown_reference_is_ignored(self, service):
        payload = {"event": "charge.success", "data": {"reference": "PSK-404", "amount": 100}}
        assert service.handle_gateway_webhook(payload).outcome == PaymentEventOutcome.IGNORED

    def test_metadata_naming_unknown_booking_is_ignored(self, db, service):
        result = service.handle_gateway_webhook(charge_success("PSK-405", "01HZZZZZZZZZZZZZZZZZZZZZZZ"))

        assert result.outcome == PaymentEventOutcome.IGNORED
        assert result.reference == "PSK-405"
        assert db.query(PaymentEvent).filter_by(external_reference="PSK-405").count() == 0

    def test_booking_found_by_stored_reference(self, db, service, make_booking):
        booking = make_booking(payment_reference="PSK-30")
        payload = {"event": "charge.success", "data": {"reference": "PSK-30", "amount": 250000}}

        result = service.handle_gateway_webhook(payload)

        assert result.booking_id == booking.id
        event = db.query(PaymentEvent).filter_by(external_reference="PSK-30").one()
        assert event.amount == Decimal("2500.00")
        assert event.payment_method == "paystack"

    def test_missing_reference_is_invalid(self, service):
        with pytest.raises(ValidationException):
            service.handle_gateway_webhook({"event": "charge.success", "data": {}})

    def test_refund_after_completion(self, db, service, make_booking):
        booking = make_booking()
        service.handle_gateway_webhook(charge_success("PSK-31", booking.id))

        refund = {
            "event": "refund.processed",
            "data": {"transaction_reference": "PSK-31", "metadata": {"booking_id": booking.id}},
        }
        first = service.handle_gateway_webhook(refund)
        again = service.handle_gateway_webhook(refund)

        assert first.outcome == PaymentEventOutcome.APPLIED
        assert again.outcome == PaymentEventOutcome.DUPLICATE
        db.refresh(booking)
        assert booking.payment_status == PaymentStatus.REFUNDED.value
        assert booking.payment_reference == "PSK-31"


class TestManualChannels:
    def test_staff_cannot_confirm(self, service, make_booking, staff):
        with pytest.raises(ForbiddenException):
            service.confirm_manual_payment(make_booking().id, staff, "cash")

    def test_cash_gets_generated_reference(self, db, service, make_booking, manager):
        booking = make_booking()
        result = service.confirm_manual_payment(booking.id, manager, "cash", notes="paid at desk")

        assert result.outcome == PaymentEventOutcome.APPLIED
        db.refresh(booking)
        assert booking.payment_reference.startswith("MANUAL-")
        assert booking.payment_method == "cash"
        event = db.query(PaymentEvent).filter_by(booking_id=booking.id).one()
        assert event.channel == PaymentChannel.MANUAL_FALLBACK.value
        assert event.actor_id == manager.id

    @pytest.mark.parametrize("method", ["bank_transfer", "pos_terminal"])
    def test_reference_required_for_traceable_methods(self, service, make_booking, manager, method):
        with pytest.raises(ValidationException) as exc_info:
            service.confirm_manual_payment(make_booking().id, manager, method, reference="  ")
        assert exc_info.value.code == "REFERENCE_REQUIRED"

    def test_unknown_method(self, service, make_booking, manager):
        with pytest.raises(ValidationException) as exc_info:
            service.confirm_manual_payment(make_booking().id, manager, "crypto")
        assert exc_info.value.code == "INVALID_PAYMENT_METHOD"

    def test_pos_then_webhook_with_other_reference(self, db, service, make_booking, manager):
        booking = make_booking()
        pos = service.confirm_pos_payment(booking.id, manager, "POS-7781")
        webhook = service.handle_gateway_webhook(charge_success("PSK-40", booking.id))

        assert pos.outcome == PaymentEventOutcome.APPLIED
        assert webhook.outcome == PaymentEventOutcome.NOOP
        assert len(_notifications(db, booking.id)) == 1

    def test_bank_transfer_replay_is_duplicate(self, db, service, make_booking, admin):
        booking = make_booking()
        service.confirm_bank_transfer(booking.id, admin, "TRF-1", amount=Decimal("5000"))
        again = service.confirm_bank_transfer(booking.id, admin, "TRF-1")

        assert again.is_duplicate
        db.refresh(booking)
        assert booking.payment_method == "bank_transfer"


class TestManualOverride:
    def test_requires_admin(self, service, make_booking, manager):
        with pytest.raises(ForbiddenException):
            service.manual_override(make_booking().id, "completed", manager, "gateway confirmed by phone")

    def test_requires_reason(self, service, make_booking, admin):
        with pytest.raises(ValidationException) as exc_info:
            service.manual_override(make_booking().id, "completed", admin, " ")
        assert exc_info.value.code == "REASON_REQUIRED"

    def test_unknown_status(self, service, make_booking, admin):
        with pytest.raises(ValidationException):
            service.manual_override(make_booking().id, "chargeback", admin, "why not")

    def test_failed_to_completed_resolves_anomalies(self, db, service, walk_in, admin):
        service.apply_payment_event(walk_in.id, _webhook_event("PSK-50", PaymentStatus.FAILED))
        with pytest.raises(PaymentAnomalyException):
            service.apply_payment_event(walk_in.id, _webhook_event("PSK-51"))

        result = service.manual_override(walk_in.id, PaymentStatus.COMPLETED, admin, "cash collected later")

        assert result.outcome == PaymentEventOutcome.OVERRIDE
        assert result.payment_status == PaymentStatus.COMPLETED.value
        assert result.status == BookingStatus.SCHEDULED.value
        assert service.list_open_anomalies(walk_in.id) == []
        override_event = db.query(PaymentEvent).filter_by(id=result.event_id).one()
        assert override_event.actor_id == admin.id
        assert override_event.payload["previous_status"] == "failed"


class TestVerification:
    def test_gateway_answer_is_authoritative(self, db, no_sleep_policy, make_booking):
        booking = make_booking()
        service = PaymentReconciliationService(
            db, gateway=_gateway(_gateway_answer("success", booking.id)), retry_policy=no_sleep_policy
        )

        result = service.verify_payment("PSK-1")

        assert result.success is True
        assert result.method == VerificationMethod.GATEWAY_API
        assert result.booking_id == booking.id
        assert result.gateway_status == "success"

    def test_gateway_reporting_abandoned_is_not_success(self, db, make_booking):
        service = PaymentReconciliationService(db, gateway=_gateway(_gateway_answer("abandoned")))
        result = service.verify_payment("PSK-1")
        assert result.success is False
        assert result.method == VerificationMethod.GATEWAY_API

    def test_gateway_rejection_does_not_fall_back(self, db, service, make_booking):
        booking = make_booking()
        service.handle_gateway_webhook(charge_success("PSK-60", booking.id))
        service.gateway = _gateway(lambda request: httpx.Response(404, json={"status": False}))

        result = service.verify_payment("PSK-60")

        assert result.success is False
        assert result.method == VerificationMethod.GATEWAY_API
        assert result.booking_id == booking.id

    def test_outage_falls_back_to_recorded_webhook(self, service, make_booking):
        booking = make_booking()
        service.handle_gateway_webhook(charge_success("PSK-61", booking.id))
        service.gateway = _gateway(_gateway_down)

        result = service.verify_payment("PSK-61")

        assert result.success is True
        assert result.method == VerificationMethod.WEBHOOK_FALLBACK
        assert result.booking_id == booking.id
        assert [a["method"] for a in result.attempts] == ["gateway_api", "webhook_fallback"]

    def test_outage_falls_back_to_booking_fields(self, service, make_booking, manager):
        booking = make_booking()
        service.confirm_pos_payment(booking.id, manager, "POS-62")
        service.gateway = _gateway(_gateway_down)

        result = service.verify_payment("POS-62")

        assert result.success is True
        assert result.method == VerificationMethod.BOOKING_STATUS_FALLBACK
        assert result.booking_id == booking.id

    def test_unconfigured_gateway_uses_fallbacks(self, service):
        service.gateway = None
        result = service.verify_payment("NOPE-1")

        assert result.success is False
        assert result.method == VerificationMethod.ALL_METHODS_FAILED
        assert result.booking_id is None
        assert len(result.attempts) == 3

    def test_blank_reference(self, service):
        with pytest.raises(ValidationException):
            service.verify_payment("   ")


class TestReconcile:
    def test_verified_payment_is_applied_once(self, db, no_sleep_policy, make_booking, manager):
        booking = make_booking()
        service = PaymentReconciliationService(
            db,
            gateway=_gateway(_gateway_answer("success", booking.id, reference="PSK-70")),
            retry_policy=no_sleep_policy,
            webhook_secret=TEST_WEBHOOK_SECRET,
        )

        result = service.reconcile_from_gateway(booking.id, "PSK-70", manager)
        late_webhook = service.handle_gateway_webhook(charge_success("PSK-70", booking.id))

        assert result.outcome == PaymentEventOutcome.APPLIED
        assert late_webhook.outcome == PaymentEventOutcome.DUPLICATE
        assert len(_notifications(db, booking.id)) == 1
        db.refresh(booking)
        assert booking.payment_reference == "PSK-70"

    def test_unverified_payment_is_refused(self, db, make_booking, manager):
        service = PaymentReconciliationService(db, gateway=_gateway(_gateway_answer("failed")))
        with pytest.raises(BusinessRuleException) as exc_info:
            service.reconcile_from_gateway(make_booking().id, "PSK-71", manager)
        assert exc_info.value.code == "PAYMENT_NOT_VERIFIED"

    def test_payment_for_other_booking_is_refused(self, db, make_booking, manager):
        other = make_booking()
        service = PaymentReconciliationService(db, gateway=_gateway(_gateway_answer("success", other.id)))
        with pytest.raises(ValidationException) as exc_info:
            service.reconcile_from_gateway(make_booking().id, "PSK-1", manager)
        assert exc_info.value.code == "REFERENCE_MISMATCH"

    def test_staff_cannot_reconcile(self, service, make_booking, staff):
        with pytest.raises(ForbiddenException):
            service.reconcile_from_gateway(make_booking().id, "PSK-72", staff)
