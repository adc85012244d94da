from decimal import Decimal

import pytest

from salon_engine.core.enums import PaymentChannel, PaymentStatus
from salon_engine.core.exceptions import ValidationException
from salon_engine.integrations.paystack_client import compute_signature, verify_signature
from salon_engine.services.payment_reconciliation_service import (
    PaymentEventInput,
    TransitionDecision,
    _parse_amount,
    classify_transition,
)

P = PaymentStatus


@pytest.mark.parametrize(
    "current, reported",
    [(P.PENDING, P.COMPLETED), (P.PENDING, P.FAILED), (P.COMPLETED, P.REFUNDED)],
)
def test_allowed_transitions_apply(current, reported):
    assert classify_transition(current, reported) == TransitionDecision.APPLY


@pytest.mark.parametrize("status", list(PaymentStatus))
def test_repeating_current_state_is_noop(status):
    assert classify_transition(status, status) == TransitionDecision.NOOP


@pytest.mark.parametrize("current", [P.COMPLETED, P.FAILED, P.REFUNDED])
def test_pending_report_never_moves_state(current):
    assert classify_transition(current, P.PENDING) == TransitionDecision.NOOP


@pytest.mark.parametrize(
    "current, reported",
    [
        (P.COMPLETED, P.FAILED),
        (P.FAILED, P.COMPLETED),
        (P.FAILED, P.REFUNDED),
        (P.REFUNDED, P.COMPLETED),
        (P.REFUNDED, P.FAILED),
        (P.PENDING, P.REFUNDED),
    ],
)
def test_conflicting_reports_are_anomalies(current, reported):
    assert classify_transition(current, reported) == TransitionDecision.ANOMALY


def test_classify_accepts_plain_strings():
    assert classify_transition("pending", "completed") == TransitionDecision.APPLY


class TestPaymentEventInput:
    def test_reference_is_stripped_and_enums_coerced(self):
        event = PaymentEventInput(
            channel="pos_terminal", external_reference="  POS-1 ", reported_status="completed"
        )
        assert event.external_reference == "POS-1"
        assert event.channel is PaymentChannel.POS_TERMINAL
        assert event.reported_status is PaymentStatus.COMPLETED

    def test_blank_reference_is_rejected(self):
        with pytest.raises(ValidationException) as exc_info:
            PaymentEventInput(PaymentChannel.GATEWAY_WEBHOOK, "   ", PaymentStatus.COMPLETED)
        assert exc_info.value.code == "MISSING_REFERENCE"

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ValidationException) as exc_info:
            PaymentEventInput(PaymentChannel.GATEWAY_WEBHOOK, "PSK-1", "chargeback")
        assert exc_info.value.code == "INVALID_PAYMENT_EVENT"


def test_parse_amount_handles_minor_units_and_garbage():
    assert _parse_amount(500000, minor_units=True) == Decimal("5000")
    assert _parse_amount("12.50") == Decimal("12.50")
    assert _parse_amount(None) is None
    assert _parse_amount("") is None
    assert _parse_amount("abc") is None


class TestWebhookSignature:
    def test_matching_signature_verifies(self):
        body = b'{"event":"charge.success"}'
        assert verify_signature("secret", body, compute_signature("secret", body))

    def test_wrong_secret_or_tampered_body_fails(self):
        body = b'{"event":"charge.success"}'
        signature = compute_signature("secret", body)
        assert not verify_signature("other", body, signature)
        assert not verify_signature("secret", body + b" ", signature)

    def test_missing_signature_or_secret_fails(self):
        assert not verify_signature("secret", b"{}", None)
        assert not verify_signature("", b"{}", compute_signature("x", b"{}"))
