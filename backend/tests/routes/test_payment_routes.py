import pytest

from salon_engine.api.dependencies import get_payment_service
from salon_engine.core.enums import PaymentStatus
from salon_engine.integrations.paystack_client import compute_signature
from salon_engine.services.payment_reconciliation_service import PaymentReconciliationService
from tests.helpers import TEST_WEBHOOK_SECRET, actor_headers, charge_success, signed_body


@pytest.fixture
def payment_client(client, db):
    from salon_engine.main import app

    app.dependency_overrides[get_payment_service] = lambda: PaymentReconciliationService(
        db, webhook_secret=TEST_WEBHOOK_SECRET
    )
    return client


def _post_webhook(client, payload, secret=TEST_WEBHOOK_SECRET, signature=None):
    body, computed = signed_body(payload, secret)
    return client.post(
        "/api/v1/payments/webhook",
        content=body,
        headers={"x-paystack-signature": signature or computed, "content-type": "application/json"},
    )


def test_webhook_applies_payment_once(payment_client, db, make_booking):
    booking = make_booking()

    first = _post_webhook(payment_client, charge_success("PSK-1", booking.id))
    second = _post_webhook(payment_client, charge_success("PSK-1", booking.id))

    assert first.status_code == 200
    assert first.json()["outcome"] == "applied"
    assert second.status_code == 200
    assert second.json()["outcome"] == "duplicate"
    db.refresh(booking)
    assert booking.payment_status == PaymentStatus.COMPLETED.value


def test_webhook_with_bad_signature_is_401(payment_client, make_booking):
    response = _post_webhook(payment_client, charge_success("PSK-2", make_booking().id), secret="wrong")
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"


def test_webhook_without_signature_is_401(payment_client):
    response = payment_client.post("/api/v1/payments/webhook", content=b"{}")
    assert response.status_code == 401


def test_signed_garbage_is_400(payment_client):
    body = b"not json"
    response = payment_client.post(
        "/api/v1/payments/webhook",
        content=body,
        headers={"x-paystack-signature": compute_signature(TEST_WEBHOOK_SECRET, body)},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_WEBHOOK"


def test_webhook_for_unknown_booking_is_acknowledged(payment_client):
    response = _post_webhook(payment_client, charge_success("PSK-404", "no-such-booking"))

    assert response.status_code == 200
    assert response.json()["outcome"] == "ignored"


def test_anomalous_webhook_is_acknowledged(payment_client, make_booking):
    booking = make_booking(payment_status=PaymentStatus.FAILED)
    response = _post_webhook(payment_client, charge_success("PSK-3", booking.id))

    assert response.status_code == 200
    assert response.json()["outcome"] == "anomaly"
    assert response.json()["anomaly_id"]


def test_manual_confirmation_requires_manager(client, make_booking, staff, manager):
    booking = make_booking()
    url = f"/api/v1/payments/{booking.id}/confirm-manual"

    denied = client.post(url, json={"method": "cash"}, headers=actor_headers(staff))
    allowed = client.post(url, json={"method": "cash"}, headers=actor_headers(manager))

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.json()["payment_status"] == "completed"
    assert allowed.json()["payment_reference"].startswith("MANUAL-")


def test_pos_requires_reference_in_body(client, make_booking, manager):
    response = client.post(
        f"/api/v1/payments/{make_booking().id}/confirm-pos", json={}, headers=actor_headers(manager)
    )
    assert response.status_code == 422


def test_bank_transfer_and_replay(client, make_booking, manager):
    booking = make_booking()
    url = f"/api/v1/payments/{booking.id}/confirm-bank-transfer"

    first = client.post(url, json={"reference": "TRF-9"}, headers=actor_headers(manager))
    second = client.post(url, json={"reference": "TRF-9"}, headers=actor_headers(manager))

    assert first.json()["outcome"] == "applied"
    assert second.json()["outcome"] == "duplicate"


def test_override_and_anomaly_review(payment_client, make_booking, manager, admin):
    booking = make_booking(payment_status=PaymentStatus.FAILED)
    _post_webhook(payment_client, charge_success("PSK-4", booking.id))

    listed = payment_client.get("/api/v1/payments/anomalies", headers=actor_headers(manager))
    assert listed.status_code == 200
    assert listed.json()["total"] == 1

    forbidden = payment_client.post(
        f"/api/v1/payments/{booking.id}/override",
        json={"status": "completed", "reason": "confirmed with bank"},
        headers=actor_headers(manager),
    )
    assert forbidden.status_code == 403

    override = payment_client.post(
        f"/api/v1/payments/{booking.id}/override",
        json={"status": "completed", "reason": "confirmed with bank"},
        headers=actor_headers(admin),
    )
    assert override.status_code == 200
    assert override.json()["outcome"] == "override"

    after = payment_client.get("/api/v1/payments/anomalies", headers=actor_headers(manager))
    assert after.json()["total"] == 0


def test_staff_cannot_list_anomalies(client, staff):
    assert client.get("/api/v1/payments/anomalies", headers=actor_headers(staff)).status_code == 403


def test_verify_uses_fallbacks_without_gateway(payment_client, make_booking):
    booking = make_booking()
    _post_webhook(payment_client, charge_success("PSK-5", booking.id))

    response = payment_client.get("/api/v1/payments/verify/PSK-5")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["method"] == "webhook_fallback"
    assert body["booking_id"] == booking.id


def test_reconcile_unverified_is_422(client, make_booking, manager):
    response = client.post(
        f"/api/v1/payments/{make_booking().id}/reconcile",
        json={"reference": "PSK-unknown"},
        headers=actor_headers(manager),
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "PAYMENT_NOT_VERIFIED"


def test_payment_history_lists_each_recorded_report_once(payment_client, make_booking, staff):
    booking = make_booking()
    _post_webhook(payment_client, charge_success("PSK-H1", booking.id))
    _post_webhook(payment_client, charge_success("PSK-H1", booking.id))

    response = payment_client.get(f"/api/v1/payments/{booking.id}/history", headers=actor_headers(staff))

    assert response.status_code == 200
    body = response.json()
    assert body["booking_id"] == booking.id
    assert body["total"] == 1
    event = body["events"][0]
    assert event["external_reference"] == "PSK-H1"
    assert event["channel"] == "gateway_webhook"
    assert event["outcome"] == "applied"
    assert event["amount"] == 5000


def test_payment_history_for_unknown_booking_is_404(client, staff):
    response = client.get("/api/v1/payments/missing/history", headers=actor_headers(staff))
    assert response.status_code == 404
