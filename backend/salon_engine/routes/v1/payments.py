# backend/salon_engine/routes/v1/payments.py
"""
Payment reconciliation routes - API v1

Endpoints:
    POST /webhook - Signature-checked gateway ingress
    POST /{booking_id}/confirm-manual - Cash/company account/transfer/POS confirmation
    POST /{booking_id}/confirm-pos - POS terminal confirmation
    POST /{booking_id}/confirm-bank-transfer - Bank transfer confirmation
    POST /{booking_id}/override - Admin override of payment status
    POST /{booking_id}/reconcile - Verify a gateway reference and apply it
    GET /verify/{reference} - Multi-method verification
    GET /anomalies - Open anomalies awaiting review
    GET /{booking_id}/history - Recorded payment events for a booking
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from ...api.dependencies import get_actor, get_payment_service
from ...core.actor import Actor
from ...core.exceptions import DomainException, ValidationException
from ...schemas.payment import (
    ManualPaymentRequest,
    PaymentAnomalyListResponse,
    PaymentAnomalyResponse,
    PaymentEventResponse,
    PaymentHistoryResponse,
    PaymentOverrideRequest,
    PaymentResultResponse,
    ReconcileRequest,
    TerminalPaymentRequest,
    VerificationResponse,
    WebhookAckResponse,
)
from ...services.payment_reconciliation_service import (
    PaymentApplyResult,
    PaymentReconciliationService,
)
from ._errors import handle_domain_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments-v1"])


def _result_response(result: PaymentApplyResult) -> PaymentResultResponse:
    booking = result.booking
    return PaymentResultResponse(
        booking_id=booking.id,
        booking_reference=booking.booking_number,
        outcome=result.outcome.value,
        status=result.status,
        payment_status=result.payment_status,
        payment_reference=booking.payment_reference,
        event_id=result.event_id,
        auto_advanced=result.auto_advanced,
    )


@router.post("/webhook", response_model=WebhookAckResponse)
async def payment_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None, alias="x-paystack-signature"),
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> WebhookAckResponse:
    """
    Gateway webhook ingress.

    The signature is checked against the raw body before anything is parsed.
    Duplicates, unknown events and anomalies are all acknowledged with 200 so
    the gateway stops redelivering; anomalies are held for review.
    """
    body = await request.body()
    try:
        service.verify_webhook_signature(body, x_paystack_signature)
        try:
            payload: Dict[str, Any] = json.loads(body.decode("utf-8") or "{}")
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationException("Webhook body is not valid JSON", code="INVALID_WEBHOOK") from exc
        if not isinstance(payload, dict):
            raise ValidationException("Webhook body must be an object", code="INVALID_WEBHOOK")

        result = await asyncio.to_thread(service.handle_gateway_webhook, payload)
    except DomainException as e:
        handle_domain_exception(e)

    return WebhookAckResponse(
        event=result.event,
        reference=result.reference,
        outcome=result.outcome.value,
        booking_id=result.booking_id,
        anomaly_id=result.anomaly_id,
    )


@router.post("/{booking_id}/confirm-manual", response_model=PaymentResultResponse)
def confirm_manual_payment(
    booking_id: str,
    payload: ManualPaymentRequest,
    actor: Actor = Depends(get_actor),
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> PaymentResultResponse:
    try:
        result = service.confirm_manual_payment(
            booking_id,
            actor,
            payload.method,
            reference=payload.reference,
            notes=payload.notes,
            amount=payload.amount,
        )
        return _result_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/confirm-pos", response_model=PaymentResultResponse)
def confirm_pos_payment(
    booking_id: str,
    payload: TerminalPaymentRequest,
    actor: Actor = Depends(get_actor),
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> PaymentResultResponse:
    try:
        result = service.confirm_pos_payment(
            booking_id, actor, payload.reference, notes=payload.notes, amount=payload.amount
        )
        return _result_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/confirm-bank-transfer", response_model=PaymentResultResponse)
def confirm_bank_transfer(
    booking_id: str,
    payload: TerminalPaymentRequest,
    actor: Actor = Depends(get_actor),
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> PaymentResultResponse:
    try:
        result = service.confirm_bank_transfer(
            booking_id, actor, payload.reference, notes=payload.notes, amount=payload.amount
        )
        return _result_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/override", response_model=PaymentResultResponse)
def override_payment_status(
    booking_id: str,
    payload: PaymentOverrideRequest,
    actor: Actor = Depends(get_actor),
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> PaymentResultResponse:
    """Admin-only override; resolves the booking's open anomalies."""
    try:
        result = service.manual_override(booking_id, payload.status, actor, payload.reason)
        return _result_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/reconcile", response_model=PaymentResultResponse)
def reconcile_payment(
    booking_id: str,
    payload: ReconcileRequest,
    actor: Actor = Depends(get_actor),
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> PaymentResultResponse:
    try:
        result = service.reconcile_from_gateway(booking_id, payload.reference, actor)
        return _result_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/verify/{reference}", response_model=VerificationResponse)
def verify_payment(
    reference: str,
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> VerificationResponse:
    try:
        result = service.verify_payment(reference)
    except DomainException as e:
        handle_domain_exception(e)
    return VerificationResponse(
        success=result.success,
        method=result.method.value,
        booking_id=result.booking_id,
        reference=result.reference,
        gateway_status=result.gateway_status,
        attempts=result.attempts,
    )


@router.get("/anomalies", response_model=PaymentAnomalyListResponse)
def list_payment_anomalies(
    booking_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> PaymentAnomalyListResponse:
    try:
        actor.require_manager("Reviewing payment anomalies")
        anomalies = service.list_open_anomalies(booking_id=booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return PaymentAnomalyListResponse(
        anomalies=[PaymentAnomalyResponse.model_validate(a) for a in anomalies],
        total=len(anomalies),
    )


@router.get("/{booking_id}/history", response_model=PaymentHistoryResponse)
def payment_history(
    booking_id: str,
    actor: Actor = Depends(get_actor),
    service: PaymentReconciliationService = Depends(get_payment_service),
) -> PaymentHistoryResponse:
    """Every payment report recorded for the booking, oldest first."""
    try:
        events = service.get_payment_history(booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return PaymentHistoryResponse(
        booking_id=booking_id,
        events=[PaymentEventResponse.model_validate(e) for e in events],
        total=len(events),
    )
