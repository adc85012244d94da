# backend/salon_engine/schemas/payment.py
"""
Payment reconciliation schemas.

Manual confirmation, override and reconciliation requests plus the uniform
result returned by every payment channel.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from ..core.enums import ManualPaymentMethod, PaymentStatus
from .base import Money, StandardizedModel, StrictRequestModel


def _strip_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class ManualPaymentRequest(StrictRequestModel):
    """Staff-confirmed payment taken outside the gateway."""

    method: ManualPaymentMethod
    reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)
    amount: Optional[Money] = None

    @field_validator("reference")
    @classmethod
    def _clean_reference(cls, value: Optional[str]) -> Optional[str]:
        return _strip_optional(value)


class TerminalPaymentRequest(StrictRequestModel):
    """POS terminal or bank transfer confirmation; the reference is mandatory."""

    reference: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)
    amount: Optional[Money] = None

    @field_validator("reference")
    @classmethod
    def _require_reference(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("reference must not be blank")
        return value


class PaymentOverrideRequest(StrictRequestModel):
    status: PaymentStatus
    reason: str = Field(..., min_length=1, max_length=1000)


class ReconcileRequest(StrictRequestModel):
    reference: str = Field(..., min_length=1, max_length=255)


class PaymentResultResponse(StandardizedModel):
    booking_id: str
    booking_reference: str
    outcome: str
    status: str
    payment_status: str
    payment_reference: Optional[str] = None
    event_id: Optional[str] = None
    auto_advanced: bool = False


class WebhookAckResponse(StandardizedModel):
    received: bool = True
    event: str
    reference: Optional[str] = None
    outcome: str
    booking_id: Optional[str] = None
    anomaly_id: Optional[str] = None


class VerificationResponse(StandardizedModel):
    success: bool
    method: str
    booking_id: Optional[str] = None
    reference: str
    gateway_status: Optional[str] = None
    attempts: List[Dict[str, Any]] = Field(default_factory=list)


class PaymentAnomalyResponse(StandardizedModel):
    id: str
    booking_id: str
    payment_event_id: Optional[str] = None
    channel: str
    current_status: str
    reported_status: str
    reason: Optional[str] = None
    created_at: datetime


class PaymentAnomalyListResponse(StandardizedModel):
    anomalies: List[PaymentAnomalyResponse]
    total: int


class PaymentEventResponse(StandardizedModel):
    """One recorded channel report; duplicates are never stored twice."""

    id: str
    channel: str
    external_reference: str
    event_type: str
    reported_status: str
    outcome: str
    amount: Optional[Money] = None
    payment_method: Optional[str] = None
    actor_id: Optional[str] = None
    received_at: datetime


class PaymentHistoryResponse(StandardizedModel):
    booking_id: str
    events: List[PaymentEventResponse]
    total: int
