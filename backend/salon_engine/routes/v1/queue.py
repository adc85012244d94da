# backend/salon_engine/routes/v1/queue.py
"""
Front-desk queue routes - API v1

Endpoints:
    GET /today - Service queue (unpaid first, walk-ins ahead)
    GET /payments - Payment queue (paid first)
    GET /stats - Day counters
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import get_queue_service
from ...core.exceptions import DomainException
from ...core.timezone_utils import business_today
from ...schemas.queue import QueueEntryResponse, QueueResponse, QueueStatsResponse
from ...services.queue_service import PAYMENT_QUEUE, SERVICE_QUEUE, QueueService
from ._errors import handle_domain_exception

router = APIRouter(tags=["queue-v1"])


def _queue_response(service: QueueService, ordering: str, day: Optional[date]) -> QueueResponse:
    target = day or business_today()
    try:
        entries = service.get_queue(ordering, as_of=target)
    except DomainException as e:
        handle_domain_exception(e)
    return QueueResponse(
        as_of=target,
        ordering=ordering,
        entries=[QueueEntryResponse.model_validate(entry) for entry in entries],
    )


@router.get("/today", response_model=QueueResponse)
def service_queue(
    day: Optional[date] = Query(None, alias="date"),
    service: QueueService = Depends(get_queue_service),
) -> QueueResponse:
    return _queue_response(service, SERVICE_QUEUE, day)


@router.get("/payments", response_model=QueueResponse)
def payment_queue(
    day: Optional[date] = Query(None, alias="date"),
    service: QueueService = Depends(get_queue_service),
) -> QueueResponse:
    return _queue_response(service, PAYMENT_QUEUE, day)


@router.get("/stats", response_model=QueueStatsResponse)
def queue_stats(
    day: Optional[date] = Query(None, alias="date"),
    service: QueueService = Depends(get_queue_service),
) -> QueueStatsResponse:
    target = day or business_today()
    try:
        stats = service.queue_stats(target)
    except DomainException as e:
        handle_domain_exception(e)
    return QueueStatsResponse(as_of=target, **stats)
