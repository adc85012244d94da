# backend/salon_engine/routes/v1/health.py
"""
Health check and metrics endpoints for monitoring and load balancer probes.

/metrics is public, following standard Prometheus practice.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import __version__
from ...api.dependencies import get_db
from ...core.config import settings
from ...core.timezone_utils import utc_now
from ...monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(response: Response, db: Session = Depends(get_db)) -> Dict[str, Any]:
    database = "ok"
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Health check database probe failed: %s", exc)
        database = "error"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": __version__,
        "environment": settings.environment,
        "database": database,
        "timestamp": utc_now().isoformat(),
    }


@router.get("/metrics")
def metrics() -> Response:
    return Response(content=prometheus_metrics.get_metrics(), media_type=prometheus_metrics.get_content_type())
