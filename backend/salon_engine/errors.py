# backend/salon_engine/errors.py
"""Error envelope handlers shared by every router."""

import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from .core.exceptions import DomainException, RepositoryException

logger = logging.getLogger(__name__)


def _envelope(exc: DomainException) -> dict:
    return {"detail": {"message": exc.message, "code": exc.code, "details": exc.details}}


def register_error_handlers(app: FastAPI) -> None:
    """
    Render domain errors raised outside a route's own try block
    (dependencies, background helpers) with the same body the routes use.
    """

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(_envelope(exc)))

    @app.exception_handler(RepositoryException)
    async def repository_exception_handler(request: Request, exc: RepositoryException) -> JSONResponse:
        logger.error("Repository failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={
                "detail": {"message": "Storage operation failed", "code": "STORAGE_ERROR", "details": {}}
            },
        )
