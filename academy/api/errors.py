"""Map lifecycle errors to HTTP responses.

Routes call the orchestrator and let LifecycleError subclasses propagate;
these handlers turn them into ``{"detail": message}`` bodies with the
matching status code.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from academy.core.errors import (
    AccessDeniedError,
    ConflictError,
    LifecycleError,
    NotFoundError,
    PaymentGatewayError,
    TransientStorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[LifecycleError], int]] = [
    (ValidationError, 422),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (PaymentGatewayError, status.HTTP_502_BAD_GATEWAY),
    (TransientStorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for(exc: LifecycleError) -> int:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    elif code == status.HTTP_409_CONFLICT:
        logger.warning("Conflict on %s: %s", request.url.path, exc.message)
    headers = {"Retry-After": "1"} if isinstance(exc, TransientStorageError) else None
    return JSONResponse(
        status_code=code, content={"detail": exc.message}, headers=headers
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LifecycleError, lifecycle_error_handler)
