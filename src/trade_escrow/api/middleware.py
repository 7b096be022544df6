"""HTTP middleware: request correlation, domain-error mapping, CORS.

Domain errors are translated here, once, so route handlers and services can
raise the taxonomy in domain/exceptions.py and never build responses:

    UnauthorizedActionError     403   (includes NotAPartyError)
    TransactionNotFoundError    404
    InvalidStateTransitionError 409   (includes a lost compare-and-swap)
    MediationInProgressError    409
    DuplicateOperationError     409
    EscrowValidationError       422
    StorageError                503
    any other EscrowError       400
    anything else               500

Every error body has the same shape: ``{"error": <code>, "message": <text>}``.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from trade_escrow.config import get_settings
from trade_escrow.domain.exceptions import (
    DuplicateOperationError,
    EscrowError,
    EscrowValidationError,
    InvalidStateTransitionError,
    MediationInProgressError,
    StorageError,
    TransactionNotFoundError,
    UnauthorizedActionError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# Checked in order; the EscrowError catch-all must stay last
_ERROR_STATUS: tuple[tuple[type[EscrowError], int], ...] = (
    (UnauthorizedActionError, 403),
    (TransactionNotFoundError, 404),
    (InvalidStateTransitionError, 409),
    (MediationInProgressError, 409),
    (DuplicateOperationError, 409),
    (EscrowValidationError, 422),
    (StorageError, 503),
    (EscrowError, 400),
)


def status_for(exc: EscrowError) -> int:
    """HTTP status for a domain error."""
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Bind a request id (client-supplied X-Request-ID or a fresh UUID) to the log context."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turn escaped exceptions into the JSON error shape."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except EscrowError as exc:
            status_code = status_for(exc)
            log = logger.error if status_code >= 500 else logger.warning
            log("request.rejected", status=status_code, code=exc.code, error=exc.message)
            return JSONResponse(
                status_code=status_code,
                content={"error": exc.code, "message": exc.message},
            )
        except Exception as exc:
            logger.exception("request.unhandled_error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


def setup_middleware(app: FastAPI) -> None:
    """Register middleware. Starlette runs the last-added one outermost."""
    origins = get_settings().cors_allow_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Browsers refuse credentials with a wildcard origin
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
