"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser-based dashboards

Domain error -> HTTP status:
    NotFoundError                               404
    InvalidStateError, ConcurrentModification,
    TooEarlyError                               409
    ForbiddenError                              403
    EvidenceRejectedError                       422
    UnauthorizedError (signatures)              401
    PeerError (rejected by the settlement peer) 502
    any other SettlementError                   400
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from milestone_settlement.domain.exceptions import (
    ConcurrentModificationError,
    EvidenceRejectedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    PeerError,
    SettlementError,
    TooEarlyError,
    UnauthorizedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

# First match wins, so subclasses precede their bases.
ERROR_STATUS: tuple[tuple[type[SettlementError], int], ...] = (
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ConcurrentModificationError, 409),
    (TooEarlyError, 409),
    (ForbiddenError, 403),
    (EvidenceRejectedError, 422),
    (UnauthorizedError, 401),
    (PeerError, 502),
)


def status_for(exc: SettlementError) -> int:
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 400


def error_response(exc: SettlementError) -> JSONResponse:
    content = {"error": exc.code, "message": exc.message}
    if isinstance(exc, EvidenceRejectedError) and exc.evidence_event_id:
        content["evidence_event_id"] = exc.evidence_event_id
    return JSONResponse(status_code=status_for(exc), content=content)


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except SettlementError as exc:
            status = status_for(exc)
            log = logger.error if status >= 500 else logger.warning
            log("domain.error", code=exc.code, error=exc.message, status=status)
            return error_response(exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
