"""Map SpaceGate exceptions to HTTP responses with a stable ``code``."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi.responses import JSONResponse

from spacegate.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidCredentials,
    InvariantError,
    InvitationError,
    InvitationNotFound,
    MalformedRequest,
    MembershipRevoked,
    NotFoundError,
    SessionExpired,
    SpaceGateError,
    StoreUnavailable,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request

logger = structlog.get_logger(__name__)

# Checked in order; subclasses before their bases.
_STATUS: list[tuple[type[SpaceGateError], int, str]] = [
    (InvalidCredentials, 401, "invalid_credentials"),
    (SessionExpired, 401, "session_expired"),
    (MembershipRevoked, 401, "membership_revoked"),
    (ForbiddenError, 403, "forbidden"),
    (InvitationNotFound, 404, "not_found"),
    (InvitationError, 410, ""),
    (NotFoundError, 404, "not_found"),
    (ConflictError, 409, "conflict"),
    (InvariantError, 422, "invariant_violation"),
    (ValidationError, 422, "validation_error"),
    (MalformedRequest, 422, "malformed_request"),
    (StoreUnavailable, 503, "store_unavailable"),
]


def error_response(exc: SpaceGateError) -> JSONResponse:
    for exc_type, status_code, code in _STATUS:
        if isinstance(exc, exc_type):
            if isinstance(exc, InvitationError):
                code = exc.reason.value
            body = {"detail": str(exc), "code": code}
            if status_code == 503:
                body["detail"] = "Service temporarily unavailable"
            return JSONResponse(status_code=status_code, content=body)
    return JSONResponse(status_code=500, content={"detail": "Internal error", "code": "error"})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(SpaceGateError)
    async def spacegate_error_handler(request: Request, exc: SpaceGateError) -> JSONResponse:
        response = error_response(exc)
        logger.info(
            "request_failed",
            path=request.url.path,
            status_code=response.status_code,
            error_type=type(exc).__name__,
        )
        return response
