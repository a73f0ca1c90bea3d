"""
Domain error taxonomy for the verification workflow.

Every error is an ``HTTPException`` so routers and services can raise them
directly; the handler in ``app.main`` renders them as
``{"error": {"code", "message", "status"}}``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class DomainError(HTTPException):
    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(status_code=self.status_code, detail=self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "status": self.status_code}


class ValidationError(DomainError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class AuthenticationRequired(DomainError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"
    default_message = "Authentication required"


class PermissionDenied(DomainError):
    status_code = 403
    code = "PERMISSION_DENIED"
    default_message = "Coordinator access required"


class NotFound(DomainError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class InvalidStateTransition(DomainError):
    status_code = 409
    code = "INVALID_STATE_TRANSITION"
    default_message = "Invalid status transition"


class BatchInProgress(DomainError):
    status_code = 409
    code = "BATCH_IN_PROGRESS"
    default_message = "Another batch operation is already running for this queue"


class RateLimitExceeded(DomainError):
    """Auto-approval cap reached. The matcher catches this and defers to the manual queue."""
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    default_message = "Auto-approval limit reached"


class DownstreamFailure(DomainError):
    status_code = 502
    code = "DOWNSTREAM_FAILURE"
    default_message = "A downstream service failed; please retry"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "DownstreamFailure":
        if isinstance(exc, DownstreamFailure):
            return exc
        return cls(str(exc) or None)


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})
