"""
Error taxonomy for the authorization core and its HTTP rendering.

The core raises these plain exceptions (no FastAPI dependency); the app registers
`register_exception_handlers` so each one becomes a `{"error": ...}` envelope with
its own status code.
"""

from __future__ import annotations

import logging
from enum import Enum

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DenialReason(str, Enum):
    """Category carried by every denial. Callers branch on these values."""

    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_SCOPED = "not_scoped"
    SELF_MODIFICATION = "self_modification"
    TARGET_PROTECTED = "target_protected"

    @property
    def message(self) -> str:
        return _DENIAL_MESSAGES[self]


_DENIAL_MESSAGES = {
    DenialReason.INSUFFICIENT_ROLE: "Insufficient role for this action",
    DenialReason.NOT_SCOPED: "Not scoped to this resource",
    DenialReason.SELF_MODIFICATION: "You cannot modify your own entry",
    DenialReason.TARGET_PROTECTED: "Target role is protected",
}


class ScopeguardError(Exception):
    """Base class. `status_code` is the HTTP status used by the exception handler."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, object]:
        return {"error": self.message}


class Unauthenticated(ScopeguardError):
    """Missing, invalid or expired bearer token. Never retried."""

    status_code = status.HTTP_401_UNAUTHORIZED


class AccessDenied(ScopeguardError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, reason: DenialReason, message: str | None = None) -> None:
        super().__init__(message or reason.message)
        self.reason = reason

    def to_payload(self) -> dict[str, object]:
        return {"error": self.message, "reason": self.reason.value}


class ValidationError(ScopeguardError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFound(ScopeguardError):
    """Also used for tenant mismatch so cross-tenant existence never leaks."""

    status_code = status.HTTP_404_NOT_FOUND


class Conflict(ScopeguardError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        if self.current_status is not None:
            payload["status"] = self.current_status
        return payload


class Internal(ScopeguardError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ScopeguardError)
    async def _handle_scopeguard_error(request: Request, exc: ScopeguardError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s path=%s method=%s: %s", type(exc).__name__, request.url.path, request.method, exc)
        else:
            logger.info("%s path=%s method=%s: %s", type(exc).__name__, request.url.path, request.method, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info("Request validation failed path=%s errors=%s", request.url.path, exc.errors())
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        detail = first.get("msg", "Invalid request")
        message = f"{location}: {detail}" if location else detail
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})

    @app.exception_handler(Exception)
    async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error path=%s method=%s", request.url.path, request.method, exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )
