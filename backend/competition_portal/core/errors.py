"""
Domain error taxonomy.

Services raise these; the handlers registered by ``register_exception_handlers``
turn them into JSON responses of the shape::

    {"success": false, "error": "<detail>", "message": "<summary>"}
"""

import logging
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PortalError(Exception):
    """Base class for errors that map directly to an HTTP response."""

    status_code = status.HTTP_400_BAD_REQUEST
    summary = "Request failed"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.summary
        super().__init__(self.detail)

    def to_payload(self) -> dict:
        return {"success": False, "error": self.detail, "message": self.summary}


class ValidationError(PortalError):
    summary = "Validation failed"


class UnauthorizedError(PortalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    summary = "Unauthorized"


class NotFoundError(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    summary = "Not found"


class InvalidTokenError(PortalError):
    """Token value does not exist. Reported as 400, not 404, by token endpoints."""
    summary = "Invalid token"


class ExpiredError(PortalError):
    summary = "Token expired"


class AlreadyUsedError(PortalError):
    summary = "Token already used"


class AlreadyVerifiedError(PortalError):
    summary = "Already verified"


class PermissionDeniedError(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    summary = "Access denied"


class SubmissionsClosedError(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    summary = "Submissions closed"


class SubmissionLimitError(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    summary = "Submission limit reached"


class ConflictError(PortalError):
    status_code = status.HTTP_409_CONFLICT
    summary = "Conflict"


class InternalError(PortalError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    summary = "Internal server error"


class RateLimitError(PortalError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    summary = "Rate limit exceeded"

    def __init__(self, detail: str | None = None, wait_time: int = 0):
        super().__init__(detail)
        self.wait_time = wait_time

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["waitTime"] = self.wait_time
        return payload


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    logger.info(
        f"{request.method} {request.url.path} -> {exc.status_code} {type(exc).__name__}: {exc.detail}"
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Full traceback stays server-side; clients get a generic body
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "An unexpected error occurred. Please try again later.",
            "message": "Internal server error",
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
