"""CareBase errors and the FastAPI handlers that render them.

Every error response uses one envelope:

    {"error": {"code": "SAVE_FAILED", "message": "...", "details": {...}}}

LoadError, SaveError and FinalizeError are the wizard's persistence
failures.  They are recoverable: whoever catches one keeps its in-memory
record and may retry the same call.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CareBaseException(Exception):
    """Base error; subclasses pick the HTTP status, code and default text."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "INTERNAL_ERROR"
    default_message = "An unexpected error occurred"

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class BusinessLogicError(CareBaseException):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "BUSINESS_LOGIC_ERROR"


class InvalidTransitionError(BusinessLogicError):
    """A wizard action was requested from a state that does not allow it."""
    error_code = "INVALID_TRANSITION"


class ResourceNotFoundError(CareBaseException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier: str):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class TenantContextError(CareBaseException):
    status_code = status.HTTP_403_FORBIDDEN
    error_code = "TENANT_CONTEXT_REQUIRED"
    default_message = "Agency context required"


# ── Wizard persistence failures ─────────────────────────────


class LoadError(CareBaseException):
    """Client profile, draft or staff assignment fetch failed."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "LOAD_FAILED"
    default_message = "Could not load care plan data"


class SaveError(CareBaseException):
    """Autosave or explicit draft save failed."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "SAVE_FAILED"
    default_message = "Failed to save draft. Please try again."


class FinalizeError(CareBaseException):
    """Committing the care plan failed."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "FINALIZE_FAILED"
    default_message = "Failed to finalize care plan. Please try again."


# ── Rendering ───────────────────────────────────────────────


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    body = {"code": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body}, headers=headers)


async def carebase_exception_handler(request: Request, exc: CareBaseException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return error_response(exc.status_code, exc.error_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s -> HTTP %d: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return error_response(
        exc.status_code,
        f"HTTP_{exc.status_code}",
        str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError | ValidationError,
) -> JSONResponse:
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning("%s %s -> %d validation error(s)", request.method, request.url.path, len(errors))
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Validation error",
        {"errors": errors},
    )


async def integrity_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.error("%s %s -> integrity error: %s", request.method, request.url.path, exc.orig)
    reason = str(exc.orig).lower()
    if "unique" in reason:
        code, message = "DUPLICATE_RECORD", "A record with this value already exists"
    elif "foreign key" in reason:
        code, message = "FOREIGN_KEY_VIOLATION", "Referenced record does not exist"
    else:
        code, message = "INTEGRITY_ERROR", "Database constraint violation"
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, code, message)


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error("%s %s -> database unavailable: %s", request.method, request.url.path, exc)
    return error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "DATABASE_UNAVAILABLE",
        "Database temporarily unavailable. Please try again.",
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred. Please try again later.",
    )


def register_exception_handlers(app) -> None:
    app.add_exception_handler(CareBaseException, carebase_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
