"""Error taxonomy and the handlers that render it.

Services raise the typed errors below; the handlers turn every failure
into the same envelope:

    {"error": {"code": "NOT_FOUND", "message": "...", "details": {...}}}
"""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from equiploan.messages import message

logger = logging.getLogger(__name__)


class EquipLoanError(Exception):
    """Base exception for application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        headers: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.headers = headers
        super().__init__(self.message)


class NotFoundError(EquipLoanError):
    def __init__(self, message: str):
        super().__init__(message, status.HTTP_404_NOT_FOUND, "NOT_FOUND")


class ConflictError(EquipLoanError):
    """Uniqueness or exclusivity would be violated (duplicate email, instance on loan, ...)."""

    def __init__(self, message: str):
        super().__init__(message, status.HTTP_409_CONFLICT, "CONFLICT")


class BadRequestError(EquipLoanError):
    def __init__(self, message: str):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, "BAD_REQUEST")


class UnauthorizedError(EquipLoanError):
    def __init__(self, message: str):
        super().__init__(
            message,
            status.HTTP_401_UNAUTHORIZED,
            "UNAUTHORIZED",
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(EquipLoanError):
    def __init__(self, message: str, error_code: str = "FORBIDDEN"):
        super().__init__(message, status.HTTP_403_FORBIDDEN, error_code)


@asynccontextmanager
async def persistence_errors(operation: str):
    """Re-raise unexpected database failures as a generic BadRequestError.

    Usage:
        async with persistence_errors("create loan"):
            await db.flush()
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Persistence failure during %s: %s", operation, exc, exc_info=True)
        raise BadRequestError(message("persistence_failed")) from exc


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
    headers: dict | None = None,
) -> JSONResponse:
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def equiploan_exception_handler(
    request: Request,
    exc: EquipLoanError,
) -> JSONResponse:
    logger.warning(
        f"{exc.error_code}: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        headers=exc.headers,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={"path": request.url.path, "method": request.method},
        )

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={"path": request.url.path, "method": request.method},
    )

    errors = []
    for error in exc.errors():
        field = " -> ".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


async def operational_exception_handler(
    request: Request,
    exc: OperationalError,
) -> JSONResponse:
    """Database unreachable or misbehaving (connection issues, locks, ...)."""
    logger.error(
        f"Database operational error on {request.url.path}: {exc}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.url.path}: {exc}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )

    # Internal details stay in the logs
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with the FastAPI app."""
    app.add_exception_handler(EquipLoanError, equiploan_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
