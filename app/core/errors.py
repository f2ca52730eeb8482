"""
Error taxonomy and FastAPI exception handlers.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class ErrorType(str, Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    STORE = "store"


class TrackerError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = ErrorType.STORE

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "type": self.error_type.value}
        if self.details:
            body["details"] = self.details
        return body


class AuthenticationError(TrackerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = ErrorType.AUTHENTICATION


class AuthorizationError(TrackerError):
    status_code = status.HTTP_403_FORBIDDEN
    error_type = ErrorType.AUTHORIZATION


class ValidationError(TrackerError):
    status_code = status.HTTP_400_BAD_REQUEST
    error_type = ErrorType.VALIDATION

    @classmethod
    def for_fields(cls, message: str, fields: List[str]) -> "ValidationError":
        return cls(f"{message}: {', '.join(fields)}", {"fields": fields})


class ConflictError(TrackerError):
    status_code = status.HTTP_409_CONFLICT
    error_type = ErrorType.CONFLICT


class NotFoundError(TrackerError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = ErrorType.NOT_FOUND


class TransientStoreError(TrackerError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = ErrorType.STORE


def _field_name(loc) -> str:
    # loc looks like ("body", "experience_score") or ("query", "vendor_id")
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "body"


async def tracker_error_handler(request: Request, exc: TrackerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = sorted({_field_name(err.get("loc", ())) for err in exc.errors()})
    error = ValidationError.for_fields("Invalid or missing fields", fields)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"Database error on {request.method} {request.url.path}")
    details = {"reason": str(exc)} if settings.DEBUG else None
    error = TransientStoreError("Database temporarily unavailable", details)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TrackerError, tracker_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
