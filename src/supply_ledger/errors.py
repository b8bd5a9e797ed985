"""Error taxonomy and its translation to HTTP responses."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import Settings

logger = logging.getLogger(__name__)


class SupplyLedgerError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def extra(self) -> Dict[str, Any]:
        return {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": "error",
            "message": self.message,
            "code": self.code,
        }
        payload.update(self.extra())
        return payload


class ValidationError(SupplyLedgerError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"

    def __init__(
        self,
        errors: Optional[List[Dict[str, str]]] = None,
        message: Optional[str] = None,
    ) -> None:
        self.errors = list(errors or [])
        super().__init__(message)

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}], message)

    def extra(self) -> Dict[str, Any]:
        return {"errors": self.errors}


class InsufficientStockError(SupplyLedgerError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INSUFFICIENT_STOCK"

    def __init__(self, available: int, requested: int) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock: requested {requested}, available {available}"
        )

    def extra(self) -> Dict[str, Any]:
        return {"available": self.available, "requested": self.requested}


class AuthenticationError(SupplyLedgerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "AUTHENTICATION_REQUIRED"
    default_message = "Authentication required"


class AuthenticationRequired(AuthenticationError):
    pass


class Unauthenticated(AuthenticationError):
    pass


class MissingToken(AuthenticationError):
    code = "MISSING_TOKEN"
    default_message = "No token provided"


class MalformedToken(AuthenticationError):
    code = "MALFORMED_TOKEN"
    default_message = "Malformed token"


class ExpiredToken(AuthenticationError):
    code = "TOKEN_EXPIRED"
    default_message = "Token has expired"


class InvalidToken(AuthenticationError):
    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class InvalidCredentials(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid username or password"


class InvalidRefreshToken(AuthenticationError):
    """Refresh failures; ``code`` tells expired and unusable tokens apart."""

    MISSING = "MISSING_REFRESH_TOKEN"
    EXPIRED = "REFRESH_TOKEN_EXPIRED"
    INVALID = "INVALID_REFRESH_TOKEN"

    code = INVALID
    default_message = "Invalid refresh token"


class AuthorizationError(SupplyLedgerError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    default_message = "You do not have permission to access this resource"


class Forbidden(AuthorizationError):
    pass


class NotFoundError(SupplyLedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ItemNotFound(NotFoundError):
    code = "ITEM_NOT_FOUND"
    default_message = "Inventory item not found"


class UserNotFound(NotFoundError):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


class ActorNotFound(NotFoundError):
    code = "ACTOR_NOT_FOUND"
    default_message = "Authenticated user no longer exists"


class ConflictError(SupplyLedgerError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    default_message = "Duplicate value for a unique field"


class LocationCodeGenerationError(SupplyLedgerError):
    code = "LOCATION_CODE_EXHAUSTED"
    default_message = "Could not generate a unique location code"


class InternalError(SupplyLedgerError):
    pass


def _field_name(location: tuple) -> str:
    parts = [str(part) for part in location if part not in ("body", "query", "path")]
    return ".".join(parts) or "request"


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    """Render every failure as ``{"status": "error", ...}``."""

    @app.exception_handler(SupplyLedgerError)
    async def handle_service_error(request: Request, exc: SupplyLedgerError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {"field": _field_name(tuple(error.get("loc", ()))), "message": error.get("msg", "")}
            for error in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=ValidationError(errors).to_payload(),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = InternalError.default_message
        if settings.environment != "production":
            message = f"{type(exc).__name__}: {exc}"
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=InternalError(message).to_payload(),
        )


__all__ = [
    "ActorNotFound",
    "AuthenticationError",
    "AuthenticationRequired",
    "AuthorizationError",
    "ConflictError",
    "ExpiredToken",
    "Forbidden",
    "InsufficientStockError",
    "InternalError",
    "InvalidCredentials",
    "InvalidRefreshToken",
    "InvalidToken",
    "ItemNotFound",
    "LocationCodeGenerationError",
    "MalformedToken",
    "MissingToken",
    "NotFoundError",
    "SupplyLedgerError",
    "Unauthenticated",
    "UserNotFound",
    "ValidationError",
    "register_exception_handlers",
]
