"""Service error taxonomy and exception handlers for consistent error responses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from task_engagement_service.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI, Request
    from starlette.types import ExceptionHandler


class ServiceError(Exception):
    """
    Base error surfaced to the caller as a JSON error body.

    Attributes:
        error: Machine-readable error code
        message: Human-readable description
        status_code: HTTP status used when rendered by the API
        details: Extra structured context
    """

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status_code = status_code
        self.details: dict[str, Any] = details if details is not None else {}


class ValidationError(ServiceError):
    """Bad input shape or bounds."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__("VALIDATION_ERROR", message, 400, details)


class PhotoRequiredError(ServiceError):
    """A checklist item that requires a photo was completed without one."""

    def __init__(self, item_id: str) -> None:
        super().__init__(
            "PHOTO_REQUIRED",
            "This checklist item requires a photo",
            400,
            {"item_id": item_id},
        )


class AuthorizationError(ServiceError):
    """The actor is not the permitted party for the operation."""

    def __init__(self, message: str) -> None:
        super().__init__("FORBIDDEN", message, 403, {})


class NotFoundError(ServiceError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity.upper()}_NOT_FOUND",
            f"{entity.capitalize()} not found",
            404,
            {f"{entity}_id": entity_id},
        )


class DuplicateBidError(ServiceError):
    """The bidder already has a bid on this task."""

    def __init__(self, task_id: str, bidder_id: str) -> None:
        super().__init__(
            "BID_ALREADY_EXISTS",
            "You already have a bid on this task",
            409,
            {"task_id": task_id, "bidder_id": bidder_id},
        )


class ItemHasCompletionError(ServiceError):
    """A checklist item cannot be deleted once a completion exists."""

    def __init__(self, item_id: str) -> None:
        super().__init__(
            "ITEM_HAS_COMPLETION",
            "Checklist item already has a completion and cannot be deleted",
            409,
            {"item_id": item_id},
        )


class InvalidStateTransitionError(ServiceError):
    """The entity is not in the state the operation requires (including lost races)."""

    def __init__(
        self,
        entity: str,
        current: str | None,
        expected: str | tuple[str, ...],
        action: str,
    ) -> None:
        expected_text = expected if isinstance(expected, str) else " or ".join(expected)
        super().__init__(
            "INVALID_STATE_TRANSITION",
            f"Cannot {action} {entity} in '{current}' status, must be '{expected_text}'",
            409,
            {"entity": entity, "current_status": current, "action": action},
        )


class StorageError(ServiceError):
    """The persistence layer failed; no partial state was written."""

    def __init__(self, message: str = "Storage is temporarily unavailable") -> None:
        super().__init__("STORAGE_UNAVAILABLE", message, 503, {})


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Handle ServiceError exceptions."""
    logger = get_logger(__name__)
    logger.warning(
        "Service error",
        extra={
            "error_code": exc.error,
            "status_code": exc.status_code,
            "path": str(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message, "details": exc.details},
    )


async def unhandled_exception_handler(request: Request, _exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger = get_logger(__name__)
    logger.exception("Unhandled exception", extra={"path": str(request.url.path)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "details": {},
        },
    )


async def http_exception_handler(
    _request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle Starlette HTTP exceptions (e.g., 404/405 from the router)."""
    if exc.status_code == 405:
        return JSONResponse(
            status_code=405,
            content={
                "error": "METHOD_NOT_ALLOWED",
                "message": "Method not allowed",
                "details": {},
            },
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": str(exc.detail),
            "details": {},
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the app."""
    app.add_exception_handler(ServiceError, cast("ExceptionHandler", service_error_handler))
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.add_exception_handler(
        StarletteHTTPException,
        cast("ExceptionHandler", http_exception_handler),
    )
