"""
Domain errors of the intervention workflow and their HTTP rendering.

Every error carries a stable machine code and an HTTP status; the handlers
registered by `register_exception_handlers` turn them into the response
envelope `{"success": false, "error": {"code", "message", ...}}`.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.middleware.correlation import get_correlation_id

logger = logging.getLogger(__name__)


class InterventionError(Exception):
    """Base class for all errors raised by the workflow services."""

    code: str = "internal_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class UnauthenticatedError(InterventionError):
    """No valid credentials were presented."""

    code = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(InterventionError):
    """The caller's role or membership does not allow the operation."""

    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidTransitionError(InterventionError):
    """The action is not allowed from the current status."""

    code = "invalid_transition"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        current_status: Any,
        action: Any,
        message: Optional[str] = None,
    ):
        self.current_status = getattr(current_status, "value", current_status)
        self.action = getattr(action, "value", action)
        super().__init__(
            message
            or f"Action '{self.action}' is not allowed from status '{self.current_status}'",
            {"current_status": self.current_status, "action": self.action},
        )


class AlreadyProcessedError(InterventionError):
    """The item was already answered; the earlier answer stands."""

    code = "already_processed"
    status_code = status.HTTP_410_GONE


class ValidationFailedError(InterventionError):
    """The request payload failed validation."""

    code = "validation_failed"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(InterventionError):
    """The referenced entity does not exist."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message, {"entity": entity})


class DependencyFailureError(InterventionError):
    """Storage, database or another collaborator failed."""

    code = "dependency_failure"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error},
        headers=headers,
    )


_HTTP_CODES = {
    400: "validation_failed",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    410: "already_processed",
    429: "rate_limited",
}


async def intervention_error_handler(request: Request, exc: InterventionError):
    if exc.status_code >= 500:
        logger.error(
            f"Dependency failure on {request.method} {request.url.path}: {exc.message} "
            f"| Correlation ID: {get_correlation_id() or '-'}"
        )
    else:
        logger.info(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message}"
        )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthenticatedError) else None
    return error_response(exc.status_code, exc.code, exc.message, exc.details, headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "validation_failed",
        "Request validation failed",
        {"errors": errors},
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    code = _HTTP_CODES.get(exc.status_code, "http_error")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, code, message, headers=getattr(exc, "headers", None))


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}",
        exc_info=exc,
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "Internal server error",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope handlers to the application."""
    app.add_exception_handler(InterventionError, intervention_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
