"""
Battle Arena - Error Handler Middleware
Formats game errors and unexpected exceptions into structured JSON responses.
"""
import logging
import traceback
import uuid
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from battle_arena.core.errors import ErrorCode, GameError

logger = logging.getLogger("battle_arena.errors")


HTTP_STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    409: ErrorCode.CONFLICT,
    500: ErrorCode.UNKNOWN,
}


def _error_id() -> str:
    return str(uuid.uuid4())[:8]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def setup_error_handlers(app: FastAPI, debug: bool = False):
    """
    Register exception handlers on the FastAPI application.

    Every error body has the shape
    ``{"error": {code, message, details, recoverable, recovery_hint, ...}}``.
    """

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError):
        """Handle GameError exceptions."""
        error_id = _error_id()
        logger.warning(
            f"[{error_id}] GameError: {exc.code.value} - {exc.message}",
            extra={
                "error_id": error_id,
                "error_code": exc.code.value,
                "path": str(request.url.path),
            },
        )

        response_data = exc.to_dict()
        response_data["error"]["error_id"] = error_id
        response_data["error"]["timestamp"] = _timestamp()
        return JSONResponse(status_code=exc.http_status, content=response_data)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Handle pydantic validation errors from request parsing."""
        errors = []
        for error in exc.errors():
            field = " -> ".join(str(loc) for loc in error.get("loc", []))
            errors.append({
                "field": field,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
            })

        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "code": ErrorCode.VALIDATION_ERROR.value,
                    "message": "Request validation failed",
                    "details": {"errors": errors},
                    "recoverable": True,
                    "recovery_hint": "Check the request data and correct any invalid fields",
                    "error_id": _error_id(),
                    "timestamp": _timestamp(),
                }
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle standard HTTP exceptions (unknown routes, bad methods)."""
        error_code = HTTP_STATUS_CODES.get(exc.status_code, ErrorCode.UNKNOWN)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": error_code.value,
                    "message": str(exc.detail) if exc.detail else "An error occurred",
                    "details": {},
                    "recoverable": exc.status_code < 500,
                    "recovery_hint": None,
                    "error_id": _error_id(),
                    "timestamp": _timestamp(),
                }
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions."""
        error_id = _error_id()
        logger.error(
            f"[{error_id}] Unhandled exception on {request.method} {request.url.path}: "
            f"{type(exc).__name__}: {exc}",
            extra={"error_id": error_id, "path": str(request.url.path), "method": request.method},
            exc_info=True,
        )

        content = {
            "error": {
                "code": ErrorCode.UNKNOWN.value,
                "message": "An unexpected error occurred",
                "details": {},
                "recoverable": False,
                "recovery_hint": "Please try again or contact support",
                "error_id": error_id,
                "timestamp": _timestamp(),
            }
        }
        if debug:
            content["error"]["debug"] = {
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "traceback": traceback.format_exc().split("\n"),
            }
        return JSONResponse(status_code=500, content=content)

    return app
