"""Exception hierarchy and FastAPI exception handlers."""

from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from canvas_backend.core.logging import get_logger, request_context

logger = get_logger(__name__)


class CanvasError(Exception):
    """Base exception for the canvas backend.

    ``error_kind`` is the value reported in a stream error frame when the
    exception ends a tool invocation after streaming has started.
    """

    error_kind = "execution"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        code: str = "E5000",
        details: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(CanvasError):
    """Malformed request or tool arguments."""

    error_kind = "validation"

    def __init__(self, message: str = "Invalid input", details: Optional[dict] = None):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST, code="E4000", details=details)


class AuthenticationError(CanvasError):
    """Authentication failed."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED, code="E2000")


class AuthorizationError(CanvasError):
    """Authorization failed."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN, code="E2001")


class NotFoundError(CanvasError):
    """Resource not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND, code="E4040")


class ExecutionError(CanvasError):
    """A tool or persistence step failed."""

    def __init__(self, message: str = "Execution failed", details: Optional[dict] = None):
        super().__init__(message, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, code="E5001", details=details)


class InvalidTransition(CanvasError):
    """An invocation was moved out of a terminal state."""

    def __init__(self, message: str):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT, code="E4090")


def _request_id() -> Optional[str]:
    ctx = request_context.get()
    return ctx.get("request_id") if ctx else None


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with FastAPI app."""

    @app.exception_handler(CanvasError)
    async def canvas_exception_handler(request: Request, exc: CanvasError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            f"Request failed: {exc.message}",
            data={"status_code": exc.status_code, "code": exc.code, "details": exc.details},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.message,
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "request_id": _request_id(),
                },
                **exc.details,
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed bodies are a 400, rejected before any stream opens."""
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        logger.warning("Validation error", data={"errors": errors})
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Validation error",
                "errors": errors,
                "error": {
                    "code": "E4000",
                    "message": "Validation error",
                    "request_id": _request_id(),
                },
            },
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error": {
                    "code": f"E{exc.status_code}0",
                    "message": exc.detail,
                    "request_id": _request_id(),
                },
            },
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            f"Unhandled exception: {type(exc).__name__}: {exc}",
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "error": {
                    "code": "E5000",
                    "message": "Internal server error",
                    "request_id": _request_id(),
                },
            },
        )
