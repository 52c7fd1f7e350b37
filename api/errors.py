"""Exception handlers for the FastAPI application."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse

from orchestrator.exceptions import OrchestratorError, SessionNotFoundError, StaleStateError

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Custom application exception with message, status code, and optional data."""

    def __init__(self, message: str, status_code: int = 400, data: dict = None):
        self.message = message
        self.status_code = status_code
        self.data = data or {}
        super().__init__(self.message)


def create_error_response(status_code: int, message: str, data: dict | None = None) -> JSONResponse:
    """Create a standardized error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": message,
            "data": data
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with standardized response format."""
    return create_error_response(exc.status_code, str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle validation errors with standardized format."""
    error_details = []

    for error in exc.errors():
        field = error["loc"][-1] if error.get("loc") else "unknown"
        message = error.get("msg", "")

        # Remove "Value error, " prefix if present
        if message.startswith("Value error, "):
            message = message[13:]

        error_details.append({"field": field, "message": message})

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        data={"validation_errors": error_details}
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application-specific exceptions."""
    return create_error_response(exc.status_code, exc.message, exc.data)


async def orchestrator_exception_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
    """Map orchestrator errors onto HTTP status codes."""
    if isinstance(exc, SessionNotFoundError):
        return create_error_response(status.HTTP_404_NOT_FOUND, exc.message, exc.data)
    if isinstance(exc, StaleStateError):
        return create_error_response(status.HTTP_409_CONFLICT, exc.message, exc.data)
    logger.error("Orchestrator error on %s: %s", request.url.path, exc.message)
    return create_error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc.message, exc.data)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other unhandled exceptions with error logging."""
    logger.exception(
        "Unhandled exception occurred",
        extra={"path": request.url.path, "method": request.method}
    )

    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="Internal server error"
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(OrchestratorError, orchestrator_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
