"""API error handling and response helpers."""

from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from kiosk.services.kiosk_service import ContributionValidationError
from kiosk.services.state import InvalidStateUpdate


class AppError(Exception):
    """Base application error."""

    def __init__(self, message: str, code: str, http_status: int = 400):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class InvalidContributionError(AppError):
    """Contribution input rejected before any state changed."""

    def __init__(self, message: str = "Invalid contribution"):
        super().__init__(message, "invalid_contribution", status.HTTP_422_UNPROCESSABLE_ENTITY)


class InvalidConfigError(AppError):
    """Configuration update rejected as a whole."""

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message, "invalid_config", status.HTTP_422_UNPROCESSABLE_ENTITY)


def error_response(error: AppError) -> Dict[str, Any]:
    """Create a standardized error response."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
        }
    }


def register_error_handlers(app: FastAPI) -> None:
    """Map service-level validation errors to HTTP responses."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=error_response(exc))

    @app.exception_handler(ContributionValidationError)
    async def handle_contribution_error(
        request: Request, exc: ContributionValidationError
    ) -> JSONResponse:
        error = InvalidContributionError(str(exc))
        return JSONResponse(status_code=error.http_status, content=error_response(error))

    @app.exception_handler(InvalidStateUpdate)
    async def handle_state_error(request: Request, exc: InvalidStateUpdate) -> JSONResponse:
        error = InvalidConfigError(str(exc))
        return JSONResponse(status_code=error.http_status, content=error_response(error))
