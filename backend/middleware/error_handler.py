"""
Global Error Handlers for ServeSense
Maps exceptions to consistent JSON error bodies.
"""

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from exceptions import ServeSenseException
from config.settings import get_settings

logger = logging.getLogger(__name__)


def setup_error_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers on the FastAPI app.

    Args:
        app: FastAPI application instance
    """
    settings = get_settings()

    @app.exception_handler(ServeSenseException)
    async def servesense_exception_handler(
        request: Request,
        exc: ServeSenseException
    ) -> JSONResponse:
        """Handle ServeSense exceptions"""
        # Client errors are expected traffic; only server-side failures are errors
        log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
        logger.log(
            log_level,
            f"ServeSense error: {exc.code} - {exc.message}",
            extra={
                "code": exc.code,
                "status_code": exc.status_code,
                "path": str(request.url.path),
                "method": request.method,
                "details": exc.details
            }
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={**exc.to_dict(), "path": str(request.url.path)}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request,
        exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle standard HTTP exceptions (unknown routes, bad methods)"""
        logger.warning(
            f"HTTP error: {exc.status_code} - {exc.detail}",
            extra={
                "status_code": exc.status_code,
                "path": str(request.url.path),
                "method": request.method
            }
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "HTTP_ERROR",
                "detail": exc.detail,
                "path": str(request.url.path)
            }
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (missing upload, bad form fields)"""
        formatted_errors = [
            {
                "field": ".".join(str(loc) for loc in error.get("loc", [])),
                "message": error.get("msg", "Validation error"),
                "type": error.get("type", "unknown")
            }
            for error in exc.errors()
        ]

        logger.warning(
            f"Validation error on {request.url.path}",
            extra={
                "path": str(request.url.path),
                "method": request.method,
                "errors": formatted_errors
            }
        )

        return JSONResponse(
            status_code=422,
            content={
                "error": "VALIDATION_ERROR",
                "detail": "Request validation failed",
                "path": str(request.url.path),
                "validation_errors": formatted_errors
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions"""
        logger.error(
            f"Unhandled exception: {type(exc).__name__} - {str(exc)}",
            exc_info=True,
            extra={
                "path": str(request.url.path),
                "method": request.method,
                "exception_type": type(exc).__name__
            }
        )

        # Only show detailed error in development
        detail = str(exc) if settings.DEBUG else "An unexpected error occurred"

        response_content = {
            "error": "INTERNAL_SERVER_ERROR",
            "detail": detail,
            "path": str(request.url.path)
        }
        if settings.DEBUG:
            response_content["traceback"] = traceback.format_exc()

        return JSONResponse(
            status_code=500,
            content=response_content
        )
