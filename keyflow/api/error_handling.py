from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from keyflow.api.schemas import ErrorBody
from keyflow.logging import get_logger
from keyflow.service.errors import ServiceError

logger = get_logger(__name__)

INTERNAL_ERROR_MESSAGE = "internal server error"


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorBody(error=message).model_dump())


def service_error_response(request: Request, exc: ServiceError) -> JSONResponse:
    """Log ``exc`` and render it; 401 and 5xx details stay server-side."""
    log_fn = logger.error if exc.status_code >= 500 else logger.warning
    log_fn(
        "service_error",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error_type=type(exc).__name__,
        message=exc.message,
    )
    return error_response(exc.status_code, exc.public_message)


def register_exception_handlers(app: FastAPI) -> None:
    """Serialize every failure as ``{"error": message}``."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        return service_error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            errors=len(exc.errors()),
        )
        return error_response(400, "invalid request")

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
            )
            return error_response(exc.status_code, INTERNAL_ERROR_MESSAGE)
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return error_response(500, INTERNAL_ERROR_MESSAGE)
