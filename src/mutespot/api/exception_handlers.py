"""Exception handlers for the FastAPI application.

Converts domain exceptions into HTTP responses. Every handler logs with the request
path in `extra` so JSON logs can be filtered per endpoint.

    ValidationException       422
    EntityNotFoundException   404
    InvalidStateException     409
    DuplicateEntityException  409
    ConfigurationError        503
    ProviderCallError         429 when rate limited (with Retry-After), 502 otherwise
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mutespot.domain.exceptions import (
    ConfigurationError,
    DuplicateEntityException,
    EntityNotFoundException,
    InvalidStateException,
    ProviderCallError,
    ValidationException,
)

logger = logging.getLogger(__name__)


# Pydantic's exc.errors() can carry the raw body as bytes, which JSONResponse can't encode
def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    def _sanitize_value(value: Any) -> Any:
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError:
                return value.decode("latin-1")
        if isinstance(value, dict):
            return {k: _sanitize_value(v) for k, v in value.items()}
        if isinstance(value, list | tuple):
            return [_sanitize_value(item) for item in value]
        if isinstance(value, Exception):
            return str(value)
        return value

    return [_sanitize_value(error) for error in errors]


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message, **extra})


# Hey future me, call this during app setup BEFORE requests arrive (create_app does).
def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for domain and request validation exceptions."""

    @app.exception_handler(ValidationException)
    async def validation_exception_handler(
        request: Request, exc: ValidationException
    ) -> JSONResponse:
        logger.warning(
            "Validation error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, exc.message)

    @app.exception_handler(EntityNotFoundException)
    async def entity_not_found_exception_handler(
        request: Request, exc: EntityNotFoundException
    ) -> JSONResponse:
        logger.info(
            "Entity not found at %s: %s %s",
            request.url.path,
            exc.entity_type,
            exc.entity_id,
            extra={
                "path": request.url.path,
                "entity_type": exc.entity_type,
                "entity_id": exc.entity_id,
            },
        )
        return _error(status.HTTP_404_NOT_FOUND, exc.message)

    @app.exception_handler(InvalidStateException)
    async def invalid_state_exception_handler(
        request: Request, exc: InvalidStateException
    ) -> JSONResponse:
        logger.warning(
            "Invalid state at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return _error(status.HTTP_409_CONFLICT, exc.message)

    @app.exception_handler(DuplicateEntityException)
    async def duplicate_entity_exception_handler(
        request: Request, exc: DuplicateEntityException
    ) -> JSONResponse:
        logger.warning(
            "Duplicate entity at %s: %s %s",
            request.url.path,
            exc.entity_type,
            exc.entity_id,
            extra={"path": request.url.path, "entity_type": exc.entity_type},
        )
        return _error(status.HTTP_409_CONFLICT, exc.message)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        logger.error(
            "Configuration error at %s: %s",
            request.url.path,
            exc.message,
            extra={"path": request.url.path, "error": exc.message},
        )
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc.message)

    # Provider failures outside a batch (token vault, profile read) - inside a batch
    # they are recorded on the items and never reach this handler
    @app.exception_handler(ProviderCallError)
    async def provider_call_error_handler(
        request: Request, exc: ProviderCallError
    ) -> JSONResponse:
        logger.warning(
            "Provider call failed at %s: %s (%s)",
            request.url.path,
            exc.message,
            exc.error_code,
            extra={"path": request.url.path, "error_code": str(exc.error_code)},
        )
        content = {"detail": exc.message, "error_code": str(exc.error_code)}
        if not exc.is_rate_limited:
            return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=content)
        headers = {"Retry-After": str(int(exc.retry_after))} if exc.retry_after else None
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS, content=content, headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        sanitized_errors = _sanitize_validation_errors(list(exc.errors()))
        logger.warning(
            "Request validation error at %s: %s",
            request.url.path,
            sanitized_errors,
            extra={"path": request.url.path, "errors": sanitized_errors},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": sanitized_errors},
        )
