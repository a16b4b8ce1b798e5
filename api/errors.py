"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from clients.document_store import StoreUnavailableError
from core.exceptions import (
    ConflictError,
    GatewayError,
    InvalidSignatureError,
    InvalidTransitionError,
    LedgerError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Checked in order; subclasses first
LEDGER_ERROR_MAP: list[tuple[type, int, str]] = [
    (InvalidSignatureError, 401, ErrorCodes.INVALID_SIGNATURE),
    (ValidationError, 400, ErrorCodes.VALIDATION_ERROR),
    (NotFoundError, 404, ErrorCodes.NOT_FOUND),
    (InvalidTransitionError, 409, ErrorCodes.INVALID_STATUS_TRANSITION),
    (ConflictError, 409, ErrorCodes.CONFLICT),
    (GatewayError, 502, ErrorCodes.GATEWAY_ERROR),
]


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _json_error(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, _request_id(request)).model_dump(mode="json"),
    )


def status_for(exc: LedgerError) -> tuple[int, str]:
    """HTTP status and error code for a ledger error."""
    for exc_type, status_code, code in LEDGER_ERROR_MAP:
        if isinstance(exc, exc_type):
            return status_code, code
    return 500, ErrorCodes.INTERNAL_ERROR


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code, code = status_for(exc)
        if status_code >= 500:
            logger.warning("Ledger request failed (%s): %s", code, exc)
        return _json_error(request, status_code, code, str(exc))

    @app.exception_handler(StoreUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
        logger.error("Document store unavailable: %s", exc)
        return _json_error(
            request, 503, ErrorCodes.SERVICE_UNAVAILABLE,
            "Invoice storage is temporarily unavailable",
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _json_error(request, 422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json_error(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
