"""Response envelope shared by every ledger route and error handler.

Success: {"success": true, "data": ..., "error": null, "meta": {...}}
Failure: {"success": false, "data": null, "error": {"code", "message"}, "meta": {...}}
"""

from datetime import datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from utils.timezone import now_utc


class APIError(BaseModel):
    code: str = Field(..., description="One of ErrorCodes; clients branch on this")
    message: str = Field(..., description="Human-readable detail")


class APIMeta(BaseModel):
    timestamp: datetime = Field(..., description="When the response was built (UTC)")
    request_id: str = Field(..., description="X-Request-ID of the call, for log correlation")

    @classmethod
    def stamp(cls, request_id: str | None = None) -> "APIMeta":
        """Meta for a response built now; a fresh request_id when none was assigned."""
        return cls(timestamp=now_utc(), request_id=request_id or str(uuid4()))


class APIResponse(BaseModel):
    success: bool
    data: Any | None = None
    error: APIError | None = None
    meta: APIMeta

    @model_validator(mode="after")
    def error_iff_failed(self) -> "APIResponse":
        if self.success == (self.error is not None):
            raise ValueError("a failed response carries an error and a successful one does not")
        return self


def success_response(data: Any, request_id: str | None = None) -> APIResponse:
    return APIResponse(success=True, data=data, meta=APIMeta.stamp(request_id))


def error_response(code: str, message: str, request_id: str | None = None) -> APIResponse:
    return APIResponse(
        success=False,
        error=APIError(code=code, message=message),
        meta=APIMeta.stamp(request_id),
    )


class ErrorCodes:
    """Machine-readable error codes returned in APIError.code."""

    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Ledger state
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    CONFLICT = "CONFLICT"

    # Card gateway
    GATEWAY_ERROR = "GATEWAY_ERROR"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"

    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
