"""Request-scoped middleware for API requests."""

from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.user_context import GATEWAY_USER_ID, set_current_user_id, clear_current_user_id

USER_ID_HEADER = "X-User-Id"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class UserContextMiddleware(BaseHTTPMiddleware):
    """Sets the acting user for ledger mutations.

    Authentication happens upstream; the portal's auth layer forwards the
    authenticated user in the X-User-Id header. Gateway webhooks carry no
    user and are attributed to the gateway system user (their signature is
    checked by the webhook route). Public paths need no user at all.
    """

    PUBLIC_PATHS = [
        "/health",
        "/docs",
        "/openapi.json",
    ]

    GATEWAY_PATHS = [
        "/api/webhooks/",
    ]

    def _matches(self, path: str, prefixes: list[str]) -> bool:
        return any(path == prefix or path.startswith(prefix) for prefix in prefixes)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if self._matches(path, self.PUBLIC_PATHS):
            return await call_next(request)

        if self._matches(path, self.GATEWAY_PATHS):
            user_id = GATEWAY_USER_ID
        else:
            user_id = request.headers.get(USER_ID_HEADER, "").strip()
            if not user_id:
                return JSONResponse(
                    status_code=401,
                    content=error_response(
                        ErrorCodes.NOT_AUTHENTICATED,
                        "Authentication required",
                        getattr(request.state, "request_id", None),
                    ).model_dump(mode="json"),
                )

        request.state.user_id = user_id
        set_current_user_id(user_id)
        try:
            return await call_next(request)
        finally:
            clear_current_user_id()
