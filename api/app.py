"""FastAPI application factory."""

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.invoices import create_invoices_router
from api.middleware import RequestIDMiddleware, UserContextMiddleware


def create_app(services: dict) -> FastAPI:
    """
    Build the ledger HTTP app around already-wired services.

    Args:
        services: Dict with "invoice", "payment", "gateway", "sweeper" and "audit"
    """
    app = FastAPI(title="Invoice Ledger")

    # Last added runs first: request ID is assigned before the user check
    app.add_middleware(UserContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(create_invoices_router(services), prefix="/api")

    return app
