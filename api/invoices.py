"""Invoice ledger routes: /api/invoices, /api/clients/{id}/balance, /api/webhooks/square."""

import logging

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from api.base import success_response
from clients.square_client import SIGNATURE_HEADER
from core.exceptions import NotFoundError, ValidationError
from core.models import InvoiceCreate, InvoiceUpdate, RecordPaymentData

logger = logging.getLogger(__name__)


class RefundRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class PaymentLinkRequest(BaseModel):
    customer_email: str | None = Field(None, max_length=320)


def create_invoices_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    payment_svc = services["payment"]
    gateway_svc = services["gateway"]
    sweeper = services["sweeper"]
    audit = services["audit"]

    def _ok(request: Request, data):
        return success_response(data, getattr(request.state, "request_id", None)).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Collection routes (registered before /invoices/{invoice_id})
    # -------------------------------------------------------------------------

    @router.post("/invoices", status_code=201)
    async def create_invoice(request: Request, body: InvoiceCreate, publish: bool = Query(False)):
        invoice = invoice_svc.create(body, publish=publish)
        return _ok(request, invoice.model_dump(mode="json"))

    @router.get("/invoices")
    async def list_invoices(
        request: Request,
        client_id: str | None = Query(None),
        project_id: str | None = Query(None),
        include_drafts: bool = Query(True),
    ):
        if client_id:
            invoices = invoice_svc.list_for_client(client_id, include_drafts=include_drafts)
        elif project_id:
            invoices = invoice_svc.list_for_project(project_id)
        else:
            raise ValidationError("Either client_id or project_id is required")
        return _ok(request, [i.model_dump(mode="json") for i in invoices])

    @router.get("/invoices/outstanding")
    async def list_outstanding(request: Request):
        invoices = invoice_svc.list_outstanding()
        return _ok(request, [i.model_dump(mode="json") for i in invoices])

    @router.get("/invoices/stats")
    async def invoice_stats(request: Request, client_id: str | None = Query(None)):
        return _ok(request, invoice_svc.stats(client_id).model_dump(mode="json"))

    @router.post("/invoices/sweep")
    async def run_sweep(request: Request):
        report = sweeper.tick()
        return _ok(request, {
            "released": report.released,
            "overdue": report.overdue,
            "skipped": report.skipped,
        })

    @router.get("/clients/{client_id}/balance")
    async def client_balance(request: Request, client_id: str):
        return _ok(request, {
            "client_id": client_id,
            "outstanding_balance_cents": invoice_svc.client_outstanding_balance(client_id),
        })

    # -------------------------------------------------------------------------
    # Single invoice
    # -------------------------------------------------------------------------

    @router.get("/invoices/{invoice_id}")
    async def get_invoice(request: Request, invoice_id: str):
        invoice = invoice_svc.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return _ok(request, invoice.model_dump(mode="json"))

    @router.patch("/invoices/{invoice_id}")
    async def update_invoice(request: Request, invoice_id: str, body: InvoiceUpdate):
        invoice = invoice_svc.update_draft(invoice_id, body)
        return _ok(request, invoice.model_dump(mode="json"))

    @router.delete("/invoices/{invoice_id}")
    async def delete_invoice(request: Request, invoice_id: str):
        invoice_svc.delete(invoice_id)
        return _ok(request, {"deleted": True})

    @router.post("/invoices/{invoice_id}/publish")
    async def publish_invoice(request: Request, invoice_id: str):
        invoice = invoice_svc.publish(invoice_id)
        return _ok(request, invoice.model_dump(mode="json"))

    @router.post("/invoices/{invoice_id}/cancel")
    async def cancel_invoice(request: Request, invoice_id: str):
        invoice = invoice_svc.cancel(invoice_id)
        return _ok(request, invoice.model_dump(mode="json"))

    @router.post("/invoices/{invoice_id}/refund")
    async def refund_invoice(request: Request, invoice_id: str, body: RefundRequest):
        invoice = invoice_svc.refund(invoice_id, reason=body.reason)
        return _ok(request, invoice.model_dump(mode="json"))

    @router.post("/invoices/{invoice_id}/payments")
    async def record_payment(request: Request, invoice_id: str, body: RecordPaymentData):
        invoice = payment_svc.record_payment(invoice_id, body)
        return _ok(request, invoice.model_dump(mode="json"))

    @router.post("/invoices/{invoice_id}/payment-link")
    async def create_payment_link(request: Request, invoice_id: str, body: PaymentLinkRequest):
        invoice = gateway_svc.create_payment_link(invoice_id, customer_email=body.customer_email)
        return _ok(request, {
            "invoice_id": invoice.id,
            "payment_url": invoice.payment_url,
            "payment_link_id": invoice.payment_link_id,
        })

    @router.post("/invoices/{invoice_id}/reminders")
    async def record_reminder(request: Request, invoice_id: str):
        invoice = invoice_svc.record_reminder(invoice_id)
        return _ok(request, {
            "invoice_id": invoice.id,
            "reminders_sent": invoice.reminders_sent,
            "last_reminder_at": invoice.last_reminder_at.isoformat(),
        })

    @router.get("/invoices/{invoice_id}/history")
    async def invoice_history(request: Request, invoice_id: str):
        return _ok(request, audit.get_entity_history("invoice", invoice_id))

    # -------------------------------------------------------------------------
    # Gateway webhooks
    # -------------------------------------------------------------------------

    @router.post("/webhooks/square")
    async def square_webhook(request: Request):
        body = (await request.body()).decode("utf-8")
        notification = gateway_svc.parse_webhook(body, request.headers.get(SIGNATURE_HEADER, ""))
        if notification is None:
            return _ok(request, {"processed": False})

        invoice = gateway_svc.handle_payment_completed(notification)
        logger.info(
            "Webhook transaction %s applied to invoice %s (%s)",
            notification.transaction_id, invoice.invoice_number, invoice.status.value,
        )
        return _ok(request, {
            "processed": True,
            "invoice_id": invoice.id,
            "status": invoice.status.value,
        })

    return router
