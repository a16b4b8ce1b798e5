"""
Reconciliation between the ledger and the card gateway.

Outbound: hosted payment links for an invoice's amount due.
Inbound: completed-payment notifications, which are delivered at least once
and are recorded through PaymentService with the gateway transaction id as
the idempotency key.
"""

import json
import logging

from pydantic import ValidationError as PydanticValidationError

from clients.square_client import SquareClientError
from core.exceptions import GatewayError, InvalidSignatureError, InvalidTransitionError, ValidationError
from core.gateway import PaymentGateway
from core.models import Invoice, InvoiceStatus, PaymentCompleted, PaymentMethod, RecordPaymentData
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from core.state_machine import PAYABLE_STATUSES
from utils.user_context import GATEWAY_USER_ID, user_context

logger = logging.getLogger(__name__)

# Webhook event types that can carry a completed payment
PAYMENT_EVENT_TYPES = {"payment.updated", "payment.created", "invoice.payment_made"}


class GatewayService:
    """Hosted payment links and gateway payment notifications."""

    def __init__(
        self,
        gateway: PaymentGateway,
        invoices: InvoiceService,
        payments: PaymentService,
        notification_url: str,
    ):
        self.gateway = gateway
        self.invoices = invoices
        self.payments = payments
        self.notification_url = notification_url

    def create_payment_link(self, invoice_id: str, customer_email: str | None = None) -> Invoice:
        """
        Create a hosted payment page for the invoice's amount due.

        Args:
            invoice_id: Invoice to collect on
            customer_email: Pre-fills the payment page; defaults to the invoice's

        Returns:
            Invoice with payment_url and payment_link_id set

        Raises:
            NotFoundError: If the invoice doesn't exist
            InvalidTransitionError: If the invoice isn't payable
            GatewayError: If the gateway call fails. Status is left untouched.
        """
        invoice = self.invoices.get(invoice_id)
        if invoice.status not in PAYABLE_STATUSES or invoice.amount_due_cents <= 0:
            raise InvalidTransitionError(
                invoice.status, InvoiceStatus.PAID,
                "payment links are only created for invoices with an amount due",
            )

        try:
            link = self.gateway.create_payment_link(
                invoice_id=invoice.id,
                amount_cents=invoice.amount_due_cents,
                customer_email=customer_email or invoice.customer_email,
                title=invoice.title,
                invoice_number=invoice.invoice_number,
            )
        except SquareClientError as e:
            logger.warning("Payment link for invoice %s failed: %s", invoice.invoice_number, e)
            raise GatewayError(f"Could not create payment link: {e}") from e

        return self.invoices.set_payment_link(invoice.id, link.link_id, link.url)

    def handle_payment_completed(self, notification: PaymentCompleted) -> Invoice:
        """
        Apply a completed gateway payment.

        Replays of the same transaction_id return the invoice unchanged.
        """
        data = RecordPaymentData(
            amount_cents=notification.amount_cents,
            method=notification.method,
            transaction_id=notification.transaction_id,
            note="Recorded from gateway notification",
        )
        with user_context(GATEWAY_USER_ID):
            return self.payments.record_payment(
                notification.invoice_id, data, recorded_by=GATEWAY_USER_ID
            )

    def parse_webhook(self, body: str, signature: str) -> PaymentCompleted | None:
        """
        Verify and translate a raw webhook delivery.

        Returns:
            PaymentCompleted for a completed payment, None for anything else

        Raises:
            InvalidSignatureError: Bad signature
            ValidationError: Malformed payload
        """
        if not self.gateway.verify_webhook_signature(body, signature, self.notification_url):
            logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignatureError("Invalid webhook signature")

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ValidationError("Webhook body is not valid JSON") from e

        if not isinstance(payload, dict):
            raise ValidationError("Malformed payment webhook: body is not an object")

        event_type = payload.get("type")
        if event_type not in PAYMENT_EVENT_TYPES:
            logger.debug("Ignoring webhook event %s", event_type)
            return None

        payment = payload
        for key in ("data", "object", "payment"):
            payment = payment.get(key) or {}
            if not isinstance(payment, dict):
                logger.warning("Payment webhook has a non-object %r field", key)
                raise ValidationError(f"Malformed payment webhook: {key} is not an object")
        if payment.get("status") != "COMPLETED":
            return None

        amount_money = payment.get("amount_money") or {}
        if not isinstance(amount_money, dict):
            raise ValidationError("Malformed payment webhook: amount_money is not an object")

        try:
            return PaymentCompleted(
                transaction_id=payment.get("id") or "",
                invoice_id=payment.get("note") or "",
                amount_cents=amount_money.get("amount") or 0,
                method=PaymentMethod.SQUARE_ONLINE,
            )
        except PydanticValidationError as e:
            logger.warning("Completed payment webhook is missing fields: %s", e)
            raise ValidationError(f"Malformed payment webhook: {e}") from e
