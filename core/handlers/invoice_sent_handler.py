"""
Handler for InvoiceSent events.

Once an invoice is visible to the client, create a hosted payment link for it.
Autopay invoices are charged on the card on file by the gateway, so no link
is needed.
"""

import logging
from typing import Callable

from core.events import InvoiceSent
from core.exceptions import LedgerError

logger = logging.getLogger(__name__)


def handle_invoice_sent(gateway_service) -> Callable:
    """
    Factory that returns an InvoiceSent handler.

    Args:
        gateway_service: GatewayService instance

    Returns:
        Handler callable that creates the payment link
    """

    def handler(event: InvoiceSent):
        invoice = event.invoice

        if invoice.auto_pay_enabled:
            logger.info("Invoice %s uses autopay; no payment link created", invoice.invoice_number)
            return
        if invoice.payment_url:
            return

        try:
            gateway_service.create_payment_link(invoice.id)
        except LedgerError as e:
            # Client can still pay by other methods; a link can be requested later
            logger.warning("No payment link for invoice %s: %s", invoice.invoice_number, e)

    return handler
