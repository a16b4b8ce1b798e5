"""
Payment gateway port.

The ledger only needs two things from a card gateway: a hosted page for an
outstanding balance, and a way to trust the notifications it sends back.
clients.square_client.SquareClient satisfies this protocol.
"""

from typing import Protocol

from clients.square_client import PaymentLink


class PaymentGateway(Protocol):
    def create_payment_link(
        self,
        invoice_id: str,
        amount_cents: int,
        customer_email: str | None = None,
        title: str | None = None,
        invoice_number: str | None = None,
    ) -> PaymentLink:
        ...

    def verify_webhook_signature(self, body: str, signature: str, notification_url: str) -> bool:
        ...
