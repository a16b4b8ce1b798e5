"""Test data builders and doubles shared across the test suite."""

from datetime import timedelta
from decimal import Decimal

from clients.square_client import PaymentLink
from core.models import InvoiceCreate, LineItemCreate
from utils.timezone import today_utc

TEST_USER_ID = "user-0001"
TEST_USER_B_ID = "user-0002"


class FakeGateway:
    """Records payment link requests; can be told to fail or to reject signatures."""

    def __init__(self):
        self.links = []
        self.fail_with: Exception | None = None
        self.valid_signature = "valid-signature"

    def create_payment_link(self, invoice_id, amount_cents, customer_email=None, title=None, invoice_number=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.links.append({
            "invoice_id": invoice_id,
            "amount_cents": amount_cents,
            "customer_email": customer_email,
            "title": title,
            "invoice_number": invoice_number,
        })
        n = len(self.links)
        return PaymentLink(link_id=f"link-{n}", url=f"https://pay.example.test/{n}")

    def verify_webhook_signature(self, body, signature, notification_url):
        return signature == self.valid_signature


def make_invoice_data(**overrides) -> InvoiceCreate:
    """$425.00 of work at 8% tax less a $10 discount: subtotal 42500, tax 3400, total 44900."""
    data = {
        "title": "Kitchen remodel - phase 1",
        "client_id": "client-1",
        "project_id": "project-1",
        "customer_email": "client@example.test",
        "line_items": [
            LineItemCreate(description="Cabinet install", quantity=2, unit_price_cents=15000),
            LineItemCreate(description="Countertop templating", quantity=1, unit_price_cents=10000),
            LineItemCreate(description="Hardware", quantity=1, unit_price_cents=2500),
        ],
        "tax_rate": Decimal("0.08"),
        "discount_cents": 1000,
        "due_date": today_utc() + timedelta(days=30),
    }
    data.update(overrides)
    return InvoiceCreate(**data)
