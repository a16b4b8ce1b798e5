"""Ledger domain models."""

from core.models.line_item import LineItem, LineItemCreate
from core.models.payment import Payment, PaymentMethod, RecordPaymentData, PaymentCompleted
from core.models.invoice import Invoice, InvoiceCreate, InvoiceUpdate, InvoiceStatus, InvoiceStats
from core.models.counter import InvoiceNumberCounter

__all__ = [
    # LineItem
    "LineItem", "LineItemCreate",
    # Payment
    "Payment", "PaymentMethod", "RecordPaymentData", "PaymentCompleted",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceUpdate", "InvoiceStatus", "InvoiceStats",
    # Counter
    "InvoiceNumberCounter",
]
