"""Invoice domain models.

All amounts are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents. Tax rate is a decimal fraction (0.08 = 8%).

The stored document never contains `id` or `version`; both belong to the
document store and are attached when the invoice is read back.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator

from clients.document_store import StoredDocument
from core.models.line_item import LineItem, LineItemCreate
from core.models.payment import Payment


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    SENT = "SENT"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELED = "CANCELED"
    REFUNDED = "REFUNDED"


class InvoiceCreate(BaseModel):
    """Data required to create an invoice."""

    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    client_id: str = Field(..., min_length=1)
    project_id: str | None = None
    customer_email: str | None = Field(None, max_length=320)
    line_items: list[LineItemCreate] = Field(..., min_length=1)
    tax_rate: Decimal = Field(Decimal("0"), ge=0, lt=1)
    discount_cents: int = Field(0, ge=0)
    due_date: date
    scheduled_send_date: date | None = None
    allow_partial_payments: bool = False
    auto_pay_enabled: bool = False
    card_on_file_id: str | None = None
    customer_notes: str | None = Field(None, max_length=2000)
    internal_notes: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def require_card_for_autopay(self) -> "InvoiceCreate":
        """Autopay charges a saved card, so one must be named."""
        if self.auto_pay_enabled and not self.card_on_file_id:
            raise ValueError("auto_pay_enabled requires card_on_file_id")
        return self


class InvoiceUpdate(BaseModel):
    """Fields editable while an invoice is DRAFT or SCHEDULED. All optional."""

    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=2000)
    customer_email: str | None = Field(None, max_length=320)
    line_items: list[LineItemCreate] | None = Field(None, min_length=1)
    tax_rate: Decimal | None = Field(None, ge=0, lt=1)
    discount_cents: int | None = Field(None, ge=0)
    due_date: date | None = None
    scheduled_send_date: date | None = None
    allow_partial_payments: bool | None = None
    auto_pay_enabled: bool | None = None
    card_on_file_id: str | None = None
    customer_notes: str | None = Field(None, max_length=2000)
    internal_notes: str | None = Field(None, max_length=2000)


class Invoice(BaseModel):
    """Full invoice entity: the ledger's aggregate root."""

    id: str
    version: int = 0
    invoice_number: str
    needs_renumbering: bool = False
    title: str
    description: str | None = None
    client_id: str
    project_id: str | None = None
    customer_email: str | None = None
    created_by: str

    line_items: list[LineItem]
    tax_rate: Decimal = Field(Decimal("0"), ge=0, lt=1)
    discount_cents: int = Field(0, ge=0)
    subtotal_cents: int = Field(..., ge=0)
    tax_amount_cents: int = Field(..., ge=0)
    total_amount_cents: int = Field(..., ge=0)
    amount_paid_cents: int = Field(0, ge=0)
    amount_due_cents: int = Field(..., ge=0)

    status: InvoiceStatus
    payments: list[Payment] = Field(default_factory=list)

    allow_partial_payments: bool = False
    auto_pay_enabled: bool = False
    card_on_file_id: str | None = None
    payment_url: str | None = None
    payment_link_id: str | None = None

    due_date: date
    issue_date: datetime | None = None
    scheduled_send_date: date | None = None
    paid_at: datetime | None = None
    canceled_at: datetime | None = None
    refunded_at: datetime | None = None
    refund_reason: str | None = None

    reminders_sent: int = 0
    last_reminder_at: datetime | None = None
    customer_notes: str | None = None
    internal_notes: str | None = None

    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def check_ledger_invariants(self) -> "Invoice":
        """Paid/due must balance against the total and the payment history."""
        if self.amount_paid_cents + self.amount_due_cents != self.total_amount_cents:
            raise ValueError(
                f"Invoice {self.invoice_number}: amount_paid {self.amount_paid_cents} + "
                f"amount_due {self.amount_due_cents} != total {self.total_amount_cents}"
            )
        recorded = sum(p.amount_cents for p in self.payments)
        if recorded != self.amount_paid_cents:
            raise ValueError(
                f"Invoice {self.invoice_number}: payments sum to {recorded}, "
                f"amount_paid is {self.amount_paid_cents}"
            )
        return self

    @classmethod
    def from_document(cls, doc: StoredDocument) -> "Invoice":
        """Validate a stored document. Unknown statuses or methods are rejected."""
        return cls.model_validate({**doc.data, "id": doc.id, "version": doc.version})

    def to_document(self) -> dict[str, Any]:
        """JSON body for the document store."""
        return self.model_dump(mode="json", exclude={"id", "version"})

    def has_transaction(self, transaction_id: str) -> bool:
        """Whether a gateway transaction has already been applied."""
        return any(p.transaction_id == transaction_id for p in self.payments)

    @property
    def has_billable_items(self) -> bool:
        return any(item.is_billable for item in self.line_items)

    @property
    def total_amount_dollars(self) -> float:
        """Total amount in dollars for display."""
        return self.total_amount_cents / 100

    @property
    def is_paid(self) -> bool:
        """Whether invoice is fully paid."""
        return self.status == InvoiceStatus.PAID


class InvoiceStats(BaseModel):
    """Dashboard aggregates over a set of invoices."""

    total: int = 0
    draft: int = 0
    scheduled: int = 0
    sent: int = 0
    partially_paid: int = 0
    paid: int = 0
    overdue: int = 0
    canceled: int = 0
    refunded: int = 0
    total_revenue_cents: int = 0
    outstanding_balance_cents: int = 0
