"""Payment models.

A Payment is immutable once appended to an invoice. Amounts are in cents.
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    """How a payment reached us."""

    SQUARE_ONLINE = "SQUARE_ONLINE"  # Client paid on the hosted page
    CARD_ON_FILE = "CARD_ON_FILE"  # Auto-charge of a saved card
    CASH = "CASH"
    CHECK = "CHECK"
    BANK_TRANSFER = "BANK_TRANSFER"
    OTHER = "OTHER"

    @property
    def is_gateway(self) -> bool:
        """Reported by the card gateway rather than entered by a person."""
        return self in (PaymentMethod.SQUARE_ONLINE, PaymentMethod.CARD_ON_FILE)


class RecordPaymentData(BaseModel):
    """Data required to record a payment against an invoice."""

    amount_cents: int = Field(..., gt=0)
    method: PaymentMethod
    note: str | None = Field(None, max_length=1000)
    transaction_id: str | None = Field(None, min_length=1, max_length=255)


class Payment(BaseModel):
    """Payment record as stored in the invoice's payment history."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    amount_cents: int = Field(..., gt=0)
    method: PaymentMethod
    paid_at: datetime
    note: str | None = None
    transaction_id: str | None = None
    recorded_by: str

    model_config = {"frozen": True}


class PaymentCompleted(BaseModel):
    """Gateway notification that a payment settled. Delivered at least once."""

    transaction_id: str = Field(..., min_length=1)
    invoice_id: str = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.SQUARE_ONLINE
