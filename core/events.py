"""
Domain events for the invoice ledger.

Immutable event objects that represent committed ledger state changes.
A service publishes what happened after its write succeeds; handlers react
(payment links, notifications, analytics) without the publisher knowing
who's listening.

Events carry the full Invoice so handlers don't need to re-fetch state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class LedgerEvent:
    """Base class for all ledger domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


@dataclass(frozen=True)
class InvoiceEvent(LedgerEvent):
    """Events related to invoice lifecycle."""
    invoice: Any = None  # Invoice; Any avoids importing models here

    @classmethod
    def create(cls, invoice: Any) -> "InvoiceEvent":
        return cls(invoice=invoice)


@dataclass(frozen=True)
class InvoiceCreated(InvoiceEvent):
    """Invoice was created (any initial status)."""


@dataclass(frozen=True)
class InvoiceScheduled(InvoiceEvent):
    """Invoice was published with a future send date."""


@dataclass(frozen=True)
class InvoiceSent(InvoiceEvent):
    """Invoice became visible and payable for the client."""


@dataclass(frozen=True)
class InvoiceOverdue(InvoiceEvent):
    """Sweep found the invoice past due with a balance."""


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice was fully paid."""


@dataclass(frozen=True)
class InvoiceCanceled(InvoiceEvent):
    """Invoice was canceled."""


@dataclass(frozen=True)
class InvoiceRefunded(InvoiceEvent):
    """Paid invoice was refunded."""


@dataclass(frozen=True)
class PaymentRecorded(InvoiceEvent):
    """A payment was appended to the invoice."""
    payment: Any = None

    @classmethod
    def create(cls, invoice: Any, payment: Any = None) -> "PaymentRecorded":
        return cls(invoice=invoice, payment=payment)
