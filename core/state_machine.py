"""
Invoice status transition engine.

State Machine:
    DRAFT -> SENT | SCHEDULED            publish (needs a billable line item)
    SCHEDULED -> SENT                    scheduled send date reached
    SENT | SCHEDULED | PARTIALLY_PAID | OVERDUE -> PARTIALLY_PAID | PAID
                                         payment recorded
    SENT | PARTIALLY_PAID -> OVERDUE     due date passed with a balance
    any non-terminal -> CANCELED         explicit cancel
    PAID -> REFUNDED                     explicit refund

CANCELED and REFUNDED are terminal. PAID is terminal except for refunds.

Functions here are pure: they inspect an Invoice and either return the new
state or raise InvalidTransitionError. Persistence is the services' job.
"""

from datetime import date, datetime

from core.exceptions import InvalidTransitionError
from core.models import Invoice, InvoiceStatus

PAYABLE_STATUSES = frozenset({
    InvoiceStatus.SENT,
    InvoiceStatus.SCHEDULED,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.OVERDUE,
})

OVERDUE_CANDIDATE_STATUSES = frozenset({
    InvoiceStatus.SENT,
    InvoiceStatus.PARTIALLY_PAID,
})

TERMINAL_STATUSES = frozenset({
    InvoiceStatus.CANCELED,
    InvoiceStatus.REFUNDED,
})

# Statuses a client owes money on
OUTSTANDING_STATUSES = frozenset({
    InvoiceStatus.SENT,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.OVERDUE,
})

_VALID_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({
        InvoiceStatus.SENT, InvoiceStatus.SCHEDULED, InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.SCHEDULED: frozenset({
        InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID,
        InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.SENT: frozenset({
        InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID, InvoiceStatus.OVERDUE,
        InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.PARTIALLY_PAID: frozenset({
        InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID, InvoiceStatus.OVERDUE,
        InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.OVERDUE: frozenset({
        InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID, InvoiceStatus.CANCELED,
    }),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.REFUNDED}),
    InvoiceStatus.CANCELED: frozenset(),
    InvoiceStatus.REFUNDED: frozenset(),
}


def can_transition(current: InvoiceStatus, target: InvoiceStatus) -> bool:
    """Whether the transition table allows current -> target."""
    return target in _VALID_TRANSITIONS[current]


def assert_transition(invoice: Invoice, target: InvoiceStatus) -> None:
    """
    Raise InvalidTransitionError unless invoice may move to target.

    Checks the table plus the guards that depend only on the invoice itself.
    Payment guards need the payment amount and live in status_after_payment().
    """
    current = invoice.status

    if target == InvoiceStatus.CANCELED and current == InvoiceStatus.PAID:
        raise InvalidTransitionError(current, target, "paid invoices cannot be canceled; refund instead")

    if not can_transition(current, target):
        if current in TERMINAL_STATUSES:
            guard = f"{current.value} is terminal"
        else:
            guard = "transition not allowed"
        raise InvalidTransitionError(current, target, guard)

    if current == InvoiceStatus.DRAFT and target in (InvoiceStatus.SENT, InvoiceStatus.SCHEDULED):
        if not invoice.has_billable_items:
            raise InvalidTransitionError(
                current, target,
                "at least one line item with a description and a positive amount is required",
            )

    if target == InvoiceStatus.OVERDUE and invoice.amount_due_cents <= 0:
        raise InvalidTransitionError(current, target, "nothing is owed")


def publish_target(invoice: Invoice, today: date) -> InvoiceStatus:
    """
    Status a DRAFT invoice moves to when published.

    SCHEDULED when scheduled_send_date is in the future, SENT otherwise.
    """
    if invoice.scheduled_send_date is not None and invoice.scheduled_send_date > today:
        target = InvoiceStatus.SCHEDULED
    else:
        target = InvoiceStatus.SENT
    assert_transition(invoice, target)
    return target


def status_after_payment(invoice: Invoice, amount_cents: int) -> InvoiceStatus:
    """
    Status after applying a payment of amount_cents.

    The caller has already rejected amount_cents > amount_due_cents.

    Raises:
        InvalidTransitionError: Invoice not payable, or a partial payment on an
            invoice that does not allow partial payments
    """
    current = invoice.status
    new_paid = invoice.amount_paid_cents + amount_cents

    if new_paid >= invoice.total_amount_cents:
        target = InvoiceStatus.PAID
    else:
        target = InvoiceStatus.PARTIALLY_PAID

    if current not in PAYABLE_STATUSES:
        raise InvalidTransitionError(current, target, f"{current.value} invoices do not accept payments")

    if target == InvoiceStatus.PARTIALLY_PAID and not invoice.allow_partial_payments:
        raise InvalidTransitionError(
            current, target,
            "partial payments are not allowed; pay the full amount due",
        )

    assert_transition(invoice, target)
    return target


def is_overdue(invoice: Invoice, today: date) -> bool:
    """Whether the sweep should move this invoice to OVERDUE."""
    return (
        invoice.status in OVERDUE_CANDIDATE_STATUSES
        and invoice.due_date < today
        and invoice.amount_due_cents > 0
    )


def is_ready_to_send(invoice: Invoice, today: date) -> bool:
    """Whether a SCHEDULED invoice's send date has arrived."""
    return (
        invoice.status == InvoiceStatus.SCHEDULED
        and invoice.scheduled_send_date is not None
        and invoice.scheduled_send_date <= today
    )


def apply_transition(invoice: Invoice, target: InvoiceStatus, now: datetime) -> Invoice:
    """
    Return a copy of invoice in the target status with lifecycle timestamps set.

    issue_date is set the first time the invoice becomes visible to the client
    (SENT, or paid while still SCHEDULED). paid_at, canceled_at and
    refunded_at are set on entering their statuses.
    """
    assert_transition(invoice, target)

    changes: dict = {"status": target, "updated_at": now}
    if target in (InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID):
        if invoice.issue_date is None:
            changes["issue_date"] = now
    if target == InvoiceStatus.PAID:
        changes["paid_at"] = now
    elif target == InvoiceStatus.CANCELED:
        changes["canceled_at"] = now
    elif target == InvoiceStatus.REFUNDED:
        changes["refunded_at"] = now

    return invoice.model_copy(update=changes)
