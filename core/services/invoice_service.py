"""
Invoice service: creation, editing and lifecycle of invoices.

Amounts are recomputed from line items, tax rate and discount on every edit
and written in the same conditional update as the edit itself, so a stored
total is never stale. Status changes go through core.state_machine.
Payments are recorded by PaymentService.
"""

import logging

from clients.document_store import DocumentConflictError, StoreError
from core.audit import AuditLogger, AuditAction, compute_changes
from core.event_bus import EventBus
from core.events import (
    InvoiceCanceled,
    InvoiceCreated,
    InvoiceRefunded,
    InvoiceScheduled,
    InvoiceSent,
)
from core.exceptions import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from core.models import (
    Invoice,
    InvoiceCreate,
    InvoiceStats,
    InvoiceStatus,
    InvoiceUpdate,
    LineItem,
)
from core.repository import InvoiceRepository, backoff
from core.services.numbering_service import InvoiceNumberSequencer
from core.state_machine import OUTSTANDING_STATUSES, apply_transition, publish_target
from core.totals import calculate_totals
from utils.user_context import get_current_user_id
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = {InvoiceStatus.DRAFT, InvoiceStatus.SCHEDULED}

# Optional fields an edit may reset to None; None elsewhere means "unchanged"
CLEARABLE_FIELDS = {
    "description", "customer_email", "scheduled_send_date",
    "card_on_file_id", "customer_notes", "internal_notes",
}

# Lifecycle events published when an invoice enters a status
_STATUS_EVENTS = {
    InvoiceStatus.SENT: InvoiceSent,
    InvoiceStatus.SCHEDULED: InvoiceScheduled,
    InvoiceStatus.CANCELED: InvoiceCanceled,
    InvoiceStatus.REFUNDED: InvoiceRefunded,
}


def compute_stats(invoices: list[Invoice]) -> InvoiceStats:
    """
    Dashboard aggregates.

    Revenue counts money received on PAID and PARTIALLY_PAID invoices;
    outstanding balance is what is still owed on SENT, PARTIALLY_PAID and
    OVERDUE invoices.
    """
    stats = InvoiceStats(total=len(invoices))
    for invoice in invoices:
        field_name = invoice.status.value.lower()
        setattr(stats, field_name, getattr(stats, field_name) + 1)
        if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.PARTIALLY_PAID):
            stats.total_revenue_cents += invoice.amount_paid_cents
        if invoice.status in OUTSTANDING_STATUSES:
            stats.outstanding_balance_cents += invoice.amount_due_cents
    return stats


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        repository: InvoiceRepository,
        sequencer: InvoiceNumberSequencer,
        audit: AuditLogger,
        event_bus: EventBus,
    ):
        self.repository = repository
        self.sequencer = sequencer
        self.audit = audit
        self.event_bus = event_bus

    def _audit(self, invoice_id: str, action: AuditAction, changes: dict) -> None:
        # The ledger write has committed; a failed audit write must not make
        # the caller retry it
        try:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=action,
                changes=changes,
            )
        except StoreError:
            logger.exception("Audit entry for invoice %s could not be written", invoice_id)

    def _publish_status_event(self, invoice: Invoice) -> None:
        event_class = _STATUS_EVENTS.get(invoice.status)
        if event_class is not None:
            self.event_bus.publish(event_class.create(invoice=invoice))

    def create(self, data: InvoiceCreate, publish: bool = False) -> Invoice:
        """
        Create an invoice.

        Args:
            data: Invoice creation data
            publish: Publish immediately (SENT, or SCHEDULED for a future
                scheduled_send_date) instead of leaving it in DRAFT

        Returns:
            Created invoice

        Raises:
            InvalidTransitionError: If publish is requested without a billable line item
        """
        created_by = get_current_user_id()
        now = now_utc()

        line_items = [LineItem.from_create(item) for item in data.line_items]
        totals = calculate_totals(line_items, data.tax_rate, data.discount_cents)

        invoice = Invoice(
            id="",
            invoice_number="",
            title=data.title,
            description=data.description,
            client_id=data.client_id,
            project_id=data.project_id,
            customer_email=data.customer_email,
            created_by=created_by,
            line_items=line_items,
            tax_rate=data.tax_rate,
            discount_cents=data.discount_cents,
            subtotal_cents=totals.subtotal_cents,
            tax_amount_cents=totals.tax_amount_cents,
            total_amount_cents=totals.total_amount_cents,
            amount_paid_cents=0,
            amount_due_cents=totals.total_amount_cents,
            status=InvoiceStatus.DRAFT,
            allow_partial_payments=data.allow_partial_payments,
            auto_pay_enabled=data.auto_pay_enabled,
            card_on_file_id=data.card_on_file_id,
            due_date=data.due_date,
            scheduled_send_date=data.scheduled_send_date,
            customer_notes=data.customer_notes,
            internal_notes=data.internal_notes,
            created_at=now,
            updated_at=now,
        )

        if publish:
            invoice = apply_transition(invoice, publish_target(invoice, now.date()), now)

        # Numbered last so a rejected create never consumes a sequence
        allocated = self.sequencer.next_number()
        invoice = invoice.model_copy(update={
            "invoice_number": allocated.invoice_number,
            "needs_renumbering": allocated.degraded,
        })

        invoice = self.repository.insert(invoice)

        if allocated.degraded:
            logger.warning(
                "Invoice %s created with fallback number %s; renumber when the counter recovers",
                invoice.id, invoice.invoice_number,
            )
        logger.info("Invoice %s (%s) created as %s", invoice.invoice_number, invoice.id, invoice.status.value)

        self._audit(invoice.id, AuditAction.CREATE, {"created": invoice.to_document()})
        self.event_bus.publish(InvoiceCreated.create(invoice=invoice))
        self._publish_status_event(invoice)

        return invoice

    def get_by_id(self, invoice_id: str) -> Invoice | None:
        """
        Get invoice by ID.

        Returns:
            Invoice if found, None otherwise.
        """
        try:
            return self.repository.get(invoice_id)
        except NotFoundError:
            return None

    def get(self, invoice_id: str) -> Invoice:
        """
        Get invoice by ID.

        Raises:
            NotFoundError: If missing
        """
        return self.repository.get(invoice_id)

    def update_draft(self, invoice_id: str, data: InvoiceUpdate) -> Invoice:
        """
        Edit a DRAFT or SCHEDULED invoice.

        Totals and amount due are recomputed and committed together with the
        edit.

        Raises:
            NotFoundError: If missing
            ValidationError: If the invoice is no longer editable, or the edit
                would leave a scheduled invoice without billable items
        """
        fields = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in CLEARABLE_FIELDS
        }
        today = today_utc()

        def change(current: Invoice) -> Invoice:
            if current.status not in EDITABLE_STATUSES:
                raise ValidationError(
                    f"Invoice {current.invoice_number} is {current.status.value} and can no longer be edited"
                )

            updates = dict(fields)
            if "line_items" in updates:
                updates["line_items"] = [LineItem.from_create(item) for item in data.line_items]

            merged = current.model_copy(update=updates)
            totals = calculate_totals(merged.line_items, merged.tax_rate, merged.discount_cents)
            if merged.status == InvoiceStatus.SCHEDULED and not merged.has_billable_items:
                raise ValidationError("A scheduled invoice needs at least one billable line item")
            if merged.auto_pay_enabled and not merged.card_on_file_id:
                raise ValidationError("auto_pay_enabled requires card_on_file_id")

            return merged.model_copy(update={
                "subtotal_cents": totals.subtotal_cents,
                "tax_amount_cents": totals.tax_amount_cents,
                "total_amount_cents": totals.total_amount_cents,
                "amount_due_cents": totals.total_amount_cents - merged.amount_paid_cents,
                "updated_at": now_utc(),
            })

        current, updated = self.repository.mutate(invoice_id, change)

        self._audit(invoice_id, AuditAction.UPDATE, compute_changes(current.to_document(), updated.to_document()))
        if updated.status == InvoiceStatus.SCHEDULED and updated.scheduled_send_date is not None \
                and updated.scheduled_send_date <= today:
            logger.info("Invoice %s is due to send; the next release tick will send it", updated.invoice_number)

        return updated

    def publish(self, invoice_id: str) -> Invoice:
        """
        Publish a DRAFT invoice.

        Returns:
            Invoice in SENT, or SCHEDULED when scheduled_send_date is in the future

        Raises:
            NotFoundError: If missing
            InvalidTransitionError: If not DRAFT or has no billable line item
        """
        def change(current: Invoice) -> Invoice:
            now = now_utc()
            if current.status != InvoiceStatus.DRAFT:
                raise InvalidTransitionError(
                    current.status, InvoiceStatus.SENT, "only draft invoices can be published"
                )
            return apply_transition(current, publish_target(current, now.date()), now)

        current, updated = self.repository.mutate(invoice_id, change)
        self._audit(invoice_id, AuditAction.UPDATE, {
            "status": {"old": current.status.value, "new": updated.status.value},
        })
        self._publish_status_event(updated)
        return updated

    def cancel(self, invoice_id: str) -> Invoice:
        """
        Cancel an invoice.

        Raises:
            NotFoundError: If missing
            InvalidTransitionError: If PAID, CANCELED or REFUNDED
        """
        current, updated = self.repository.mutate(
            invoice_id,
            lambda current: apply_transition(current, InvoiceStatus.CANCELED, now_utc()),
        )
        self._audit(invoice_id, AuditAction.UPDATE, {
            "status": {"old": current.status.value, "new": updated.status.value},
        })
        self._publish_status_event(updated)
        logger.info("Invoice %s canceled", updated.invoice_number)
        return updated

    def refund(self, invoice_id: str, reason: str | None = None) -> Invoice:
        """
        Mark a PAID invoice as REFUNDED.

        The gateway-side refund itself is handled outside the ledger.

        Raises:
            NotFoundError: If missing
            InvalidTransitionError: If not PAID
        """
        def change(current: Invoice) -> Invoice:
            refunded = apply_transition(current, InvoiceStatus.REFUNDED, now_utc())
            return refunded.model_copy(update={"refund_reason": reason})

        current, updated = self.repository.mutate(invoice_id, change)
        self._audit(invoice_id, AuditAction.UPDATE, {
            "status": {"old": current.status.value, "new": updated.status.value},
            "refund_reason": {"old": None, "new": reason},
        })
        self._publish_status_event(updated)
        return updated

    def delete(self, invoice_id: str) -> None:
        """
        Hard-delete a DRAFT invoice with no payments.

        Anything else is a financial record and can only be canceled.

        Raises:
            NotFoundError: If missing
            InvalidTransitionError: If not DRAFT or payments exist
            ConflictError: If it kept changing underneath us
        """
        max_attempts = self.repository.max_conflict_retries
        for attempt in range(1, max_attempts + 1):
            current = self.repository.get(invoice_id)
            if current.status != InvoiceStatus.DRAFT:
                raise InvalidTransitionError(
                    current.status, "DELETED", "only draft invoices can be deleted; cancel instead"
                )
            if current.payments:
                raise InvalidTransitionError(
                    current.status, "DELETED", "invoices with recorded payments cannot be deleted"
                )
            try:
                self.repository.delete(invoice_id, expected_version=current.version)
            except DocumentConflictError:
                backoff(attempt)
                continue

            self._audit(invoice_id, AuditAction.DELETE, {"deleted": current.to_document()})
            logger.info("Draft invoice %s deleted", current.invoice_number)
            return

        raise ConflictError(invoice_id, max_attempts)

    def set_payment_link(self, invoice_id: str, link_id: str, url: str) -> Invoice:
        """Store the hosted payment link created for an invoice."""
        def change(current: Invoice) -> Invoice:
            return current.model_copy(update={
                "payment_link_id": link_id,
                "payment_url": url,
                "updated_at": now_utc(),
            })

        current, updated = self.repository.mutate(invoice_id, change)
        self._audit(invoice_id, AuditAction.UPDATE, {
            "payment_url": {"old": current.payment_url, "new": url},
        })
        return updated

    def record_reminder(self, invoice_id: str) -> Invoice:
        """
        Count a payment reminder sent by the notification service.

        Raises:
            NotFoundError: If missing
            ValidationError: If nothing is owed on the invoice
        """
        def change(current: Invoice) -> Invoice:
            if current.status not in OUTSTANDING_STATUSES:
                raise ValidationError(
                    f"Invoice {current.invoice_number} is {current.status.value}; reminders are only sent while money is owed"
                )
            now = now_utc()
            return current.model_copy(update={
                "reminders_sent": current.reminders_sent + 1,
                "last_reminder_at": now,
                "updated_at": now,
            })

        current, updated = self.repository.mutate(invoice_id, change)
        self._audit(invoice_id, AuditAction.UPDATE, {
            "reminders_sent": {"old": current.reminders_sent, "new": updated.reminders_sent},
        })
        return updated

    def list_for_client(self, client_id: str, include_drafts: bool = True) -> list[Invoice]:
        """
        List invoices for a client, newest first.

        Args:
            include_drafts: False for client-facing views, which never show drafts
        """
        invoices = self.repository.query("client_id", "==", client_id)
        if not include_drafts:
            invoices = [i for i in invoices if i.status != InvoiceStatus.DRAFT]
        return sorted(invoices, key=lambda i: (i.created_at, i.invoice_number), reverse=True)

    def list_for_project(self, project_id: str) -> list[Invoice]:
        """List invoices for a project, newest first."""
        invoices = self.repository.query("project_id", "==", project_id)
        return sorted(invoices, key=lambda i: (i.created_at, i.invoice_number), reverse=True)

    def list_outstanding(self) -> list[Invoice]:
        """Invoices with money owed, oldest due date first."""
        invoices = self.repository.query("status", "in", [s.value for s in OUTSTANDING_STATUSES])
        return sorted(invoices, key=lambda i: i.due_date)

    def client_outstanding_balance(self, client_id: str) -> int:
        """Total cents a client still owes across SENT, PARTIALLY_PAID and OVERDUE invoices."""
        return sum(
            invoice.amount_due_cents
            for invoice in self.repository.query("client_id", "==", client_id)
            if invoice.status in OUTSTANDING_STATUSES
        )

    def stats(self, client_id: str | None = None) -> InvoiceStats:
        """Aggregates over all invoices, or one client's."""
        if client_id is not None:
            invoices = self.repository.query("client_id", "==", client_id)
        else:
            invoices = self.repository.query("status", "in", [s.value for s in InvoiceStatus])
        return compute_stats(invoices)
