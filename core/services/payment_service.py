"""
Payment recording.

A payment is appended to the invoice's payment history and the paid/due
amounts and status are updated in the same conditional write, so the ledger
never shows a payment without its effect on the balance (or the reverse).

Gateway notifications are delivered at least once. A payment carrying a
transaction_id that the invoice already holds is a replay and is
acknowledged without writing anything.
"""

import logging

from clients.document_store import StoreError
from core.audit import AuditLogger, AuditAction
from core.event_bus import EventBus
from core.events import InvoicePaid, PaymentRecorded
from core.exceptions import InvalidTransitionError, ValidationError
from core.models import Invoice, InvoiceStatus, Payment, RecordPaymentData
from core.repository import InvoiceRepository
from core.state_machine import PAYABLE_STATUSES, apply_transition, status_after_payment
from utils.user_context import get_current_user_id
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class PaymentService:
    """Applies payments to invoices."""

    def __init__(self, repository: InvoiceRepository, audit: AuditLogger, event_bus: EventBus):
        self.repository = repository
        self.audit = audit
        self.event_bus = event_bus

    def record_payment(
        self,
        invoice_id: str,
        data: RecordPaymentData,
        recorded_by: str | None = None,
    ) -> Invoice:
        """
        Record a payment against an invoice.

        Args:
            invoice_id: Invoice being paid
            data: Amount, method, optional note and gateway transaction id
            recorded_by: Defaults to the current user

        Returns:
            Invoice after the payment. For a replayed transaction_id, the
            invoice as it already is.

        Raises:
            NotFoundError: If the invoice doesn't exist
            InvalidTransitionError: If the invoice doesn't accept payments, or
                the payment is partial and partial payments are off
            ValidationError: If the amount exceeds what is owed
            ConflictError: If concurrent writers kept winning
        """
        if recorded_by is None:
            recorded_by = get_current_user_id()

        applied: list[Payment] = []

        def change(current: Invoice) -> Invoice | None:
            if data.transaction_id and current.has_transaction(data.transaction_id):
                logger.info(
                    "Transaction %s already applied to invoice %s; ignoring replay",
                    data.transaction_id, current.invoice_number,
                )
                return None

            if current.status not in PAYABLE_STATUSES:
                raise InvalidTransitionError(
                    current.status, InvoiceStatus.PAID,
                    f"{current.status.value} invoices do not accept payments",
                )
            if data.amount_cents > current.amount_due_cents:
                raise ValidationError(
                    f"Payment of {data.amount_cents} exceeds amount due "
                    f"{current.amount_due_cents} on invoice {current.invoice_number}"
                )

            target = status_after_payment(current, data.amount_cents)
            now = now_utc()
            payment = Payment(
                amount_cents=data.amount_cents,
                method=data.method,
                paid_at=now,
                note=data.note,
                transaction_id=data.transaction_id,
                recorded_by=recorded_by,
            )

            applied.clear()
            applied.append(payment)

            updated = apply_transition(current, target, now)
            return updated.model_copy(update={
                "payments": [*current.payments, payment],
                "amount_paid_cents": current.amount_paid_cents + data.amount_cents,
                "amount_due_cents": current.amount_due_cents - data.amount_cents,
            })

        current, updated = self.repository.mutate(invoice_id, change)
        if current is updated:
            return updated

        payment = applied[0]
        logger.info(
            "Recorded %s payment of %d cents on invoice %s (%s -> %s)",
            payment.method.value, payment.amount_cents, updated.invoice_number,
            current.status.value, updated.status.value,
        )

        try:
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "payments": {"old": None, "new": payment.model_dump(mode="json")},
                    "amount_paid_cents": {"old": current.amount_paid_cents, "new": updated.amount_paid_cents},
                    "amount_due_cents": {"old": current.amount_due_cents, "new": updated.amount_due_cents},
                    "status": {"old": current.status.value, "new": updated.status.value},
                },
                user_id=recorded_by,
            )
        except StoreError:
            logger.exception("Audit entry for payment on invoice %s could not be written", invoice_id)

        self.event_bus.publish(PaymentRecorded.create(invoice=updated, payment=payment))
        if updated.status == InvoiceStatus.PAID:
            self.event_bus.publish(InvoicePaid.create(invoice=updated))

        return updated
