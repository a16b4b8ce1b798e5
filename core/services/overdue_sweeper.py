"""
Periodic invoice sweep.

Two jobs run on every tick:
- OVERDUE: SENT and PARTIALLY_PAID invoices past their due date with money
  still owed move to OVERDUE.
- Release: SCHEDULED invoices whose send date has arrived move to SENT.

Each selected invoice gets one conditional update at the version it was read
at. An invoice that changed in between (paid, canceled, edited) fails its
update and is simply reconsidered on the next tick. Nothing here is fatal.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from clients.document_store import BatchUpdate, StoreError
from core.audit import AuditLogger, AuditAction, compute_changes
from core.event_bus import EventBus
from core.events import InvoiceOverdue, InvoiceSent
from core.models import Invoice, InvoiceStatus
from core.repository import INVOICES_COLLECTION, InvoiceRepository
from core.state_machine import (
    OVERDUE_CANDIDATE_STATUSES,
    apply_transition,
    is_overdue,
    is_ready_to_send,
)
from utils.user_context import SCHEDULER_USER_ID, user_context
from utils.timezone import now_utc, today_utc

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one tick."""

    released: int = 0
    overdue: int = 0
    skipped: list[str] = field(default_factory=list)


class OverdueSweeper:
    """Moves invoices along time-driven transitions."""

    def __init__(self, repository: InvoiceRepository, audit: AuditLogger, event_bus: EventBus):
        self.repository = repository
        self.audit = audit
        self.event_bus = event_bus

    def run(self, today: date | None = None) -> int:
        """
        Mark past-due invoices OVERDUE.

        Returns:
            Number of invoices transitioned
        """
        transitioned, _ = self._mark_overdue(today or today_utc())
        return transitioned

    def release_scheduled(self, today: date | None = None) -> int:
        """
        Send SCHEDULED invoices whose scheduled_send_date is today or earlier.

        Returns:
            Number of invoices transitioned
        """
        transitioned, _ = self._release(today or today_utc())
        return transitioned

    def tick(self, today: date | None = None) -> SweepReport:
        """
        One scheduler tick.

        Releases scheduled invoices first so one sent and already past due
        is marked overdue in the same tick.
        """
        today = today or today_utc()
        released, release_skipped = self._release(today)
        overdue, overdue_skipped = self._mark_overdue(today)
        report = SweepReport(released=released, overdue=overdue, skipped=release_skipped + overdue_skipped)
        logger.info(
            "Sweep for %s: %d released, %d overdue, %d skipped",
            today, report.released, report.overdue, len(report.skipped),
        )
        return report

    def _mark_overdue(self, today: date) -> tuple[int, list[str]]:
        return self._sweep(
            statuses=list(OVERDUE_CANDIDATE_STATUSES),
            select=lambda invoice: is_overdue(invoice, today),
            target=InvoiceStatus.OVERDUE,
            event_class=InvoiceOverdue,
        )

    def _release(self, today: date) -> tuple[int, list[str]]:
        return self._sweep(
            statuses=[InvoiceStatus.SCHEDULED],
            select=lambda invoice: is_ready_to_send(invoice, today),
            target=InvoiceStatus.SENT,
            event_class=InvoiceSent,
        )

    def _sweep(
        self,
        statuses: list[InvoiceStatus],
        select: Callable[[Invoice], bool],
        target: InvoiceStatus,
        event_class: type,
    ) -> tuple[int, list[str]]:
        """Returns (invoices transitioned, ids skipped this pass)."""
        skipped: list[str] = []
        try:
            docs = self.repository.query_documents_by_status(statuses)
        except StoreError:
            logger.exception("Sweep to %s could not query invoices", target.value)
            return 0, skipped

        now = now_utc()
        pending: dict[str, tuple[Invoice, Invoice]] = {}
        updates: list[BatchUpdate] = []

        for doc in docs:
            try:
                invoice = Invoice.from_document(doc)
            except PydanticValidationError:
                logger.exception("Invoice document %s is invalid; skipping", doc.id)
                skipped.append(doc.id)
                continue

            if not select(invoice):
                continue

            updated = apply_transition(invoice, target, now)
            patch = {
                key: change["new"]
                for key, change in compute_changes(invoice.to_document(), updated.to_document(), exclude_fields=set()).items()
            }
            pending[invoice.id] = (invoice, updated)
            updates.append(BatchUpdate(
                collection=INVOICES_COLLECTION,
                doc_id=invoice.id,
                patch=patch,
                expected_version=invoice.version,
            ))

        if not updates:
            return 0, skipped

        transitioned = 0
        for result in self.repository.store.batch_update(updates):
            before, after = pending[result.doc_id]
            if not result.ok:
                logger.warning(
                    "Invoice %s not moved to %s this tick: %s",
                    before.invoice_number, target.value, result.error,
                )
                skipped.append(result.doc_id)
                continue

            transitioned += 1
            after = after.model_copy(update={"version": result.version})
            logger.info("Invoice %s: %s -> %s", after.invoice_number, before.status.value, target.value)

            try:
                self.audit.log_change(
                    entity_type="invoice",
                    entity_id=after.id,
                    action=AuditAction.UPDATE,
                    changes={"status": {"old": before.status.value, "new": target.value}},
                    user_id=SCHEDULER_USER_ID,
                )
            except StoreError:
                logger.exception("Audit entry for invoice %s could not be written", after.id)

            # Handlers reacting to time-driven transitions act as the scheduler too
            with user_context(SCHEDULER_USER_ID):
                self.event_bus.publish(event_class.create(invoice=after))

        return transitioned, skipped
