"""Tests for InvoiceService."""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from clients.document_store import StoreUnavailableError
from factories import make_invoice_data
from core.events import InvoiceCanceled, InvoiceCreated, InvoiceScheduled, InvoiceSent
from core.exceptions import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from core.models import (
    InvoiceStatus,
    InvoiceUpdate,
    LineItemCreate,
    PaymentMethod,
    RecordPaymentData,
)
from core.repository import INVOICES_COLLECTION
from core.services.invoice_service import compute_stats
from utils.timezone import now_utc, today_utc


# =============================================================================
# CREATE
# =============================================================================


class TestCreate:

    def test_create_draft_with_totals(self, as_test_user, invoice_service, invoice_data):
        invoice = invoice_service.create(invoice_data)

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.subtotal_cents == 42500
        assert invoice.tax_amount_cents == 3400
        assert invoice.total_amount_cents == 44900
        assert invoice.amount_paid_cents == 0
        assert invoice.amount_due_cents == 44900
        assert invoice.version == 1
        assert invoice.created_by == as_test_user
        assert invoice.issue_date is None

    def test_invoice_number_follows_year_sequence(self, as_test_user, invoice_service, invoice_data):
        year = now_utc().year
        first = invoice_service.create(invoice_data)
        second = invoice_service.create(invoice_data)

        assert first.invoice_number == f"INV-{year}-0001"
        assert second.invoice_number == f"INV-{year}-0002"
        assert not first.needs_renumbering

    def test_line_item_totals_are_computed(self, as_test_user, invoice_service, invoice_data):
        invoice = invoice_service.create(invoice_data)

        assert [item.total_price_cents for item in invoice.line_items] == [30000, 10000, 2500]

    def test_persisted_and_readable(self, as_test_user, invoice_service, invoice_data):
        created = invoice_service.create(invoice_data)

        fetched = invoice_service.get_by_id(created.id)
        assert fetched.model_dump() == created.model_dump()

    def test_create_and_publish(self, as_test_user, invoice_service, invoice_data):
        invoice = invoice_service.create(invoice_data, publish=True)

        assert invoice.status == InvoiceStatus.SENT
        assert invoice.issue_date is not None

    def test_create_and_publish_with_future_send_date(self, as_test_user, invoice_service):
        data = make_invoice_data(scheduled_send_date=today_utc() + timedelta(days=5))

        invoice = invoice_service.create(data, publish=True)

        assert invoice.status == InvoiceStatus.SCHEDULED
        assert invoice.issue_date is None

    def test_publish_without_billable_items_creates_nothing(self, as_test_user, invoice_service, store):
        data = make_invoice_data(line_items=[LineItemCreate(description="Goodwill", unit_price_cents=0)])

        with pytest.raises(InvalidTransitionError):
            invoice_service.create(data, publish=True)

        assert store.count(INVOICES_COLLECTION) == 0

    def test_rejected_publish_consumes_no_number(self, as_test_user, invoice_service, invoice_data):
        year = today_utc().year
        first = invoice_service.create(invoice_data)
        unbillable = make_invoice_data(line_items=[LineItemCreate(description="Labor", quantity=0, unit_price_cents=5000)])

        with pytest.raises(InvalidTransitionError):
            invoice_service.create(unbillable, publish=True)

        assert invoice_service.sequencer.peek(year) == 1
        second = invoice_service.create(invoice_data)
        assert first.invoice_number == f"INV-{year}-0001"
        assert second.invoice_number == f"INV-{year}-0002"

    def test_degraded_number_flags_renumbering(self, as_test_user, invoice_service, invoice_data):
        with patch.object(invoice_service.sequencer.store, "get", side_effect=StoreUnavailableError("down")):
            # Invoice insert goes through create(), which is not patched
            invoice = invoice_service.create(invoice_data)

        assert invoice.needs_renumbering
        assert "-T" in invoice.invoice_number

    def test_publishes_created_and_sent_events(self, as_test_user, invoice_service, event_bus, invoice_data):
        received = []
        event_bus.subscribe(InvoiceCreated, received.append)
        event_bus.subscribe(InvoiceSent, received.append)

        invoice_service.create(invoice_data, publish=True)

        assert [type(e) for e in received] == [InvoiceCreated, InvoiceSent]

    def test_requires_user_context(self, invoice_service, invoice_data):
        with pytest.raises(RuntimeError, match="No user context"):
            invoice_service.create(invoice_data)

    def test_rejects_empty_line_items(self):
        with pytest.raises(PydanticValidationError):
            make_invoice_data(line_items=[])

    def test_autopay_requires_card(self):
        with pytest.raises(PydanticValidationError, match="card_on_file_id"):
            make_invoice_data(auto_pay_enabled=True)


# =============================================================================
# READ
# =============================================================================


class TestRead:

    def test_get_by_id_missing_returns_none(self, invoice_service):
        assert invoice_service.get_by_id("missing") is None

    def test_get_missing_raises(self, invoice_service):
        with pytest.raises(NotFoundError):
            invoice_service.get("missing")

    def test_list_for_client_newest_first(self, as_test_user, invoice_service):
        first = invoice_service.create(make_invoice_data())
        second = invoice_service.create(make_invoice_data())
        invoice_service.create(make_invoice_data(client_id="client-2"))

        invoices = invoice_service.list_for_client("client-1")

        assert [i.id for i in invoices] == [second.id, first.id]

    def test_list_for_client_can_hide_drafts(self, as_test_user, invoice_service):
        invoice_service.create(make_invoice_data())
        sent = invoice_service.create(make_invoice_data(), publish=True)

        invoices = invoice_service.list_for_client("client-1", include_drafts=False)

        assert [i.id for i in invoices] == [sent.id]

    def test_list_for_project(self, as_test_user, invoice_service):
        invoice_service.create(make_invoice_data(project_id="p-1"))
        invoice_service.create(make_invoice_data(project_id="p-2"))

        assert len(invoice_service.list_for_project("p-1")) == 1

    def test_client_outstanding_balance(self, as_test_user, invoice_service, payment_service):
        invoice_service.create(make_invoice_data())  # draft, not owed
        invoice_service.create(make_invoice_data(), publish=True)
        partial = invoice_service.create(make_invoice_data(allow_partial_payments=True), publish=True)
        payment_service.record_payment(partial.id, RecordPaymentData(amount_cents=20000, method=PaymentMethod.CHECK))
        invoice_service.create(make_invoice_data(client_id="client-2"), publish=True)

        assert invoice_service.client_outstanding_balance("client-1") == 44900 + 24900

    def test_list_outstanding(self, as_test_user, invoice_service):
        invoice_service.create(make_invoice_data())
        sent = invoice_service.create(make_invoice_data(), publish=True)

        assert [i.id for i in invoice_service.list_outstanding()] == [sent.id]


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateDraft:

    def test_recomputes_totals(self, draft_invoice, invoice_service):
        updated = invoice_service.update_draft(draft_invoice.id, InvoiceUpdate(
            line_items=[LineItemCreate(description="Deck repair", quantity=4, unit_price_cents=12500)],
            tax_rate=Decimal("0"),
            discount_cents=0,
        ))

        assert updated.subtotal_cents == 50000
        assert updated.total_amount_cents == 50000
        assert updated.amount_due_cents == 50000
        assert updated.version == draft_invoice.version + 1

    def test_partial_update_keeps_other_fields(self, draft_invoice, invoice_service):
        updated = invoice_service.update_draft(draft_invoice.id, InvoiceUpdate(title="Phase 1 (revised)"))

        assert updated.title == "Phase 1 (revised)"
        assert updated.total_amount_cents == 44900
        assert updated.customer_email == draft_invoice.customer_email

    def test_sent_invoice_is_not_editable(self, sent_invoice, invoice_service):
        with pytest.raises(ValidationError, match="can no longer be edited"):
            invoice_service.update_draft(sent_invoice.id, InvoiceUpdate(discount_cents=0))

    def test_scheduled_invoice_is_editable(self, as_test_user, invoice_service):
        scheduled = invoice_service.create(
            make_invoice_data(scheduled_send_date=today_utc() + timedelta(days=2)), publish=True
        )

        updated = invoice_service.update_draft(scheduled.id, InvoiceUpdate(discount_cents=0))

        assert updated.status == InvoiceStatus.SCHEDULED
        assert updated.total_amount_cents == 45900

    def test_scheduled_invoice_keeps_billable_item(self, as_test_user, invoice_service):
        scheduled = invoice_service.create(
            make_invoice_data(scheduled_send_date=today_utc() + timedelta(days=2)), publish=True
        )

        with pytest.raises(ValidationError, match="billable"):
            invoice_service.update_draft(scheduled.id, InvoiceUpdate(
                line_items=[LineItemCreate(description="Nothing", unit_price_cents=0)],
            ))

    def test_paid_scheduled_invoice_is_no_longer_editable(self, as_test_user, invoice_service, payment_service):
        scheduled = invoice_service.create(
            make_invoice_data(
                scheduled_send_date=today_utc() + timedelta(days=2),
                allow_partial_payments=True,
            ),
            publish=True,
        )
        payment_service.record_payment(
            scheduled.id, RecordPaymentData(amount_cents=20000, method=PaymentMethod.CASH)
        )

        with pytest.raises(ValidationError, match="PARTIALLY_PAID"):
            invoice_service.update_draft(scheduled.id, InvoiceUpdate(
                line_items=[LineItemCreate(description="Smaller job", unit_price_cents=5000)],
            ))

    def test_update_is_audited(self, draft_invoice, invoice_service, audit):
        invoice_service.update_draft(draft_invoice.id, InvoiceUpdate(title="Renamed"))

        updates = [e for e in audit.get_entity_history("invoice", draft_invoice.id) if e["action"] == "update"]
        assert len(updates) == 1
        assert updates[0]["changes"]["title"] == {"old": draft_invoice.title, "new": "Renamed"}

    def test_missing_invoice(self, as_test_user, invoice_service):
        with pytest.raises(NotFoundError):
            invoice_service.update_draft("missing", InvoiceUpdate(title="x"))


# =============================================================================
# LIFECYCLE
# =============================================================================


class TestPublish:

    def test_publish_draft(self, draft_invoice, invoice_service):
        published = invoice_service.publish(draft_invoice.id)

        assert published.status == InvoiceStatus.SENT
        assert published.issue_date is not None

    def test_publish_scheduled_emits_scheduled_event(self, as_test_user, invoice_service, event_bus):
        received = []
        event_bus.subscribe(InvoiceScheduled, received.append)
        draft = invoice_service.create(make_invoice_data(scheduled_send_date=today_utc() + timedelta(days=1)))

        published = invoice_service.publish(draft.id)

        assert published.status == InvoiceStatus.SCHEDULED
        assert len(received) == 1

    def test_publish_twice_is_rejected(self, draft_invoice, invoice_service):
        invoice_service.publish(draft_invoice.id)

        with pytest.raises(InvalidTransitionError, match="only draft invoices can be published"):
            invoice_service.publish(draft_invoice.id)


class TestCancel:

    def test_cancel_sent_without_payments(self, sent_invoice, invoice_service):
        canceled = invoice_service.cancel(sent_invoice.id)

        assert canceled.status == InvoiceStatus.CANCELED
        assert canceled.canceled_at is not None

    def test_cancel_draft(self, draft_invoice, invoice_service):
        assert invoice_service.cancel(draft_invoice.id).status == InvoiceStatus.CANCELED

    def test_cancel_paid_is_rejected(self, sent_invoice, invoice_service, payment_service):
        payment_service.record_payment(
            sent_invoice.id, RecordPaymentData(amount_cents=44900, method=PaymentMethod.CHECK)
        )

        with pytest.raises(InvalidTransitionError):
            invoice_service.cancel(sent_invoice.id)

        assert invoice_service.get(sent_invoice.id).status == InvoiceStatus.PAID

    def test_cancel_is_terminal(self, sent_invoice, invoice_service):
        invoice_service.cancel(sent_invoice.id)

        with pytest.raises(InvalidTransitionError):
            invoice_service.cancel(sent_invoice.id)

    def test_cancel_emits_event(self, sent_invoice, invoice_service, event_bus):
        received = []
        event_bus.subscribe(InvoiceCanceled, received.append)

        invoice_service.cancel(sent_invoice.id)

        assert received[0].invoice.status == InvoiceStatus.CANCELED


class TestRefund:

    def test_refund_paid(self, sent_invoice, invoice_service, payment_service):
        payment_service.record_payment(
            sent_invoice.id, RecordPaymentData(amount_cents=44900, method=PaymentMethod.BANK_TRANSFER)
        )

        refunded = invoice_service.refund(sent_invoice.id, reason="Job canceled by client")

        assert refunded.status == InvoiceStatus.REFUNDED
        assert refunded.refund_reason == "Job canceled by client"
        assert refunded.refunded_at is not None
        assert refunded.amount_paid_cents == 44900

    def test_refund_unpaid_is_rejected(self, sent_invoice, invoice_service):
        with pytest.raises(InvalidTransitionError):
            invoice_service.refund(sent_invoice.id)


class TestRecordReminder:

    def test_counts_reminders(self, sent_invoice, invoice_service):
        invoice_service.record_reminder(sent_invoice.id)
        reminded = invoice_service.record_reminder(sent_invoice.id)

        assert reminded.reminders_sent == 2
        assert reminded.last_reminder_at is not None
        assert reminded.status == InvoiceStatus.SENT
        assert invoice_service.get(sent_invoice.id).reminders_sent == 2

    def test_draft_gets_no_reminder(self, draft_invoice, invoice_service):
        with pytest.raises(ValidationError, match="reminders"):
            invoice_service.record_reminder(draft_invoice.id)

        assert invoice_service.get(draft_invoice.id).reminders_sent == 0

    def test_audited(self, sent_invoice, invoice_service, audit):
        invoice_service.record_reminder(sent_invoice.id)

        history = audit.get_entity_history("invoice", sent_invoice.id)
        assert any(
            entry["changes"].get("reminders_sent") == {"old": 0, "new": 1}
            for entry in history
        )


class TestDelete:

    def test_delete_draft(self, draft_invoice, invoice_service, audit):
        invoice_service.delete(draft_invoice.id)

        assert invoice_service.get_by_id(draft_invoice.id) is None
        actions = {e["action"] for e in audit.get_entity_history("invoice", draft_invoice.id)}
        assert actions == {"create", "delete"}

    def test_delete_sent_is_rejected(self, sent_invoice, invoice_service):
        with pytest.raises(InvalidTransitionError, match="cancel instead"):
            invoice_service.delete(sent_invoice.id)

        assert invoice_service.get_by_id(sent_invoice.id) is not None

    def test_delete_missing(self, as_test_user, invoice_service):
        with pytest.raises(NotFoundError):
            invoice_service.delete("missing")


# =============================================================================
# CONCURRENCY
# =============================================================================


class TestConflicts:

    def test_lost_race_is_retried_against_fresh_state(self, draft_invoice, invoice_service, store):
        """A concurrent title edit lands between our read and write; ours still applies on top."""
        original_update = store.update
        calls = {"n": 0}

        def racing_update(collection, doc_id, patch_, expected_version=None):
            calls["n"] += 1
            if calls["n"] == 1:
                original_update(collection, doc_id, {"internal_notes": "edited elsewhere"})
            return original_update(collection, doc_id, patch_, expected_version)

        with patch.object(store, "update", side_effect=racing_update):
            updated = invoice_service.update_draft(draft_invoice.id, InvoiceUpdate(title="Mine"))

        assert updated.title == "Mine"
        assert updated.internal_notes == "edited elsewhere"
        assert calls["n"] == 2

    def test_retries_exhausted_raises_conflict(self, draft_invoice, invoice_service, store):
        original_update = store.update

        def always_racing(collection, doc_id, patch_, expected_version=None):
            original_update(collection, doc_id, {"internal_notes": "again"})
            return original_update(collection, doc_id, patch_, expected_version)

        with patch.object(store, "update", side_effect=always_racing):
            with pytest.raises(ConflictError):
                invoice_service.update_draft(draft_invoice.id, InvoiceUpdate(title="Never"))

        assert invoice_service.get(draft_invoice.id).title == draft_invoice.title


# =============================================================================
# STATS
# =============================================================================


class TestStats:

    def test_compute_stats(self, as_test_user, invoice_service, payment_service):
        invoice_service.create(make_invoice_data())
        paid = invoice_service.create(make_invoice_data(), publish=True)
        payment_service.record_payment(paid.id, RecordPaymentData(amount_cents=44900, method=PaymentMethod.CASH))
        partial = invoice_service.create(make_invoice_data(allow_partial_payments=True), publish=True)
        payment_service.record_payment(partial.id, RecordPaymentData(amount_cents=10000, method=PaymentMethod.CASH))
        invoice_service.create(make_invoice_data(), publish=True)

        stats = invoice_service.stats()

        assert stats.total == 4
        assert stats.draft == 1
        assert stats.paid == 1
        assert stats.partially_paid == 1
        assert stats.sent == 1
        assert stats.total_revenue_cents == 44900 + 10000
        assert stats.outstanding_balance_cents == 34900 + 44900

    def test_compute_stats_empty(self):
        stats = compute_stats([])

        assert stats.total == 0
        assert stats.outstanding_balance_cents == 0
