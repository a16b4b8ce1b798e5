"""
Invoice persistence on top of the document store.

All invoice writes go through InvoiceRepository.mutate(), an optimistic
read-modify-write loop: read the invoice and its version, let the caller
compute the new state from that fresh read, write it conditionally on the
version, and start over on conflict. Validation therefore always runs
against the state that is actually being replaced.
"""

import logging
import random
import time
from typing import Callable

from pydantic import ValidationError as PydanticValidationError

from clients.document_store import (
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentStore,
    StoredDocument,
)
from core.exceptions import ConflictError, NotFoundError, ValidationError
from core.models import Invoice, InvoiceStatus

logger = logging.getLogger(__name__)

INVOICES_COLLECTION = "invoices"


def backoff(attempt: int, base_seconds: float = 0.002) -> None:
    """Sleep a short, jittered, growing interval before retrying a conflicted write."""
    time.sleep(random.uniform(0, base_seconds * attempt))


def load(doc: StoredDocument) -> Invoice:
    """
    Parse a stored invoice document.

    Raises:
        ValidationError: If the stored document is not a valid invoice
    """
    try:
        return Invoice.from_document(doc)
    except PydanticValidationError as e:
        logger.error("Stored invoice %s is invalid: %s", doc.id, e)
        raise ValidationError(f"Stored invoice {doc.id} is invalid") from e


def revalidate(invoice: Invoice) -> Invoice:
    """
    Run model validation on an invoice built with model_copy().

    Raises:
        ValidationError: If the new state breaks a ledger invariant
    """
    try:
        return Invoice.model_validate(invoice.model_dump())
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


class InvoiceRepository:
    """Loads, stores and conditionally updates Invoice documents."""

    def __init__(self, store: DocumentStore, max_conflict_retries: int = 5):
        self.store = store
        self.max_conflict_retries = max_conflict_retries

    def get(self, invoice_id: str) -> Invoice:
        """
        Load an invoice.

        Raises:
            NotFoundError: If it does not exist
        """
        try:
            doc = self.store.get(INVOICES_COLLECTION, invoice_id)
        except DocumentNotFoundError:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return load(doc)

    def insert(self, invoice: Invoice) -> Invoice:
        """Persist a new invoice; returns it with the store-assigned id and version."""
        invoice_id = self.store.create(INVOICES_COLLECTION, invoice.to_document())
        return invoice.model_copy(update={"id": invoice_id, "version": 1})

    def mutate(
        self,
        invoice_id: str,
        change: Callable[[Invoice], Invoice | None],
    ) -> tuple[Invoice, Invoice]:
        """
        Apply change() to the latest state of an invoice atomically.

        Args:
            invoice_id: Invoice to update
            change: Receives a freshly read Invoice and returns the new state,
                or None to leave it untouched. Raising aborts without writing.

        Returns:
            (state that was read, state that was committed). Both are the same
            object when change() returned None.

        Raises:
            NotFoundError: If the invoice does not exist
            ConflictError: If every attempt lost a race
        """
        for attempt in range(1, self.max_conflict_retries + 1):
            current = self.get(invoice_id)
            updated = change(current)
            if updated is None:
                return current, current

            updated = revalidate(updated)
            try:
                version = self.store.update(
                    INVOICES_COLLECTION,
                    invoice_id,
                    updated.to_document(),
                    expected_version=current.version,
                )
            except DocumentNotFoundError:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            except DocumentConflictError:
                logger.info(
                    "Invoice %s changed concurrently (attempt %d/%d), retrying",
                    invoice_id, attempt, self.max_conflict_retries,
                )
                backoff(attempt)
                continue

            return current, updated.model_copy(update={"version": version})

        logger.warning(
            "Invoice %s: giving up after %d conflicting writes",
            invoice_id, self.max_conflict_retries,
        )
        raise ConflictError(invoice_id, self.max_conflict_retries)

    def delete(self, invoice_id: str, expected_version: int) -> None:
        """
        Hard-delete an invoice at a known version.

        Raises:
            NotFoundError: If it does not exist
            DocumentConflictError: If it changed since expected_version
        """
        try:
            self.store.delete(INVOICES_COLLECTION, invoice_id, expected_version=expected_version)
        except DocumentNotFoundError:
            raise NotFoundError(f"Invoice {invoice_id} not found")

    def query(self, field_name: str, op: str, value) -> list[Invoice]:
        """Invoices matching a single-field predicate."""
        return [load(doc) for doc in self.store.query(INVOICES_COLLECTION, field_name, op, value)]

    def query_documents_by_status(self, statuses: list[InvoiceStatus]) -> list[StoredDocument]:
        """Raw documents in any of the given statuses, for callers that parse them one by one."""
        return self.store.query(INVOICES_COLLECTION, "status", "in", [s.value for s in statuses])
