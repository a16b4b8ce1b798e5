"""
Invoice numbering.

Numbers look like INV-2026-0042: prefix, calendar year, and a per-year
sequence that starts at 0001 every January. The sequence lives in one
counter document per year and is advanced with a compare-and-swap on that
document's version. Looking at existing invoices to find the "last" number
is never correct under concurrency and is not done here.

If the counter cannot be advanced (store down, or contention beyond the
retry budget) invoice creation still proceeds with a time-based unique
number. Those invoices are flagged needs_renumbering.
"""

import logging
import secrets
from dataclasses import dataclass

from clients.document_store import (
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentStore,
    StoreError,
)
from core.exceptions import ConflictError
from core.models import InvoiceNumberCounter
from core.repository import backoff
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

COUNTERS_COLLECTION = "invoice_counters"


@dataclass(frozen=True)
class AllocatedNumber:
    """Result of an allocation. sequence is None for degraded numbers."""

    invoice_number: str
    year: int
    sequence: int | None
    degraded: bool = False


class InvoiceNumberSequencer:
    """Allocates collision-free, per-year increasing invoice numbers."""

    def __init__(
        self,
        store: DocumentStore,
        prefix: str = "INV",
        width: int = 4,
        max_conflict_retries: int = 5,
    ):
        self.store = store
        self.prefix = prefix
        self.width = width
        self.max_conflict_retries = max_conflict_retries

    def format_number(self, year: int, sequence: int) -> str:
        """INV-2026-0007. Sequences past the padding width simply get longer."""
        return f"{self.prefix}-{year}-{sequence:0{self.width}d}"

    def next_number(self, year: int | None = None) -> AllocatedNumber:
        """
        Allocate the next invoice number for a year (default: current UTC year).

        Never raises for store trouble; falls back to a degraded number.
        """
        if year is None:
            year = now_utc().year

        try:
            sequence = self._allocate(year)
        except (StoreError, ConflictError) as e:
            fallback = self._fallback_number(year)
            logger.warning(
                "Invoice counter for %d unavailable (%s); issued fallback number %s",
                year, e, fallback,
            )
            return AllocatedNumber(invoice_number=fallback, year=year, sequence=None, degraded=True)

        return AllocatedNumber(
            invoice_number=self.format_number(year, sequence),
            year=year,
            sequence=sequence,
        )

    def peek(self, year: int) -> int:
        """Last sequence handed out for a year (0 if none)."""
        try:
            doc = self.store.get(COUNTERS_COLLECTION, str(year))
        except DocumentNotFoundError:
            return 0
        return InvoiceNumberCounter.model_validate(doc.data).last_sequence

    def _allocate(self, year: int) -> int:
        key = str(year)

        for attempt in range(1, self.max_conflict_retries + 1):
            try:
                doc = self.store.get(COUNTERS_COLLECTION, key)
            except DocumentNotFoundError:
                # First invoice of the year; another creator may race us here too
                counter = InvoiceNumberCounter(year=year, last_sequence=1)
                try:
                    self.store.create(COUNTERS_COLLECTION, counter.model_dump(), doc_id=key)
                except DocumentConflictError:
                    backoff(attempt)
                    continue
                logger.info("Started invoice sequence for %d", year)
                return 1

            counter = InvoiceNumberCounter.model_validate(doc.data)
            sequence = counter.last_sequence + 1
            try:
                self.store.update(
                    COUNTERS_COLLECTION,
                    key,
                    {"last_sequence": sequence},
                    expected_version=doc.version,
                )
            except DocumentConflictError:
                logger.debug("Counter %s contended (attempt %d)", key, attempt)
                backoff(attempt)
                continue
            return sequence

        raise ConflictError(f"{COUNTERS_COLLECTION}/{key}", self.max_conflict_retries)

    def _fallback_number(self, year: int) -> str:
        millis = int(now_utc().timestamp() * 1000)
        return f"{self.prefix}-{year}-T{millis}{secrets.token_hex(3).upper()}"
