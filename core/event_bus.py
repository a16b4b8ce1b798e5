"""
In-process dispatch of ledger events.

publish() runs after the ledger write has committed, on the caller's thread.
A failing handler is logged with the event id and the invoice number; it
never undoes the write and never stops the remaining handlers.
"""

import logging
from collections import defaultdict
from typing import Callable

from core.events import LedgerEvent

logger = logging.getLogger(__name__)

Handler = Callable[[LedgerEvent], None]


class EventBus:
    """Synchronous pub/sub keyed by event class."""

    def __init__(self):
        self._handlers: defaultdict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_class: type[LedgerEvent], handler: Handler) -> None:
        """Register handler for exactly event_class; subclasses are not matched."""
        self._handlers[event_class].append(handler)

    def handlers_for(self, event_class: type[LedgerEvent]) -> list[Handler]:
        return list(self._handlers.get(event_class, ()))

    def publish(self, event: LedgerEvent) -> None:
        """Call every handler of the event's class in subscription order."""
        # Snapshot so a handler subscribing during dispatch waits for the next event
        for handler in self.handlers_for(type(event)):
            try:
                handler(event)
            except Exception:
                invoice = getattr(event, "invoice", None)
                logger.exception(
                    "%s handler %s failed for invoice %s (event_id=%s)",
                    type(event).__name__,
                    getattr(handler, "__name__", repr(handler)),
                    getattr(invoice, "invoice_number", "?"),
                    event.event_id,
                )
