"""Typed exceptions for ledger failures."""


class LedgerError(Exception):
    """Base class for invoice and payment ledger errors."""


class ValidationError(LedgerError):
    """
    Input rejected before any write.

    Negative amounts, missing due dates, empty line items and the like.
    Nothing has been persisted when this is raised.
    """


class InvalidTransitionError(LedgerError):
    """A status change violated the transition table or one of its guards."""

    def __init__(self, current, requested, guard: str):
        self.current = current
        self.requested = requested
        self.guard = guard
        current_name = getattr(current, "value", current)
        requested_name = getattr(requested, "value", requested)
        super().__init__(
            f"Cannot move invoice from {current_name} to {requested_name}: {guard}"
        )


class ConflictError(LedgerError):
    """Concurrent writers kept winning; the caller should retry with fresh state."""

    def __init__(self, entity_id: str, attempts: int):
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Gave up updating {entity_id} after {attempts} conflicting attempts"
        )


class NotFoundError(LedgerError):
    """Invoice or counter does not exist."""


class GatewayError(LedgerError):
    """
    Payment gateway call failed.

    Only affects the ability to present a pay link; invoice status is untouched
    and other payment methods remain available.
    """


class InvalidSignatureError(ValidationError):
    """Webhook delivery failed signature verification. Nothing was applied."""
