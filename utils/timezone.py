"""Ledger clock.

Timestamps are timezone-aware UTC. Due dates and scheduled send dates are
plain calendar dates compared against the UTC calendar date, so an invoice
turns overdue at the same instant for every client.
"""

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """Current time in UTC. The only clock the ledger reads."""
    return datetime.now(timezone.utc)


def today_utc() -> date:
    """UTC calendar date used by the overdue and scheduled-send ticks."""
    return now_utc().date()
