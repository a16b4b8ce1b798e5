"""Invoice number counter model.

One document per calendar year in the `invoice_counters` collection, keyed by
the year. Only the numbering sequencer writes it.
"""

from pydantic import BaseModel, Field


class InvoiceNumberCounter(BaseModel):
    """Last sequence number handed out for a year."""

    year: int = Field(..., ge=1970, le=9999)
    last_sequence: int = Field(0, ge=0)
