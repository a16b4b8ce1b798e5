"""Invoice line item models.

All prices are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents.
"""

from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


class LineItemCreate(BaseModel):
    """Data required to add a line item to an invoice."""

    description: str = Field(..., max_length=500)
    quantity: int = Field(1, ge=0)
    unit_price_cents: int = Field(..., ge=0)


class LineItem(BaseModel):
    """Line item as stored on the invoice document. Order is display order."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    description: str
    quantity: int = Field(..., ge=0)
    unit_price_cents: int = Field(..., ge=0)
    total_price_cents: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_total(self) -> "LineItem":
        """total_price_cents must equal quantity * unit_price_cents."""
        if self.total_price_cents != self.quantity * self.unit_price_cents:
            raise ValueError(
                f"Line item total {self.total_price_cents} does not equal "
                f"{self.quantity} x {self.unit_price_cents}"
            )
        return self

    @classmethod
    def from_create(cls, data: LineItemCreate) -> "LineItem":
        return cls(
            description=data.description,
            quantity=data.quantity,
            unit_price_cents=data.unit_price_cents,
            total_price_cents=data.quantity * data.unit_price_cents,
        )

    @property
    def is_billable(self) -> bool:
        """Has a description and contributes a positive amount."""
        return bool(self.description.strip()) and self.total_price_cents > 0

    @property
    def total_price_dollars(self) -> float:
        """Total price in dollars for display."""
        return self.total_price_cents / 100
