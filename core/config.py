"""Ledger configuration."""

from pydantic import BaseModel, Field


class LedgerConfig(BaseModel):
    """
    Ledger engine configuration.

    Secrets (database URL, gateway credentials) are not here; they come from
    Vault via clients.vault_client.
    """

    # Optimistic concurrency
    max_conflict_retries: int = Field(
        default=5,
        description="Attempts per conditional write before surfacing ConflictError",
        ge=1,
        le=20,
    )

    # Store timeouts
    store_connect_timeout_seconds: int = Field(
        default=10,
        description="Connection timeout for the document store",
        ge=1,
        le=60,
    )
    store_statement_timeout_ms: int = Field(
        default=5000,
        description="Per-statement timeout for the document store",
        ge=100,
        le=60000,
    )

    # Numbering
    invoice_number_prefix: str = Field(
        default="INV",
        description="Prefix of human-readable invoice numbers",
        min_length=1,
        max_length=10,
    )
    sequence_width: int = Field(
        default=4,
        description="Zero-padded width of the per-year sequence",
        ge=1,
        le=10,
    )

    # Gateway
    gateway_environment: str = Field(
        default="sandbox",
        description="Square environment: sandbox or production",
        pattern="^(sandbox|production)$",
    )
    gateway_timeout_seconds: float = Field(
        default=10.0,
        description="Per-request timeout for the payment gateway",
        gt=0,
        le=60,
    )
    webhook_notification_url: str = Field(
        default="http://localhost:8000/api/webhooks/square",
        description="Public URL Square delivers webhooks to (part of the signed payload)",
    )

    # Application
    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )
