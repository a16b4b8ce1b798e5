"""
Invoice ledger service entry point.

Secrets come from Vault; tunables from LedgerConfig (overridable through
LEDGER_* environment variables). Run with:

    python main.py
"""

import logging
import os

import uvicorn

from api.app import create_app
from clients.document_store import DocumentStore
from clients.postgres_store import PostgresDocumentStore
from clients.square_client import SquareClient
from clients.vault_client import get_database_url, get_square_config
from core.audit import AuditLogger
from core.config import LedgerConfig
from core.event_bus import EventBus
from core.events import InvoiceSent
from core.gateway import PaymentGateway
from core.handlers.invoice_sent_handler import handle_invoice_sent
from core.repository import InvoiceRepository
from core.services.gateway_service import GatewayService
from core.services.invoice_service import InvoiceService
from core.services.numbering_service import InvoiceNumberSequencer
from core.services.overdue_sweeper import OverdueSweeper
from core.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


def load_config() -> LedgerConfig:
    """LedgerConfig with LEDGER_<FIELD> environment overrides applied."""
    overrides = {}
    for name in LedgerConfig.model_fields:
        value = os.getenv(f"LEDGER_{name.upper()}")
        if value is not None:
            overrides[name] = value
    return LedgerConfig.model_validate(overrides)


def build_services(store: DocumentStore, gateway: PaymentGateway, config: LedgerConfig) -> dict:
    """
    Wire the ledger services around a store and a gateway.

    Returns:
        Dict consumed by api.app.create_app
    """
    event_bus = EventBus()
    audit = AuditLogger(store)
    repository = InvoiceRepository(store, max_conflict_retries=config.max_conflict_retries)
    sequencer = InvoiceNumberSequencer(
        store,
        prefix=config.invoice_number_prefix,
        width=config.sequence_width,
        max_conflict_retries=config.max_conflict_retries,
    )

    invoice_svc = InvoiceService(repository, sequencer, audit, event_bus)
    payment_svc = PaymentService(repository, audit, event_bus)
    gateway_svc = GatewayService(
        gateway, invoice_svc, payment_svc, notification_url=config.webhook_notification_url
    )
    sweeper = OverdueSweeper(repository, audit, event_bus)

    event_bus.subscribe(InvoiceSent, handle_invoice_sent(gateway_svc))

    return {
        "invoice": invoice_svc,
        "payment": payment_svc,
        "gateway": gateway_svc,
        "sweeper": sweeper,
        "audit": audit,
        "event_bus": event_bus,
        "sequencer": sequencer,
    }


def main() -> None:
    config = load_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = PostgresDocumentStore(
        get_database_url(),
        connect_timeout_seconds=config.store_connect_timeout_seconds,
        statement_timeout_ms=config.store_statement_timeout_ms,
    )
    store.ensure_schema()

    square = get_square_config()
    gateway = SquareClient(
        access_token=square["access_token"],
        location_id=square["location_id"],
        webhook_signature_key=square["webhook_signature_key"],
        environment=square.get("environment") or config.gateway_environment,
        timeout_seconds=config.gateway_timeout_seconds,
    )

    app = create_app(build_services(store, gateway, config))
    logger.info("Invoice ledger starting (Square endpoint %s)", gateway.base_url)

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
