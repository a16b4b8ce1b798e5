"""Shared test fixtures for the invoice ledger test suite."""

from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from clients.memory_store import InMemoryDocumentStore
from clients.square_client import SquareClientError
from core.config import LedgerConfig
from core.models import InvoiceCreate
from factories import TEST_USER_ID, FakeGateway, make_invoice_data
from utils.user_context import user_context, clear_current_user_id


# =============================================================================
# USER CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_user_context():
    """Ensure clean user context before and after each test."""
    clear_current_user_id()
    yield
    clear_current_user_id()


@pytest.fixture
def test_user_id() -> str:
    """The primary test user's ID."""
    return TEST_USER_ID


@pytest.fixture
def as_test_user(test_user_id):
    """Context manager that sets primary test user context."""
    with user_context(test_user_id):
        yield test_user_id


# =============================================================================
# STORE & GATEWAY FIXTURES
# =============================================================================


@pytest.fixture
def store():
    """Fresh in-memory document store per test."""
    return InMemoryDocumentStore(timeout_seconds=2.0)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def failing_gateway(gateway):
    gateway.fail_with = SquareClientError("Square error: card processing unavailable")
    return gateway


# =============================================================================
# SERVICE FIXTURES
# =============================================================================


@pytest.fixture
def config():
    return LedgerConfig(max_conflict_retries=5)


@pytest.fixture
def services(store, gateway, config):
    """Fully wired ledger services over the in-memory store and fake gateway."""
    from main import build_services
    return build_services(store, gateway, config)


@pytest.fixture
def invoice_service(services):
    return services["invoice"]


@pytest.fixture
def payment_service(services):
    return services["payment"]


@pytest.fixture
def gateway_service(services):
    return services["gateway"]


@pytest.fixture
def sweeper(services):
    return services["sweeper"]


@pytest.fixture
def event_bus(services):
    return services["event_bus"]


@pytest.fixture
def audit(services):
    return services["audit"]


# =============================================================================
# INVOICE DATA
# =============================================================================


@pytest.fixture
def invoice_data() -> InvoiceCreate:
    return make_invoice_data()


@pytest.fixture
def draft_invoice(as_test_user, invoice_service, invoice_data):
    return invoice_service.create(invoice_data)


@pytest.fixture
def sent_invoice(as_test_user, invoice_service, invoice_data):
    return invoice_service.create(invoice_data, publish=True)
